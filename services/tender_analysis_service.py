"""
Analysis Orchestrator - drives one tender through
NEW -> FILES_NORMALIZED -> EXTRACTED -> ITEMS_ENRICHED -> REPORT_GENERATED

Every stage checkpoints to the record store before the next starts, so a
crashed run resumes from the last committed stage.
"""
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from config.pipeline_config import NORMALIZE_WORKERS
from models.tender import (
    AnalysisOutcome,
    AnalysisStage,
    AnalyzedFile,
    TenderExtraction,
    TenderRecord,
)
from services.prompts import FINAL_REPORT_PROMPT, render_tender_for_report
from utils.exceptions import (
    STAGE_FAILURE_MESSAGES,
    DownloadError,
    ExtractionParseError,
    PipelineCancelled,
    StoreWriteError,
)
from utils.helpers import CancellationToken, log_execution_time, parse_fenced_json
from utils.logging_config import get_logger

logger = get_logger(__name__, "pipeline")


def require_extraction(raw: str) -> TenderExtraction:
    """Strict parse of a fenced ```json block; raises ExtractionParseError."""
    payload = parse_fenced_json(raw)
    if not isinstance(payload, dict):
        raise ExtractionParseError("no fenced JSON object in model output")
    try:
        return TenderExtraction.model_validate(payload)
    except ValidationError as e:
        raise ExtractionParseError(f"extraction JSON does not match the schema: {e.error_count()} errors") from e


def parse_extraction(raw: str) -> Optional[TenderExtraction]:
    try:
        return require_extraction(raw)
    except ExtractionParseError as e:
        logger.warning(str(e))
        return None


def combine_report(report: str, product_analyses: List[str]) -> str:
    """Final report followed by every item's market overview, in item order."""
    return "\n\n".join([report, *[analysis for analysis in product_analyses if analysis]])


def build_analysis_blob(analyzed: List[AnalyzedFile]) -> str:
    return "\n\n".join(
        f"File: {entry.file}\nAnalysis:\n{entry.response}\n---" for entry in analyzed
    )


class TenderAnalysisService:
    def __init__(self, store, documents, gateway, enrichment, tenderland=None,
                 summary_workers: int = NORMALIZE_WORKERS):
        self.store = store
        self.documents = documents
        self.gateway = gateway
        self.enrichment = enrichment
        self.tenderland = tenderland
        self.summary_workers = max(1, summary_workers)

    # ==================== STAGE 2: EXTRACTION ====================

    @log_execution_time("Tender extraction", logger)
    def run_extraction(self, key: str, normalized_files: List[Path],
                       token: CancellationToken | None = None) -> Optional[TenderExtraction]:
        if token:
            token.raise_if_cancelled()

        files = [Path(p) for p in normalized_files]
        with ThreadPoolExecutor(max_workers=self.summary_workers, thread_name_prefix="summary") as executor:
            responses = list(executor.map(lambda p: self.gateway.summarize_document(p, token=token), files))

        analyzed = [AnalyzedFile(file=path.name, response=response or "") for path, response in zip(files, responses)]
        self.store.set_field(key, "analyzed_files", analyzed)

        summarized = sum(1 for entry in analyzed if entry.response)
        logger.info(f"Tender {key}: {summarized}/{len(files)} documents summarized")
        if not summarized:
            self.store.set_field(key, "extracted_analysis", None)
            return None

        raw = self.gateway.extract_structured(build_analysis_blob(analyzed), token=token)
        extraction = parse_extraction(raw)
        if extraction is None:
            logger.warning(f"Tender {key}: no structured analysis produced")
            self.store.set_field(key, "extracted_analysis", None)
            return None

        self.store.set_field(key, "extracted_analysis", extraction)
        self.store.advance_stage(key, AnalysisStage.EXTRACTED)
        logger.info(f"Tender {key}: extracted {len(extraction.items)} items")
        return extraction

    # ==================== STAGE 3: ENRICHMENT ====================

    def run_enrichment(self, key: str, extraction: TenderExtraction,
                       token: CancellationToken | None = None) -> int:
        enriched = self.enrichment.enrich_items(key, extraction, token=token)
        self.store.advance_stage(key, AnalysisStage.ITEMS_ENRICHED)
        return enriched

    # ==================== STAGE 4: REPORT ====================

    @log_execution_time("Final report", logger)
    def run_final_report(self, key: str, token: CancellationToken | None = None) -> Optional[str]:
        record = self.store.find_by_key(key)
        if record is None:
            logger.warning(f"Tender {key}: record not found for report")
            return None

        if record.is_processed and record.final_report is not None:
            return combine_report(record.final_report, record.product_analyses())

        report = self.gateway.generate_report(
            FINAL_REPORT_PROMPT.format(tender_details=render_tender_for_report(record)),
            token=token,
        )
        if not report:
            logger.warning(f"Tender {key}: final report generation returned nothing")
            return None

        self.store.merge_fields(key, {
            "final_report": report,
            "is_processed": True,
            "stage": AnalysisStage.REPORT_GENERATED,
        })
        return combine_report(report, record.product_analyses())

    # ==================== FULL RUN ====================

    def analyze_tender(self, key: str, token: CancellationToken | None = None) -> AnalysisOutcome:
        """Run (or resume) the whole pipeline for one tender."""
        record = self.store.find_by_key(key)
        if record is None:
            return self._failed(key, AnalysisStage.NEW, "not_found")

        logger.info("=" * 80)
        logger.info(f"Analyzing tender {key} (stage: {record.stage.value})")

        stage = record.stage
        work_dir = None
        try:
            if not record.is_processed:
                extraction = record.extracted_analysis
                if stage.is_before(AnalysisStage.EXTRACTED) or extraction is None:
                    result = self.documents.acquire_and_normalize(key, record.metadata.files, token=token)
                    work_dir = result.work_dir
                    self.store.advance_stage(key, AnalysisStage.FILES_NORMALIZED)
                    stage = AnalysisStage.FILES_NORMALIZED

                    extraction = self.run_extraction(key, result.normalized_files, token=token)
                    if extraction is None:
                        return self._failed(key, stage, "extraction")
                    stage = AnalysisStage.EXTRACTED

                if stage.is_before(AnalysisStage.ITEMS_ENRICHED):
                    self.run_enrichment(key, extraction, token=token)
                    stage = AnalysisStage.ITEMS_ENRICHED

            report = self.run_final_report(key, token=token)
            if report is None:
                return self._failed(key, stage, "report")

            logger.info(f"Tender {key}: analysis complete")
            return AnalysisOutcome(reg_number=key, success=True,
                                   stage=AnalysisStage.REPORT_GENERATED, report=report)

        except DownloadError as e:
            logger.error(f"Tender {key}: {e}")
            return self._failed(key, stage, "download")
        except StoreWriteError as e:
            logger.error(f"Tender {key}: {e}")
            return self._failed(key, stage, "store")
        except PipelineCancelled as e:
            logger.warning(f"Tender {key}: cancelled ({e})")
            return self._failed(key, stage, "cancelled")
        finally:
            if work_dir is not None:
                self.documents.cleanup(work_dir)

    def get_or_create_tender(self, key: str) -> Optional[TenderRecord]:
        """Stored record, or a new one created from the discovery feed."""
        record = self.store.find_by_key(key)
        if record is not None:
            return record
        if self.tenderland is None:
            return None

        tender = self.tenderland.get_tender_by_reg_number(key)
        if tender is None:
            return None

        self.store.upsert_by_key(tender.reg_number, tender.to_metadata())
        return self.store.find_by_key(tender.reg_number)

    @staticmethod
    def _failed(key: str, stage: AnalysisStage, reason: str) -> AnalysisOutcome:
        return AnalysisOutcome(reg_number=key, success=False, stage=stage,
                               message=STAGE_FAILURE_MESSAGES[reason])
