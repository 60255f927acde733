"""
Tender analysis endpoints - stored state, on-demand analysis and reports
"""
import threading
import traceback
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from models.tender import AnalysisStage
from services.pipeline_factory import get_pipeline
from services.tender_analysis_service import TenderAnalysisService
from utils.exceptions import STAGE_FAILURE_MESSAGES, StoreWriteError
from utils.helpers import CancellationToken
from utils.logging_config import get_logger

router = APIRouter()
logger = get_logger(__name__, "app")

# Analyses currently running in this process, with the token that stops them
_running: dict[str, CancellationToken] = {}
_running_lock = threading.Lock()


class TenderStatusResponse(BaseModel):
    reg_number: str
    name: str
    stage: AnalysisStage
    is_processed: bool
    item_count: int
    enriched_items: int
    files: Optional[str] = None
    analysis_running: bool = False


class AnalyzeResponse(BaseModel):
    reg_number: str
    status: str


class ReportResponse(BaseModel):
    reg_number: str
    report: str


def _load_or_404(pipeline: TenderAnalysisService, reg_number: str):
    try:
        record = pipeline.get_or_create_tender(reg_number)
    except StoreWriteError as e:
        logger.error(f"Could not create tender {reg_number}: {e}")
        raise HTTPException(status_code=503, detail=STAGE_FAILURE_MESSAGES["store"])
    if record is None:
        raise HTTPException(status_code=404, detail=STAGE_FAILURE_MESSAGES["not_found"])
    return record


def _run_analysis(pipeline: TenderAnalysisService, reg_number: str, token: CancellationToken):
    try:
        outcome = pipeline.analyze_tender(reg_number, token=token)
        if outcome.success:
            logger.info(f"On-demand analysis of {reg_number} finished")
        else:
            logger.warning(f"On-demand analysis of {reg_number} failed: {outcome.message}")
    except Exception as e:
        logger.error(f"On-demand analysis of {reg_number} crashed: {e}")
        traceback.print_exc()
    finally:
        with _running_lock:
            _running.pop(reg_number, None)


def cancel_running_analyses(reason: str = "shutdown") -> int:
    """Cancel every analysis started by this process; returns how many were signalled."""
    with _running_lock:
        tokens = list(_running.values())
    for token in tokens:
        token.cancel(reason)
    if tokens:
        logger.info(f"Cancelled {len(tokens)} running analysis(es): {reason}")
    return len(tokens)


@router.get("/tenders/{reg_number}", response_model=TenderStatusResponse)
def get_tender(reg_number: str, pipeline: TenderAnalysisService = Depends(get_pipeline)):
    """Stored analysis state of a tender (created from the discovery feed if unknown)."""
    record = _load_or_404(pipeline, reg_number)
    with _running_lock:
        running = record.reg_number in _running
    return TenderStatusResponse(
        reg_number=record.reg_number,
        name=record.metadata.name,
        stage=record.stage,
        is_processed=record.is_processed,
        item_count=len(record.items),
        enriched_items=sum(1 for fr in record.find_requests if fr.product_analysis),
        files=record.metadata.files,
        analysis_running=running,
    )


@router.post("/tenders/{reg_number}/analyze", response_model=AnalyzeResponse, status_code=202)
def analyze_tender(reg_number: str, pipeline: TenderAnalysisService = Depends(get_pipeline)):
    """Start (or resume) the analysis in a background thread."""
    record = _load_or_404(pipeline, reg_number)
    if record.is_processed:
        return AnalyzeResponse(reg_number=record.reg_number, status="processed")

    with _running_lock:
        if record.reg_number in _running:
            return AnalyzeResponse(reg_number=record.reg_number, status="running")
        token = CancellationToken()
        _running[record.reg_number] = token

    thread = threading.Thread(
        target=_run_analysis,
        args=(pipeline, record.reg_number, token),
        name=f"analyze-{record.reg_number}",
        daemon=True,
    )
    thread.start()
    return AnalyzeResponse(reg_number=record.reg_number, status="started")


@router.get("/tenders/{reg_number}/report", response_model=ReportResponse)
def get_report(reg_number: str, pipeline: TenderAnalysisService = Depends(get_pipeline)):
    """Final report combined with every item's market overview."""
    record = pipeline.store.find_by_key(reg_number)
    if record is None:
        raise HTTPException(status_code=404, detail=STAGE_FAILURE_MESSAGES["not_found"])
    if not record.is_processed:
        raise HTTPException(status_code=409, detail="Analysis has not finished yet")

    report = pipeline.run_final_report(reg_number)
    if report is None:
        raise HTTPException(status_code=500, detail=STAGE_FAILURE_MESSAGES["report"])
    return ReportResponse(reg_number=reg_number, report=report)
