"""
Pipeline wiring - every gateway client is constructed once per process and
injected into the services that use it
"""
from config.settings import TENDER_STORE_BACKEND
from services.document_service import DocumentService
from services.gemini_service import GeminiReasoningGateway
from services.item_enrichment_service import ItemEnrichmentService
from services.search_service import GoogleSearchBackend, SearchGateway, YandexSearchBackend
from services.site_fetcher_service import SiteFetcher
from services.tender_analysis_service import TenderAnalysisService
from services.tender_record_service import InMemoryTenderRecordStore, SupabaseTenderRecordStore
from services.tenderland_service import TenderlandService
from utils.logging_config import get_logger

logger = get_logger(__name__, "app")

_pipeline = None


def build_store(backend: str = TENDER_STORE_BACKEND):
    if backend == "memory":
        logger.warning("Using in-memory tender record store; records are lost on restart")
        return InMemoryTenderRecordStore()
    if backend != "supabase":
        raise ValueError(f"Unknown TENDER_STORE_BACKEND '{backend}' (expected 'supabase' or 'memory')")
    return SupabaseTenderRecordStore()


def build_pipeline(store=None, gateway=None, search_gateway=None, site_fetcher=None,
                   documents=None, tenderland=None) -> TenderAnalysisService:
    """Assemble the orchestrator; any collaborator can be passed in to replace the default."""
    store = store or build_store()
    gateway = gateway or GeminiReasoningGateway()
    search_gateway = search_gateway or SearchGateway([GoogleSearchBackend(), YandexSearchBackend()])
    site_fetcher = site_fetcher or SiteFetcher()
    documents = documents or DocumentService()
    tenderland = tenderland or TenderlandService(store)

    enrichment = ItemEnrichmentService(store, gateway, search_gateway, site_fetcher)
    return TenderAnalysisService(store, documents, gateway, enrichment, tenderland=tenderland)


def get_pipeline() -> TenderAnalysisService:
    """Process-wide pipeline, built on first use."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline
