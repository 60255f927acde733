"""
Tender Pipeline Configuration
Centralized settings for document intake, enrichment fan-out and gateway timeouts
"""
import os
from typing import Dict, Any, List


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [part.strip().lower() for part in raw.split(",") if part.strip()]


# ==================== DOCUMENT INTAKE ====================

# Root for per-tender working trees: WORK_ROOT/{reg_number}/{original,converted}
WORK_ROOT = os.getenv("TENDER_WORK_ROOT", os.path.join(os.getcwd(), "tenderland"))

# Bundle download timeout (seconds)
DOWNLOAD_TIMEOUT_SECONDS = float(os.getenv("TENDER_DOWNLOAD_TIMEOUT", "120"))

# Some tender platforms serve bundles with broken certificate chains
DOWNLOAD_VERIFY_SSL = os.getenv("TENDER_DOWNLOAD_VERIFY_SSL", "0") == "1"

# Nested archives are expanded until none remain, up to this depth
MAX_ARCHIVE_DEPTH = int(os.getenv("TENDER_MAX_ARCHIVE_DEPTH", "5"))

# Parallel file conversion within one bundle (1 = sequential)
NORMALIZE_WORKERS = int(os.getenv("TENDER_NORMALIZE_WORKERS", "4"))

# Timeout for the external .doc converter process
DOC_CONVERTER_TIMEOUT_SECONDS = int(os.getenv("TENDER_DOC_CONVERTER_TIMEOUT", "60"))

ARCHIVE_EXTENSIONS = {".zip"}
WORD_EXTENSIONS = {".docx"}
LEGACY_WORD_EXTENSIONS = {".doc"}
SPREADSHEET_EXTENSIONS = {".xlsx", ".xls"}
PASSTHROUGH_EXTENSIONS = {".html", ".htm", ".pdf", ".txt", ".csv"}

# Every normalized file ends up with one of these extensions
SUPPORTED_OUTPUT_EXTENSIONS = {".html", ".htm", ".pdf", ".txt", ".csv"}


# ==================== REASONING GATEWAY (GEMINI) ====================

GEMINI_REQUEST_TIMEOUT_SECONDS = float(os.getenv("GEMINI_REQUEST_TIMEOUT", "120"))
GEMINI_MAX_OUTPUT_TOKENS = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "20000"))
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.2"))

# Bounded poll while an uploaded file is still PROCESSING
FILE_POLL_ATTEMPTS = int(os.getenv("GEMINI_FILE_POLL_ATTEMPTS", "30"))
FILE_POLL_INTERVAL_SECONDS = float(os.getenv("GEMINI_FILE_POLL_INTERVAL", "2"))

# Text prompts are truncated to this many characters
MAX_PROMPT_CHARS = int(os.getenv("GEMINI_MAX_PROMPT_CHARS", "100000"))


# ==================== SEARCH & SITE FETCHING ====================

SEARCH_TIMEOUT_SECONDS = float(os.getenv("SEARCH_TIMEOUT", "30"))
GOOGLE_RESULTS_PER_QUERY = int(os.getenv("GOOGLE_RESULTS_PER_QUERY", "10"))
YANDEX_GROUPS_ON_PAGE = int(os.getenv("YANDEX_GROUPS_ON_PAGE", "20"))
YANDEX_RESULTS_PER_QUERY = int(os.getenv("YANDEX_RESULTS_PER_QUERY", "10"))
YANDEX_SEARCH_TYPE = os.getenv("YANDEX_SEARCH_TYPE", "SEARCH_TYPE_RU")
YANDEX_POLL_ATTEMPTS = int(os.getenv("YANDEX_POLL_ATTEMPTS", "10"))
YANDEX_POLL_INTERVAL_SECONDS = float(os.getenv("YANDEX_POLL_INTERVAL", "3"))

SITE_FETCH_TIMEOUT_SECONDS = float(os.getenv("SITE_FETCH_TIMEOUT", "10"))
HTML_SCRATCH_DIR = os.getenv("HTML_SCRATCH_DIR", os.path.join(os.getcwd(), "html"))
USER_AGENT = os.getenv(
    "FETCH_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
)

# Site filter: marketplaces/aggregators and search engines' own domains are dropped,
# direct document links are dropped, only these country-code domains are kept
BLOCKED_SITE_MARKERS = _env_list(
    "BLOCKED_SITE_MARKERS", "yandex.,google.,avito,ozon,wildberries,aliexpress"
)
BLOCKED_LINK_EXTENSIONS = _env_list("BLOCKED_LINK_EXTENSIONS", ".pdf,.xlsx,.xls")
ALLOWED_DOMAIN_SUFFIXES = _env_list("ALLOWED_DOMAIN_SUFFIXES", ".ru,.рф,.xn--p1ai")


# ==================== FAN-OUT ====================

# Worker caps per fan-out level; defaults cover "everything in parallel"
# for realistic tenders (a few dozen items, a handful of queries, ~20 sites)
ITEM_WORKERS = int(os.getenv("ENRICH_ITEM_WORKERS", "32"))
QUERY_WORKERS = int(os.getenv("ENRICH_QUERY_WORKERS", "10"))
SITE_WORKERS = int(os.getenv("ENRICH_SITE_WORKERS", "20"))

# Upper bound on generated queries used per item
MAX_QUERIES_PER_ITEM = int(os.getenv("ENRICH_MAX_QUERIES_PER_ITEM", "5"))


# ==================== VALIDATION ====================

def validate_pipeline_config():
    """Validate pipeline configuration on startup"""
    errors = []

    for name, value in (
        ("ENRICH_ITEM_WORKERS", ITEM_WORKERS),
        ("ENRICH_QUERY_WORKERS", QUERY_WORKERS),
        ("ENRICH_SITE_WORKERS", SITE_WORKERS),
        ("TENDER_NORMALIZE_WORKERS", NORMALIZE_WORKERS),
    ):
        if value < 1:
            errors.append(f"{name} ({value}) must be >= 1")

    if MAX_ARCHIVE_DEPTH < 1:
        errors.append(f"TENDER_MAX_ARCHIVE_DEPTH ({MAX_ARCHIVE_DEPTH}) must be >= 1")

    if FILE_POLL_ATTEMPTS < 1:
        errors.append(f"GEMINI_FILE_POLL_ATTEMPTS ({FILE_POLL_ATTEMPTS}) must be >= 1")

    if not ALLOWED_DOMAIN_SUFFIXES:
        errors.append("ALLOWED_DOMAIN_SUFFIXES must list at least one domain suffix")

    if errors:
        error_msg = "\n".join([f"  - {err}" for err in errors])
        raise ValueError(f"Invalid pipeline configuration:\n{error_msg}")

    return True


def get_pipeline_config_summary() -> Dict[str, Any]:
    """Get current pipeline configuration as dictionary"""
    return {
        "intake": {
            "work_root": WORK_ROOT,
            "download_timeout": DOWNLOAD_TIMEOUT_SECONDS,
            "max_archive_depth": MAX_ARCHIVE_DEPTH,
            "normalize_workers": NORMALIZE_WORKERS,
        },
        "gemini": {
            "request_timeout": GEMINI_REQUEST_TIMEOUT_SECONDS,
            "max_output_tokens": GEMINI_MAX_OUTPUT_TOKENS,
            "file_poll_attempts": FILE_POLL_ATTEMPTS,
            "file_poll_interval": FILE_POLL_INTERVAL_SECONDS,
        },
        "search": {
            "timeout": SEARCH_TIMEOUT_SECONDS,
            "google_results": GOOGLE_RESULTS_PER_QUERY,
            "yandex_results": YANDEX_RESULTS_PER_QUERY,
            "blocked_markers": BLOCKED_SITE_MARKERS,
            "allowed_suffixes": ALLOWED_DOMAIN_SUFFIXES,
        },
        "fan_out": {
            "item_workers": ITEM_WORKERS,
            "query_workers": QUERY_WORKERS,
            "site_workers": SITE_WORKERS,
            "max_queries_per_item": MAX_QUERIES_PER_ITEM,
        },
    }


# Validate on import
try:
    validate_pipeline_config()
except ValueError as e:
    print(f"⚠️  Pipeline Configuration Warning: {e}")
    print("⚠️  Using default values. Check your .env file.")
