"""
Configuration and Environment Setup
"""
import os
from dotenv import load_dotenv
import google.generativeai as genai
from supabase import create_client, Client

# Load environment variables
load_dotenv()

def _clean_env(value: str | None) -> str:
    """Clean environment variable values"""
    if not value:
        return ""
    return value.strip().strip('"').strip("'")

# Environment variables
GOOGLE_API_KEY = _clean_env(os.getenv("GOOGLE_API_KEY"))
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL"))
SUPABASE_KEY = _clean_env(os.getenv("SUPABASE_KEY"))
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

# Search backends
GOOGLE_SEARCH_API_KEY = _clean_env(os.getenv("GOOGLE_SEARCH_API_KEY") or GOOGLE_API_KEY)
GOOGLE_SEARCH_ENGINE_ID = _clean_env(os.getenv("GOOGLE_SEARCH_ENGINE_ID"))
YANDEX_API_KEY = _clean_env(os.getenv("YANDEX_API_KEY"))
YANDEX_FOLDER_ID = _clean_env(os.getenv("YANDEX_FOLDER_ID"))

# Tender discovery feed
TENDERLAND_API_KEY = _clean_env(os.getenv("TENDERLAND_API_KEY"))
TENDERLAND_BASE_URL = os.getenv("TENDERLAND_BASE_URL", "https://tenderland.ru/api/v1")
TENDERLAND_AUTOSEARCH_ID = int(os.getenv("TENDERLAND_AUTOSEARCH_ID", "249612"))
TENDERLAND_BATCH_SIZE = int(os.getenv("TENDERLAND_BATCH_SIZE", "10000"))
TENDERLAND_LIMIT = int(os.getenv("TENDERLAND_LIMIT", "10000"))

# Record store backend: "supabase" in deployments, "memory" for local dry runs
TENDER_STORE_BACKEND = os.getenv("TENDER_STORE_BACKEND", "supabase").strip().lower()

# Background task configuration
WORKER_POLL_INTERVAL_SECONDS = int(os.getenv("WORKER_POLL_INTERVAL_SECONDS", "900"))
WORKER_BATCH_SIZE = int(os.getenv("WORKER_BATCH_SIZE", "5"))

# Feature flags
ENABLE_TENDER_DISCOVERY = os.getenv("ENABLE_TENDER_DISCOVERY", "1").lower() not in {"0", "false", "off", "no"}

# Validate Gemini configuration
if not GOOGLE_API_KEY:
    raise ValueError("Missing GOOGLE_API_KEY for Gemini")

# Initialize Gemini client
genai.configure(api_key=GOOGLE_API_KEY)

# Global Supabase client, created on first use
supabase: Client | None = None


def _validate_supabase_settings():
    if not SUPABASE_URL or not SUPABASE_URL.startswith("https://") or ".supabase.co" not in SUPABASE_URL:
        raise ValueError(f"Invalid SUPABASE_URL format: '{SUPABASE_URL}'. Expected like https://xxxxx.supabase.co")
    if not SUPABASE_KEY:
        raise ValueError("SUPABASE_KEY is missing")


def get_supabase_client() -> Client:
    """
    Get or reinitialize Supabase client.
    Returns a reliable connection with automatic retry on failure.
    """
    global supabase
    _validate_supabase_settings()
    try:
        if supabase is None:
            supabase = create_client(SUPABASE_URL, SUPABASE_KEY)
        return supabase
    except Exception as e:
        print(f"Error getting Supabase client: {e}")
        # Try to create a fresh client
        try:
            supabase = create_client(SUPABASE_URL, SUPABASE_KEY)
            return supabase
        except Exception as e2:
            print(f"Failed to create Supabase client: {e2}")
            raise Exception("Cannot connect to database. Please try again later.") from e2


def reinitialize_supabase():
    """
    Force reinitialize Supabase client - creates fresh connection.
    Call this when experiencing connection issues.
    """
    global supabase
    _validate_supabase_settings()
    try:
        supabase = create_client(SUPABASE_URL, SUPABASE_KEY)
        print("✓ Reinitialized Supabase client successfully")
        return supabase
    except Exception as e:
        print(f"✗ Failed to reinitialize Supabase client: {e}")
        raise Exception("Cannot reconnect to database. Please try again later.") from e
