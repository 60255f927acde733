"""
Health check endpoints
"""
import traceback
from datetime import datetime
from fastapi import APIRouter
from config.settings import TENDER_STORE_BACKEND, get_supabase_client
from config.pipeline_config import get_pipeline_config_summary
from services.tender_record_service import TABLE_NAME

router = APIRouter()

@router.get("/")
def root():
    return {
        "message": "Tender Analysis API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }

@router.get("/health")
def health_check():
    """Health check endpoint for monitoring"""
    if TENDER_STORE_BACKEND == "memory":
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "database": "memory"
        }
    try:
        supabase = get_supabase_client()
        # Test database connectivity
        supabase.table(TABLE_NAME).select("reg_number").limit(1).execute()
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "database": "connected"
        }
    except Exception as e:
        print(f"ERROR: Health check failed: {e}")
        traceback.print_exc()
        return {
            "status": "unhealthy",
            "timestamp": datetime.now().isoformat(),
            "database": "disconnected",
            "error": str(e)
        }

@router.get("/health/config")
def pipeline_config():
    """Effective pipeline tunables (no secrets)"""
    return get_pipeline_config_summary()
