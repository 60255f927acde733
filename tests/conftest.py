import os
import sys
import tempfile

# Settings are read at import time, so the environment must be ready first
_SCRATCH = tempfile.mkdtemp(prefix="tender-tests-")

os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-supabase-key")
os.environ.setdefault("TENDER_STORE_BACKEND", "memory")
os.environ.setdefault("TENDER_LOGS_DIR", os.path.join(_SCRATCH, "logs"))
os.environ.setdefault("TENDER_WORK_ROOT", os.path.join(_SCRATCH, "tenderland"))
os.environ.setdefault("HTML_SCRATCH_DIR", os.path.join(_SCRATCH, "html"))

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

import pytest  # noqa: E402

from services.tender_record_service import InMemoryTenderRecordStore  # noqa: E402


@pytest.fixture
def store():
    return InMemoryTenderRecordStore()
