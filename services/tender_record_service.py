"""
Tender Record Store - durable per-tender JSON document, the pipeline's checkpoint log

Two backends share one interface:
- SupabaseTenderRecordStore: table `tender_records`; every write is a single
  atomic Postgres function call (see migrations/001_tender_records.sql)
- InMemoryTenderRecordStore: process-local dict guarded by a lock, used by
  tests and local dry runs

Paths are dotted strings; numeric segments index into arrays, e.g.
"find_requests.3.parsed_request".
"""
import copy
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from postgrest.exceptions import APIError
from pydantic import BaseModel

from config.settings import get_supabase_client, reinitialize_supabase
from models.tender import AnalysisStage, TenderRecord
from utils.db_utils import retry_on_db_error
from utils.exceptions import StoreWriteError
from utils.logging_config import get_logger

logger = get_logger(__name__, "pipeline")

TABLE_NAME = "tender_records"


def parse_path(path: str) -> List[str]:
    parts = [part for part in (path or "").split(".") if part]
    if not parts:
        raise ValueError(f"Invalid field path: '{path}'")
    return parts


def to_json(value: Any) -> Any:
    """JSON-ready copy of pydantic models, enums and containers of them."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, AnalysisStage):
        return value.value
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(v) for v in value]
    return value


def new_document(metadata: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "metadata": to_json(metadata or {}),
        "stage": AnalysisStage.NEW.value,
        "analyzed_files": [],
        "extracted_analysis": None,
        "find_requests": [],
        "is_processed": False,
        "final_report": None,
    }


class TenderRecordStore:
    """Interface of the record store. All writes are atomic per call."""

    def upsert_by_key(self, key: str, metadata: Dict[str, Any]) -> bool:
        """Create the record if absent (insert-only). Returns True when created."""
        raise NotImplementedError

    def set_field(self, key: str, path: str, value: Any) -> None:
        raise NotImplementedError

    def append_to_array(self, key: str, path: str, value: Any) -> None:
        raise NotImplementedError

    def upsert_in_array(self, key: str, path: str, match_field: str, value: Any) -> None:
        """Replace the element with the same match_field value in place, or append."""
        raise NotImplementedError

    def extend_array(self, key: str, path: str, items: List[Any]) -> None:
        """Append items[len(current):]; existing elements are left untouched."""
        raise NotImplementedError

    def merge_fields(self, key: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    def advance_stage(self, key: str, stage: AnalysisStage) -> bool:
        """Move the record forward to stage. Never moves backwards; returns False then."""
        raise NotImplementedError

    def find_by_key(self, key: str) -> Optional[TenderRecord]:
        raise NotImplementedError

    def find_unprocessed(self, limit: int = 10) -> List[TenderRecord]:
        raise NotImplementedError


# ==================== SUPABASE ====================

def _reinitialize():
    reinitialize_supabase()


class SupabaseTenderRecordStore(TenderRecordStore):
    def __init__(self, client_factory=get_supabase_client):
        self._client_factory = client_factory

    @property
    def client(self):
        return self._client_factory()

    @retry_on_db_error(max_retries=3, delay=0.5, on_retry=_reinitialize)
    def _rpc(self, function: str, params: Dict[str, Any]):
        return self.client.rpc(function, params).execute()

    def _write(self, key: str, operation: str, function: str, params: Dict[str, Any],
               must_exist: bool = True) -> bool:
        try:
            result = self._rpc(function, {"p_reg_number": key, **params})
        except APIError as e:
            raise StoreWriteError(key, operation, e.message or str(e)) from e
        except Exception as e:
            raise StoreWriteError(key, operation, str(e)) from e

        applied = bool(result.data)
        if must_exist and not applied:
            raise StoreWriteError(key, operation, "record not found")
        return applied

    def upsert_by_key(self, key, metadata):
        created = self._write(key, "upsert", "tender_record_upsert",
                              {"p_document": new_document(metadata)}, must_exist=False)
        if created:
            logger.info(f"Created tender record {key}")
        return created

    def set_field(self, key, path, value):
        self._write(key, f"set {path}", "tender_record_set",
                    {"p_path": parse_path(path), "p_value": to_json(value)})

    def append_to_array(self, key, path, value):
        self._write(key, f"append {path}", "tender_record_append",
                    {"p_path": parse_path(path), "p_value": to_json(value)})

    def upsert_in_array(self, key, path, match_field, value):
        self._write(key, f"upsert {path}", "tender_record_upsert_keyed",
                    {"p_path": parse_path(path), "p_match_field": match_field, "p_value": to_json(value)})

    def extend_array(self, key, path, items):
        self._write(key, f"extend {path}", "tender_record_extend_array",
                    {"p_path": parse_path(path), "p_items": to_json(list(items))})

    def merge_fields(self, key, fields):
        self._write(key, "merge", "tender_record_merge", {"p_fields": to_json(fields)})

    def advance_stage(self, key, stage):
        earlier = [s.value for s in AnalysisStage if s.is_before(stage)]
        return self._write(key, f"advance to {stage.value}", "tender_record_advance_stage",
                           {"p_stage": stage.value, "p_earlier_stages": earlier}, must_exist=False)

    @retry_on_db_error(max_retries=3, delay=0.5, on_retry=_reinitialize)
    def find_by_key(self, key):
        result = (
            self.client.table(TABLE_NAME)
            .select("reg_number, document, created_at, updated_at")
            .eq("reg_number", key)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return self._to_record(result.data[0])

    @retry_on_db_error(max_retries=3, delay=0.5, on_retry=_reinitialize)
    def find_unprocessed(self, limit=10):
        result = (
            self.client.table(TABLE_NAME)
            .select("reg_number, document, created_at, updated_at")
            .eq("is_processed", False)
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return [self._to_record(row) for row in result.data or []]

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> TenderRecord:
        document = dict(row.get("document") or {})
        document["reg_number"] = row["reg_number"]
        document["created_at"] = row.get("created_at")
        document["updated_at"] = row.get("updated_at")
        return TenderRecord.model_validate(document)


# ==================== IN MEMORY ====================

class InMemoryTenderRecordStore(TenderRecordStore):
    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _document(self, key: str, operation: str) -> Dict[str, Any]:
        document = self._records.get(key)
        if document is None:
            raise StoreWriteError(key, operation, "record not found")
        return document

    @staticmethod
    def _resolve(document: Dict[str, Any], parts: List[str], key: str, operation: str):
        """Container holding the last path segment, plus that segment."""
        node: Any = document
        for part in parts[:-1]:
            try:
                node = node[int(part)] if isinstance(node, list) else node[part]
            except (KeyError, IndexError, ValueError, TypeError):
                raise StoreWriteError(key, operation, f"path segment '{part}' does not exist")
        last = parts[-1]
        if isinstance(node, list):
            try:
                index = int(last)
            except ValueError:
                raise StoreWriteError(key, operation, f"'{last}' is not an array index")
            if not 0 <= index <= len(node):
                raise StoreWriteError(key, operation, f"index {index} out of range")
            return node, index
        if not isinstance(node, dict):
            raise StoreWriteError(key, operation, f"cannot descend into {type(node).__name__}")
        return node, last

    def _array_at(self, document, parts, key, operation) -> List[Any]:
        container, last = self._resolve(document, parts, key, operation)
        current = container[last] if self._has(container, last) else None
        if not isinstance(current, list):
            current = []
            self._assign(container, last, current)
        return current

    @staticmethod
    def _has(container, last) -> bool:
        if isinstance(container, list):
            return last < len(container)
        return last in container

    @staticmethod
    def _assign(container, last, value):
        if isinstance(container, list) and last == len(container):
            container.append(value)
        else:
            container[last] = value

    @staticmethod
    def _touch(document):
        document["updated_at"] = datetime.now(timezone.utc).isoformat()

    def upsert_by_key(self, key, metadata):
        with self._lock:
            if key in self._records:
                return False
            document = new_document(metadata)
            now = datetime.now(timezone.utc).isoformat()
            document["created_at"] = now
            document["updated_at"] = now
            self._records[key] = document
            return True

    def set_field(self, key, path, value):
        operation = f"set {path}"
        with self._lock:
            document = self._document(key, operation)
            container, last = self._resolve(document, parse_path(path), key, operation)
            self._assign(container, last, to_json(value))
            self._touch(document)

    def append_to_array(self, key, path, value):
        operation = f"append {path}"
        with self._lock:
            document = self._document(key, operation)
            self._array_at(document, parse_path(path), key, operation).append(to_json(value))
            self._touch(document)

    def upsert_in_array(self, key, path, match_field, value):
        operation = f"upsert {path}"
        value = to_json(value)
        with self._lock:
            document = self._document(key, operation)
            array = self._array_at(document, parse_path(path), key, operation)
            for index, element in enumerate(array):
                if isinstance(element, dict) and element.get(match_field) == value.get(match_field):
                    array[index] = value
                    break
            else:
                array.append(value)
            self._touch(document)

    def extend_array(self, key, path, items):
        operation = f"extend {path}"
        with self._lock:
            document = self._document(key, operation)
            array = self._array_at(document, parse_path(path), key, operation)
            array.extend(to_json(item) for item in list(items)[len(array):])
            self._touch(document)

    def merge_fields(self, key, fields):
        with self._lock:
            document = self._document(key, "merge")
            document.update(to_json(fields))
            self._touch(document)

    def advance_stage(self, key, stage):
        with self._lock:
            document = self._records.get(key)
            if document is None:
                return False
            current = AnalysisStage(document.get("stage") or AnalysisStage.NEW.value)
            if not current.is_before(stage):
                return False
            document["stage"] = stage.value
            self._touch(document)
            return True

    def find_by_key(self, key):
        with self._lock:
            document = copy.deepcopy(self._records.get(key))
        if document is None:
            return None
        document["reg_number"] = key
        return TenderRecord.model_validate(document)

    def find_unprocessed(self, limit=10):
        with self._lock:
            keys = [key for key, doc in self._records.items() if not doc.get("is_processed")]
        records = [self.find_by_key(key) for key in keys[:limit]]
        return [record for record in records if record is not None]

    def raw_document(self, key: str) -> Optional[Dict[str, Any]]:
        """Deep copy of the stored JSON, for inspection in tests and debugging."""
        with self._lock:
            return copy.deepcopy(self._records.get(key))
