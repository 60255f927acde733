from types import SimpleNamespace

import pytest
from postgrest.exceptions import APIError

from models.tender import AnalysisStage, FindRequest, ParsedRequest, SiteResult
from services.tender_record_service import SupabaseTenderRecordStore, parse_path
from utils.exceptions import StoreWriteError

KEY = "0173200001424000123"


def test_upsert_is_insert_only(store):
    assert store.upsert_by_key(KEY, {"name": "Supply of paper"}) is True
    assert store.upsert_by_key(KEY, {"name": "Changed"}) is False

    record = store.find_by_key(KEY)
    assert record.metadata.name == "Supply of paper"
    assert record.stage == AnalysisStage.NEW
    assert record.find_requests == []
    assert not record.is_processed


def test_set_field_nested_paths(store):
    store.upsert_by_key(KEY, {})
    store.extend_array(KEY, "find_requests", [FindRequest(item_name="Paper A4")])

    store.set_field(KEY, "find_requests.0.search_queries", ["paper a4 buy", "paper a4 price"])
    store.set_field(KEY, "metadata.region", "Moscow")

    record = store.find_by_key(KEY)
    assert record.find_requests[0].search_queries == ["paper a4 buy", "paper a4 price"]
    assert record.metadata.region == "Moscow"


def test_writes_to_missing_record_or_path_fail(store):
    with pytest.raises(StoreWriteError):
        store.set_field(KEY, "final_report", "text")

    store.upsert_by_key(KEY, {})
    with pytest.raises(StoreWriteError):
        store.set_field(KEY, "find_requests.5.search_queries", [])


def test_append_and_keyed_upsert(store):
    store.upsert_by_key(KEY, {})
    store.extend_array(KEY, "find_requests", [FindRequest(item_name="Paper A4")])
    path = "find_requests.0.parsed_request"

    store.append_to_array(KEY, path, ParsedRequest(request_name="q1"))
    store.upsert_in_array(KEY, path, "request_name", ParsedRequest(request_name="q2"))
    store.upsert_in_array(KEY, path, "request_name", ParsedRequest(
        request_name="q1", response_from_websites=[SiteResult(link="https://a.ru", content="facts")]))

    parsed = store.find_by_key(KEY).find_requests[0].parsed_request
    assert [p.request_name for p in parsed] == ["q1", "q2"]
    assert parsed[0].response_from_websites[0].content == "facts"


def test_extend_array_only_appends_missing_tail(store):
    store.upsert_by_key(KEY, {})
    store.extend_array(KEY, "find_requests", [FindRequest(item_name="A")])
    store.set_field(KEY, "find_requests.0.search_queries", ["kept"])

    store.extend_array(KEY, "find_requests", [FindRequest(item_name="A"), FindRequest(item_name="B")])
    store.extend_array(KEY, "find_requests", [FindRequest(item_name="A"), FindRequest(item_name="B")])

    requests = store.find_by_key(KEY).find_requests
    assert [fr.item_name for fr in requests] == ["A", "B"]
    assert requests[0].search_queries == ["kept"]


def test_advance_stage_is_forward_only(store):
    store.upsert_by_key(KEY, {})

    assert store.advance_stage(KEY, AnalysisStage.EXTRACTED) is True
    assert store.advance_stage(KEY, AnalysisStage.FILES_NORMALIZED) is False
    assert store.advance_stage(KEY, AnalysisStage.EXTRACTED) is False
    assert store.find_by_key(KEY).stage == AnalysisStage.EXTRACTED
    assert store.advance_stage("unknown", AnalysisStage.EXTRACTED) is False


def test_merge_and_find_unprocessed(store):
    store.upsert_by_key("1", {})
    store.upsert_by_key("2", {})
    store.upsert_by_key("3", {})
    store.merge_fields("2", {"final_report": "done", "is_processed": True,
                             "stage": AnalysisStage.REPORT_GENERATED})

    assert [r.reg_number for r in store.find_unprocessed()] == ["1", "3"]
    assert [r.reg_number for r in store.find_unprocessed(limit=1)] == ["1"]
    assert store.raw_document("2")["stage"] == "report_generated"


def test_parse_path():
    assert parse_path("find_requests.0.parsed_request") == ["find_requests", "0", "parsed_request"]
    with pytest.raises(ValueError):
        parse_path("")


class FakeRpc:
    def __init__(self, client, function, params):
        self.client = client
        self.function = function
        self.params = params

    def execute(self):
        self.client.calls.append((self.function, self.params))
        if isinstance(self.client.data, Exception):
            raise self.client.data
        return SimpleNamespace(data=self.client.data)


class FakeSupabase:
    def __init__(self, data=True):
        self.data = data
        self.calls = []

    def rpc(self, function, params):
        return FakeRpc(self, function, params)


def test_supabase_store_calls_atomic_functions():
    client = FakeSupabase(data=True)
    store = SupabaseTenderRecordStore(client_factory=lambda: client)

    assert store.upsert_by_key(KEY, {"name": "Supply of paper"}) is True
    store.upsert_in_array(KEY, "find_requests.1.parsed_request", "request_name",
                          ParsedRequest(request_name="q1"))
    store.advance_stage(KEY, AnalysisStage.EXTRACTED)

    function, params = client.calls[0]
    assert function == "tender_record_upsert"
    assert params["p_reg_number"] == KEY
    assert params["p_document"]["stage"] == "new"
    assert params["p_document"]["metadata"]["name"] == "Supply of paper"

    function, params = client.calls[1]
    assert function == "tender_record_upsert_keyed"
    assert params["p_path"] == ["find_requests", "1", "parsed_request"]
    assert params["p_match_field"] == "request_name"
    assert params["p_value"] == {"request_name": "q1", "response_from_websites": []}

    function, params = client.calls[2]
    assert function == "tender_record_advance_stage"
    assert params["p_earlier_stages"] == ["new", "files_normalized"]


def test_supabase_store_missing_record_raises():
    store = SupabaseTenderRecordStore(client_factory=lambda: FakeSupabase(data=False))

    assert store.upsert_by_key(KEY, {}) is False
    with pytest.raises(StoreWriteError) as exc_info:
        store.set_field(KEY, "final_report", "text")
    assert "record not found" in str(exc_info.value)


def test_supabase_store_wraps_api_errors():
    error = APIError({"message": "permission denied", "code": "42501"})
    store = SupabaseTenderRecordStore(client_factory=lambda: FakeSupabase(data=error))

    with pytest.raises(StoreWriteError) as exc_info:
        store.merge_fields(KEY, {"is_processed": True})
    assert exc_info.value.operation == "merge"
