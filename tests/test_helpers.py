import time

import httpx
import pytest

from utils.db_utils import is_retryable_db_error, retry_on_db_error
from utils.exceptions import GatewayTimeout, PipelineCancelled
from utils.helpers import CancellationToken, call_with_timeout, parse_fenced_json, split_query_lines


def test_parse_fenced_json():
    assert parse_fenced_json('Result:\n```json\n{"items": []}\n```') == {"items": []}
    assert parse_fenced_json('{"items": []}') is None
    assert parse_fenced_json("```json\n{broken\n```") is None
    assert parse_fenced_json("") is None


def test_split_query_lines_strips_markers_and_duplicates():
    text = '1. laptop 15.6 buy\n2) "laptop 16gb price"\n- Laptop 15.6 buy\n\n```\n* monitor 24'

    assert split_query_lines(text) == ["laptop 15.6 buy", "laptop 16gb price", "monitor 24"]
    assert split_query_lines(text, limit=2) == ["laptop 15.6 buy", "laptop 16gb price"]
    assert split_query_lines("") == []


def test_call_with_timeout():
    assert call_with_timeout(lambda a, b: a + b, 1, 2, 3) == 5

    with pytest.raises(GatewayTimeout):
        call_with_timeout(time.sleep, 0.05, 1)

    def _fail():
        raise KeyError("boom")

    with pytest.raises(KeyError):
        call_with_timeout(_fail, 1)


def test_cancellation_token():
    token = CancellationToken()
    token.raise_if_cancelled()
    assert not token.wait(0.01)

    token.cancel("shutdown")

    assert token.cancelled
    assert token.wait(5)
    with pytest.raises(PipelineCancelled, match="shutdown"):
        token.raise_if_cancelled()


def test_retry_on_db_error_retries_connection_errors_only():
    calls = []
    reinitialized = []

    @retry_on_db_error(max_retries=2, delay=0, on_retry=lambda: reinitialized.append(True))
    def flaky():
        calls.append(True)
        if len(calls) < 3:
            raise httpx.ConnectError("connection refused")
        return "ok"

    assert flaky() == "ok"
    assert len(calls) == 3
    assert len(reinitialized) == 2

    @retry_on_db_error(max_retries=2, delay=0)
    def broken():
        calls.append(True)
        raise ValueError("bad payload")

    calls.clear()
    with pytest.raises(ValueError):
        broken()
    assert len(calls) == 1
    assert not is_retryable_db_error(ValueError("bad payload"))
