"""
General helper functions
"""
import json
import re
import threading
import time
from functools import wraps
from typing import Any, Callable

from utils.exceptions import GatewayTimeout, PipelineCancelled

_FENCED_JSON_RE = re.compile(r"```json[ \t]*\r?\n(.*?)\r?\n[ \t]*```", re.DOTALL)
_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*+•]|\d+[.)])\s+")
_UNSAFE_NAME_RE = re.compile(r"[^\w.\-]+", re.UNICODE)


class CancellationToken:
    """Cooperative cancellation flag shared by every branch of one pipeline run."""

    def __init__(self):
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled"):
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; returns True early once cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise PipelineCancelled(self.reason or "cancelled")


def call_with_timeout(func: Callable[..., Any], timeout: float, *args, **kwargs) -> Any:
    """Run func in a daemon thread and wait at most `timeout` seconds.

    Raises GatewayTimeout if the call is still running; the thread is left to
    finish on its own. Exceptions raised by func are re-raised here.
    """
    result = [None]
    error = [None]

    def api_call():
        try:
            result[0] = func(*args, **kwargs)
        except Exception as e:
            error[0] = e

    thread = threading.Thread(target=api_call)
    thread.daemon = True
    thread.start()
    thread.join(timeout=timeout)

    if thread.is_alive():
        raise GatewayTimeout(f"{getattr(func, '__name__', 'call')} timed out after {timeout}s")

    if error[0]:
        raise error[0]

    return result[0]


def log_execution_time(description: str, logger=None):
    """Decorator logging how long the wrapped call took, including failures."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                value = func(*args, **kwargs)
            except Exception:
                if logger:
                    logger.error(f"{description} failed after {time.perf_counter() - start:.2f} seconds")
                raise
            if logger:
                logger.info(f"{description} took {time.perf_counter() - start:.2f} seconds")
            return value
        return wrapper
    return decorator


def parse_fenced_json(text: str) -> Any | None:
    """Return the JSON payload of the first ```json fenced block, or None.

    Only a fenced block counts; bare JSON elsewhere in the text is ignored.
    """
    if not text:
        return None
    match = _FENCED_JSON_RE.search(text)
    if not match:
        return None
    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError:
        return None


def split_query_lines(text: str, limit: int | None = None) -> list[str]:
    """Split a newline-delimited model answer into clean, unique lines."""
    if not text:
        return []
    lines = []
    seen = set()
    for raw in text.splitlines():
        line = _LIST_MARKER_RE.sub("", raw).strip().strip('"').strip("`").strip()
        if not line or line.startswith("```"):
            continue
        if line.lower() in seen:
            continue
        seen.add(line.lower())
        lines.append(line)
    if limit is not None:
        return lines[:limit]
    return lines


def safe_name(value: str) -> str:
    """Filesystem-safe single path component."""
    cleaned = _UNSAFE_NAME_RE.sub("_", value).strip("._")
    return cleaned or "file"


def truncate_text(text: str, max_chars: int) -> str:
    if text and len(text) > max_chars:
        return text[:max_chars]
    return text or ""
