"""
Search Gateway - Google Custom Search and Yandex Search API backends,
result merging and the site filter applied before page fetching
"""
import base64
import time
import traceback
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup
from pydantic import BaseModel, field_validator

from config.settings import (
    GOOGLE_SEARCH_API_KEY,
    GOOGLE_SEARCH_ENGINE_ID,
    YANDEX_API_KEY,
    YANDEX_FOLDER_ID,
)
from config.pipeline_config import (
    ALLOWED_DOMAIN_SUFFIXES,
    BLOCKED_LINK_EXTENSIONS,
    BLOCKED_SITE_MARKERS,
    GOOGLE_RESULTS_PER_QUERY,
    SEARCH_TIMEOUT_SECONDS,
    USER_AGENT,
    YANDEX_GROUPS_ON_PAGE,
    YANDEX_POLL_ATTEMPTS,
    YANDEX_POLL_INTERVAL_SECONDS,
    YANDEX_RESULTS_PER_QUERY,
    YANDEX_SEARCH_TYPE,
)
from utils.exceptions import GatewayFailure
from utils.helpers import CancellationToken
from utils.logging_config import get_logger

logger = get_logger(__name__, "pipeline")

GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"
YANDEX_SEARCH_URL = "https://searchapi.api.cloud.yandex.net/v2/web/searchAsync"
YANDEX_OPERATION_URL = "https://operation.api.cloud.yandex.net/operations/{operation_id}"


class SearchResult(BaseModel):
    link: str
    title: str = ""
    snippet: str = ""

    @field_validator("title", "snippet", mode="before")
    @classmethod
    def _no_none(cls, value):
        return "" if value is None else str(value).strip()


class SearchBackend:
    """Base class: search(query) returns ranked results, [] on any failure."""

    name = "base"

    def search(self, query: str, token: CancellationToken | None = None) -> list[SearchResult]:
        if not query or not query.strip():
            return []
        if token:
            token.raise_if_cancelled()
        try:
            results = self._search(query.strip())
            logger.debug(f"{self.name} search '{query}': {len(results)} results")
            return results
        except requests.RequestException as e:
            logger.warning(f"{self.name} search failed for '{query}': {e}")
            return []
        except GatewayFailure as e:
            logger.warning(f"{self.name} search failed for '{query}': {e}")
            return []
        except Exception as e:
            logger.error(f"{self.name} search error for '{query}': {e}")
            traceback.print_exc()
            return []

    def _search(self, query: str) -> list[SearchResult]:
        raise NotImplementedError


class GoogleSearchBackend(SearchBackend):
    name = "google"

    def __init__(self, api_key: str = GOOGLE_SEARCH_API_KEY, engine_id: str = GOOGLE_SEARCH_ENGINE_ID,
                 num_results: int = GOOGLE_RESULTS_PER_QUERY, session: requests.Session | None = None):
        self.api_key = api_key
        self.engine_id = engine_id
        # Custom Search caps num at 10
        self.num_results = max(1, min(num_results, 10))
        self.session = session or requests.Session()

    def _search(self, query: str) -> list[SearchResult]:
        if not self.api_key or not self.engine_id:
            raise GatewayFailure("Google search is not configured")

        response = self.session.get(
            GOOGLE_SEARCH_URL,
            params={
                "key": self.api_key,
                "cx": self.engine_id,
                "q": query,
                "num": self.num_results,
            },
            timeout=SEARCH_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        return parse_google_response(response.json())


def parse_google_response(payload: dict) -> list[SearchResult]:
    results = []
    for item in payload.get("items") or []:
        link = item.get("link")
        if not link:
            continue
        results.append(SearchResult(link=link, title=item.get("title"), snippet=item.get("snippet")))
    return results


class YandexSearchBackend(SearchBackend):
    """
    Yandex Search API v2: submit an async search, poll the operation, then
    parse the base64-encoded HTML result page.
    """

    name = "yandex"

    def __init__(self, api_key: str = YANDEX_API_KEY, folder_id: str = YANDEX_FOLDER_ID,
                 num_results: int = YANDEX_RESULTS_PER_QUERY,
                 poll_attempts: int = YANDEX_POLL_ATTEMPTS,
                 poll_interval: float = YANDEX_POLL_INTERVAL_SECONDS,
                 session: requests.Session | None = None):
        self.api_key = api_key
        self.folder_id = folder_id
        self.num_results = num_results
        self.poll_attempts = poll_attempts
        self.poll_interval = poll_interval
        self.session = session or requests.Session()

    @property
    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Api-Key {self.api_key}",
        }

    def _search(self, query: str) -> list[SearchResult]:
        if not self.api_key or not self.folder_id:
            raise GatewayFailure("Yandex search is not configured")

        response = self.session.post(
            YANDEX_SEARCH_URL,
            json={
                "query": {"searchType": YANDEX_SEARCH_TYPE, "queryText": query},
                "groupSpec": {"groupsOnPage": str(YANDEX_GROUPS_ON_PAGE)},
                "folderId": self.folder_id,
                "responseFormat": "FORMAT_HTML",
                "userAgent": USER_AGENT,
            },
            headers=self._headers,
            timeout=SEARCH_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        operation_id = response.json().get("id")
        if not operation_id:
            raise GatewayFailure("Yandex did not return an operation id")

        operation = self._wait_for_operation(operation_id)
        raw_data = (operation.get("response") or {}).get("rawData")
        if not raw_data:
            raise GatewayFailure(f"Yandex operation {operation_id} has no rawData")

        html = base64.b64decode(raw_data).decode("utf-8", errors="replace")
        return parse_yandex_html(html)[: self.num_results]

    def _wait_for_operation(self, operation_id: str) -> dict:
        for attempt in range(self.poll_attempts):
            time.sleep(self.poll_interval)
            response = self.session.get(
                YANDEX_OPERATION_URL.format(operation_id=operation_id),
                headers=self._headers,
                timeout=SEARCH_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            operation = response.json()
            if operation.get("error"):
                raise GatewayFailure(f"Yandex operation {operation_id} failed: {operation['error']}")
            if operation.get("done"):
                return operation
        raise GatewayFailure(f"Yandex operation {operation_id} not done after {self.poll_attempts} polls")


def parse_yandex_html(html: str) -> list[SearchResult]:
    """Organic results from a Yandex SERP page (.organic__url / .organic__title)."""
    soup = BeautifulSoup(html, "html.parser")
    results = []
    for anchor in soup.select(".organic__url"):
        link = anchor.get("href")
        title_el = anchor.select_one(".organic__title")
        if not link or title_el is None:
            continue
        snippet = ""
        container = anchor.find_parent("li")
        if container is not None:
            snippet_el = container.select_one(".organic__content-wrapper, .text-container")
            if snippet_el is not None:
                snippet = snippet_el.get_text(" ", strip=True)
        results.append(SearchResult(link=link, title=title_el.get_text(" ", strip=True), snippet=snippet))
    return results


def merge_results(*result_lists: list[SearchResult]) -> list[SearchResult]:
    """Concatenate backend results keeping the first occurrence of each link."""
    seen = set()
    merged = []
    for results in result_lists:
        for result in results:
            key = result.link.strip().rstrip("/").lower()
            if key in seen:
                continue
            seen.add(key)
            merged.append(result)
    return merged


def is_allowed_site(link: str) -> bool:
    lowered = link.lower()
    if any(marker in lowered for marker in BLOCKED_SITE_MARKERS):
        return False

    parsed = urlparse(lowered)
    if parsed.scheme not in ("http", "https"):
        return False
    if any(parsed.path.endswith(ext) for ext in BLOCKED_LINK_EXTENSIONS):
        return False

    host = (parsed.hostname or "").rstrip(".")
    return any(host.endswith(suffix) for suffix in ALLOWED_DOMAIN_SUFFIXES)


def filter_sites(results: list[SearchResult]) -> list[SearchResult]:
    """Drop marketplaces, search engines' own pages, document links and foreign domains."""
    return [result for result in results if is_allowed_site(result.link)]


class SearchGateway:
    """Queries every configured backend and returns the merged, filtered list."""

    def __init__(self, backends: list[SearchBackend]):
        self.backends = backends

    def search(self, query: str, token: CancellationToken | None = None) -> list[SearchResult]:
        per_backend = [backend.search(query, token=token) for backend in self.backends]
        return filter_sites(merge_results(*per_backend))
