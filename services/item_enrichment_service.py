"""
Item Enrichment Sub-pipeline

For every extracted tender item, in parallel:
  queries -> search (all backends) -> site filter -> fetch + page analysis
  -> per-query checkpoint -> product synthesis

Each fan-out level (items, queries, sites) runs on its own thread pool, so a
task only ever waits on work queued in the level below it.
"""
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from contextlib import ExitStack
from pathlib import Path
from typing import Iterable, List, Optional

from config.pipeline_config import ITEM_WORKERS, MAX_QUERIES_PER_ITEM, QUERY_WORKERS, SITE_WORKERS
from models.tender import FindRequest, ParsedRequest, SiteResult, TenderExtraction, TenderItem
from services.prompts import PAGE_ANALYSIS_INSTRUCTION, build_query_prompt, build_synthesis_prompt
from utils.exceptions import PipelineCancelled, StoreWriteError
from utils.helpers import CancellationToken, log_execution_time, split_query_lines
from utils.logging_config import get_logger

logger = get_logger(__name__, "pipeline")


class _Pools:
    def __init__(self, items: ThreadPoolExecutor, queries: ThreadPoolExecutor, sites: ThreadPoolExecutor,
                 scratch_dir: Path):
        self.items = items
        self.queries = queries
        self.sites = sites
        self.scratch_dir = scratch_dir


def _gather(futures: Iterable[Future], label: str) -> list:
    """
    Wait for every future and return the successful results in completion order.

    Sibling failures are logged and skipped; cancellation and store failures
    are re-raised once all siblings have finished.
    """
    results = []
    fatal: Optional[Exception] = None
    for future in as_completed(list(futures)):
        try:
            results.append(future.result())
        except (PipelineCancelled, StoreWriteError) as e:
            if fatal is None or isinstance(e, StoreWriteError):
                fatal = e
        except Exception as e:
            logger.error(f"{label} branch failed: {e}", exc_info=True)
    if fatal is not None:
        raise fatal
    return results


class ItemEnrichmentService:
    def __init__(self, store, gateway, search_gateway, site_fetcher,
                 item_workers: int = ITEM_WORKERS, query_workers: int = QUERY_WORKERS,
                 site_workers: int = SITE_WORKERS, max_queries: int = MAX_QUERIES_PER_ITEM):
        self.store = store
        self.gateway = gateway
        self.search_gateway = search_gateway
        self.site_fetcher = site_fetcher
        self.item_workers = item_workers
        self.query_workers = query_workers
        self.site_workers = site_workers
        self.max_queries = max_queries

    @log_execution_time("Item enrichment", logger)
    def enrich_items(self, key: str, extraction: TenderExtraction,
                     token: CancellationToken | None = None) -> int:
        """
        Enrich every item of the extraction and checkpoint results on the record.

        Returns the number of items that received a product analysis. Raises
        StoreWriteError if any checkpoint failed and PipelineCancelled if the
        run was cancelled; in both cases all in-flight branches finish first.
        """
        items = list(extraction.items)
        if not items:
            logger.info(f"Tender {key}: no items to enrich")
            return 0

        slots = self._ensure_slots(key, items)
        scratch_dir = self.site_fetcher.new_run_dir(key)

        try:
            with ExitStack() as stack:
                pools = _Pools(
                    items=stack.enter_context(ThreadPoolExecutor(
                        max_workers=max(1, min(self.item_workers, len(items))), thread_name_prefix="item")),
                    queries=stack.enter_context(ThreadPoolExecutor(
                        max_workers=max(1, self.query_workers), thread_name_prefix="query")),
                    sites=stack.enter_context(ThreadPoolExecutor(
                        max_workers=max(1, self.site_workers), thread_name_prefix="site")),
                    scratch_dir=scratch_dir,
                )
                futures = [
                    pools.items.submit(self.enrich_item, key, index, item, slots[index], pools, token)
                    for index, item in enumerate(items)
                ]
                outcomes = _gather(futures, "item")
        finally:
            self.site_fetcher.cleanup(scratch_dir)

        enriched = sum(1 for outcome in outcomes if outcome)
        logger.info(f"Tender {key}: {enriched}/{len(items)} items enriched")
        return enriched

    def _ensure_slots(self, key: str, items: List[TenderItem]) -> List[Optional[FindRequest]]:
        """
        Create find_requests slots for items that do not have one yet, in one
        write. Existing slots (and their queries) are kept as they are.
        """
        placeholders = [FindRequest(item_name=item.name) for item in items]
        self.store.extend_array(key, "find_requests", placeholders)

        record = self.store.find_by_key(key)
        existing = record.find_requests if record else []
        return [existing[i] if i < len(existing) else None for i in range(len(items))]

    def enrich_item(self, key: str, index: int, item: TenderItem, slot: Optional[FindRequest],
                    pools: _Pools, token: CancellationToken | None = None) -> bool:
        if token:
            token.raise_if_cancelled()

        queries = list(slot.search_queries) if slot and slot.search_queries else []
        if queries:
            logger.info(f"Item {index} '{item.name}': reusing {len(queries)} stored queries")
        else:
            answer = self.gateway.generate_queries(build_query_prompt(item, self.max_queries), token=token)
            queries = split_query_lines(answer, limit=self.max_queries)
            if not queries:
                logger.warning(f"Item {index} '{item.name}': no search queries generated, skipping")
                return False
            self.store.set_field(key, f"find_requests.{index}.search_queries", queries)

        futures = [
            pools.queries.submit(self.process_query, key, index, query, pools, token)
            for query in queries
        ]
        per_query = _gather(futures, f"item {index} query")

        findings = [
            (site.link, site.content)
            for results in per_query
            for site in results
            if site.content
        ]
        if not findings:
            logger.info(f"Item {index} '{item.name}': no page content collected, no synthesis")
            return False

        analysis = self.gateway.synthesize_product(build_synthesis_prompt(item, findings), token=token)
        if not analysis:
            logger.warning(f"Item {index} '{item.name}': product synthesis returned nothing")
            return False

        self.store.set_field(key, f"find_requests.{index}.product_analysis", analysis)
        return True

    def process_query(self, key: str, index: int, query: str, pools: _Pools,
                      token: CancellationToken | None = None) -> List[SiteResult]:
        if token:
            token.raise_if_cancelled()

        candidates = self.search_gateway.search(query, token=token)
        logger.debug(f"Item {index} query '{query}': {len(candidates)} candidate sites")

        futures = [
            pools.sites.submit(self.process_site, candidate, pools.scratch_dir, token)
            for candidate in candidates
        ]
        # Keep candidate order in the stored list regardless of completion order
        by_link = {result.link: result for result in _gather(futures, f"item {index} site")}
        results = [by_link[c.link] for c in candidates if c.link in by_link]

        self.store.upsert_in_array(
            key,
            f"find_requests.{index}.parsed_request",
            "request_name",
            ParsedRequest(request_name=query, response_from_websites=results),
        )
        return results

    def process_site(self, candidate, scratch_dir: Path, token: CancellationToken | None = None) -> SiteResult:
        """One SiteResult per candidate; content is "" when fetch or analysis fails."""
        if token:
            token.raise_if_cancelled()

        content = ""
        try:
            saved = self.site_fetcher.fetch_and_save(candidate.link, token=token, run_dir=scratch_dir)
            if saved is not None:
                content = self.gateway.analyze_page(saved, PAGE_ANALYSIS_INSTRUCTION, token=token) or ""
        except PipelineCancelled:
            raise
        except Exception as e:
            logger.warning(f"Site {candidate.link} failed: {e}")
            content = ""

        return SiteResult(link=candidate.link, title=candidate.title, snippet=candidate.snippet, content=content)
