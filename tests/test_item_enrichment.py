from pathlib import Path

import pytest

from models.tender import TenderExtraction
from services.item_enrichment_service import ItemEnrichmentService
from services.search_service import SearchGateway
from services.site_fetcher_service import SiteFetcher
from utils.exceptions import PipelineCancelled
from utils.helpers import CancellationToken
from fakes import FakeBackend, FakeGateway, FakeResponse, FakeSession, FakeSiteFetcher

KEY = "0373100000124000001"

EXTRACTION = TenderExtraction.model_validate({
    "tender": {"name": "Supply of computer equipment", "number": KEY},
    "items": [
        {"name": "Laptop", "quantity": {"value": "3", "unit": "pcs"},
         "specifications": {"Screen": "15.6 inch", "RAM": "16 GB"}},
        {"name": "Cable tie", "quantity": {"value": "100", "unit": "pcs"}},
    ],
})

GOOGLE = FakeBackend("google", {
    "laptop 15.6 buy": [
        {"link": "https://shop-one.ru/laptop", "title": "Shop one", "snippet": "Laptop 15.6"},
        {"link": "https://www.ozon.ru/product/laptop", "title": "Ozon", "snippet": "Laptop"},
        {"link": "https://broken-shop.ru/laptop", "title": "Broken", "snippet": "Down"},
    ],
})
YANDEX = FakeBackend("yandex", {
    "laptop 16gb price": [
        {"link": "https://shop-two.ru/item/1", "title": "Shop two", "snippet": "16 GB"},
        {"link": "https://магазин.рф/laptop", "title": "Magazin", "snippet": "Laptop"},
    ],
})


def _service(store, gateway, fetcher):
    return ItemEnrichmentService(
        store, gateway, SearchGateway([GOOGLE, YANDEX]), fetcher,
        item_workers=4, query_workers=4, site_workers=4,
    )


def _gateway():
    return FakeGateway(queries={"Laptop": "1. laptop 15.6 buy\n2. laptop 16gb price\n"})


def test_enrichment_checkpoints_every_query(store):
    store.upsert_by_key(KEY, {"name": "Supply of computer equipment"})
    gateway = _gateway()
    fetcher = FakeSiteFetcher(unreachable={"https://broken-shop.ru/laptop"})

    enriched = _service(store, gateway, fetcher).enrich_items(KEY, EXTRACTION)

    record = store.find_by_key(KEY)
    assert enriched == 1
    assert [fr.item_name for fr in record.find_requests] == ["Laptop", "Cable tie"]

    laptop = record.find_requests[0]
    assert laptop.search_queries == ["laptop 15.6 buy", "laptop 16gb price"]
    assert sorted(p.request_name for p in laptop.parsed_request) == ["laptop 15.6 buy", "laptop 16gb price"]

    sites = [site for p in laptop.parsed_request for site in p.response_from_websites]
    assert len(sites) == 4
    assert all(site.link and site.title and site.snippet for site in sites)
    assert "https://www.ozon.ru/product/laptop" not in {site.link for site in sites}

    by_link = {site.link: site for site in sites}
    assert by_link["https://broken-shop.ru/laptop"].content == ""
    assert by_link["https://shop-one.ru/laptop"].content.startswith("facts from")
    assert laptop.product_analysis == "market overview"
    assert fetcher.cleanups == 1


def test_item_without_queries_keeps_its_slot(store):
    store.upsert_by_key(KEY, {})
    gateway = _gateway()

    _service(store, gateway, FakeSiteFetcher()).enrich_items(KEY, EXTRACTION)

    record = store.find_by_key(KEY)
    cable = record.find_requests[1]
    assert cable.item_name == "Cable tie"
    assert cable.search_queries == []
    assert cable.parsed_request == []
    assert cable.product_analysis is None


def test_failed_page_analysis_gives_empty_content(store):
    store.upsert_by_key(KEY, {})
    failing = FakeSiteFetcher.page_name("https://shop-two.ru/item/1")
    gateway = FakeGateway(queries={"Laptop": "laptop 16gb price"}, failing_pages={failing})

    _service(store, gateway, FakeSiteFetcher()).enrich_items(KEY, EXTRACTION)

    parsed = store.find_by_key(KEY).find_requests[0].parsed_request
    contents = {site.link: site.content for site in parsed[0].response_from_websites}
    assert contents["https://shop-two.ru/item/1"] == ""
    assert contents["https://магазин.рф/laptop"] != ""


def test_rerun_reuses_queries_and_never_duplicates(store):
    store.upsert_by_key(KEY, {})
    gateway = _gateway()
    service = _service(store, gateway, FakeSiteFetcher())

    service.enrich_items(KEY, EXTRACTION)
    service.enrich_items(KEY, EXTRACTION)

    record = store.find_by_key(KEY)
    assert len(record.find_requests) == 2
    assert len(record.find_requests[0].parsed_request) == 2
    assert len(record.find_requests[0].search_queries) == 2
    # Laptop queries come from the record on the second run; Cable tie is asked twice
    laptop_prompts = [arg for name, arg in gateway.calls
                      if name == "generate_queries" and "Product name: Laptop\n" in arg]
    assert len(laptop_prompts) == 1


def test_cancelled_run_dispatches_no_work(store):
    store.upsert_by_key(KEY, {})
    gateway = _gateway()
    fetcher = FakeSiteFetcher()
    token = CancellationToken()
    token.cancel("shutdown")

    with pytest.raises(PipelineCancelled):
        _service(store, gateway, fetcher).enrich_items(KEY, EXTRACTION, token=token)

    assert gateway.calls == []
    assert fetcher.fetched == []
    assert fetcher.cleanups == 1


def test_no_items_is_a_noop(store):
    store.upsert_by_key(KEY, {})
    empty = TenderExtraction.model_validate({"items": []})

    assert _service(store, _gateway(), FakeSiteFetcher()).enrich_items(KEY, empty) == 0
    assert store.find_by_key(KEY).find_requests == []


class InterleavingGateway(FakeGateway):
    """Runs another tender's enrichment to completion while a page is being analyzed."""

    def __init__(self, other_run, **kwargs):
        super().__init__(**kwargs)
        self.other_run = other_run
        self.page_on_disk = []

    def analyze_page(self, path, instruction, token=None):
        self.other_run()
        page = Path(path)
        self.page_on_disk.append(page.exists())
        return page.read_text(encoding="utf-8") if page.exists() else ""


def test_overlapping_runs_keep_their_own_scratch_pages(store, tmp_path):
    session = FakeSession(get=FakeResponse(content=b"<html><body><p>Laptop 50 000 rub</p></body></html>",
                                           headers={"content-type": "text/html"}))
    fetcher = SiteFetcher(scratch_dir=tmp_path / "html", session=session)
    search = SearchGateway([FakeBackend("google", {"laptop buy": [
        {"link": "https://shop.ru/laptop", "title": "Shop", "snippet": "Laptop"},
    ]})])
    store.upsert_by_key("A", {})
    store.upsert_by_key("B", {})

    cable_only = TenderExtraction.model_validate({"items": [{"name": "Cable tie"}]})
    laptop_only = TenderExtraction.model_validate({"items": [{"name": "Laptop"}]})
    other = ItemEnrichmentService(store, FakeGateway(), search, fetcher)
    gateway = InterleavingGateway(lambda: other.enrich_items("B", cable_only), queries={"Laptop": "laptop buy"})

    ItemEnrichmentService(store, gateway, search, fetcher).enrich_items("A", laptop_only)

    assert gateway.page_on_disk == [True]
    site = store.find_by_key("A").find_requests[0].parsed_request[0].response_from_websites[0]
    assert "Laptop 50 000 rub" in site.content
    assert not (tmp_path / "html" / "A").exists()
    assert not (tmp_path / "html" / "B").exists()
