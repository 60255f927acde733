"""
Tenderland discovery feed - scheduled exports of new tenders and on-demand
lookup of a single tender by registration number
"""
from typing import List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config.settings import (
    TENDERLAND_API_KEY,
    TENDERLAND_AUTOSEARCH_ID,
    TENDERLAND_BASE_URL,
    TENDERLAND_BATCH_SIZE,
    TENDERLAND_LIMIT,
)
from config.pipeline_config import DOWNLOAD_VERIFY_SSL, SEARCH_TIMEOUT_SECONDS
from models.tender import TenderCustomer, TenderMetadata
from utils.exceptions import StoreWriteError
from utils.logging_config import get_logger

logger = get_logger(__name__, "worker")


class _TenderlandModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TenderlandExportTask(_TenderlandModel):
    id: int = Field(alias="Id")
    success: bool = Field(alias="Success")
    total_count: int = Field(default=0, alias="TotalCount")
    create_date: Optional[str] = Field(default=None, alias="CreateDate")


class TenderlandCustomer(_TenderlandModel):
    lot_customer_short_name: str = Field(default="", alias="lotCustomerShortName")


class TenderlandTender(_TenderlandModel):
    reg_number: str = Field(alias="regNumber")
    name: str = ""
    begin_price: Optional[float] = Field(default=None, alias="beginPrice")
    publish_date: Optional[str] = Field(default=None, alias="publishDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    region: Optional[str] = None
    type_name: Optional[str] = Field(default=None, alias="typeName")
    lot_categories: List[str] = Field(default_factory=list, alias="lotCategories")
    files: Optional[str] = None
    module: Optional[str] = None
    etp_link: Optional[str] = Field(default=None, alias="etpLink")
    customers: List[TenderlandCustomer] = Field(default_factory=list)

    def to_metadata(self, ordinal_number: Optional[int] = None) -> TenderMetadata:
        return TenderMetadata(
            ordinal_number=ordinal_number,
            name=self.name,
            begin_price=self.begin_price,
            publish_date=self.publish_date,
            end_date=self.end_date,
            region=self.region,
            type_name=self.type_name,
            lot_categories=self.lot_categories,
            files=self.files,
            module=self.module,
            etp_link=self.etp_link,
            customers=[TenderCustomer(lot_customer_short_name=c.lot_customer_short_name) for c in self.customers],
        )


class TenderlandItem(_TenderlandModel):
    ordinal_number: Optional[int] = Field(default=None, alias="ordinalNumber")
    tender: TenderlandTender


class TenderlandTendersResponse(_TenderlandModel):
    items: List[TenderlandItem] = Field(default_factory=list)


class TenderlandService:
    def __init__(self, store, api_key: str = TENDERLAND_API_KEY, base_url: str = TENDERLAND_BASE_URL,
                 session: requests.Session | None = None):
        self.store = store
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def _get(self, path: str, params: dict) -> dict:
        response = self.session.get(
            f"{self.base_url}{path}",
            params={**params, "apiKey": self.api_key},
            timeout=SEARCH_TIMEOUT_SECONDS,
            verify=DOWNLOAD_VERIFY_SSL,
        )
        response.raise_for_status()
        return response.json()

    def create_export_task(self) -> Optional[TenderlandExportTask]:
        logger.info(
            f"Creating Tenderland export: autosearchId={TENDERLAND_AUTOSEARCH_ID} "
            f"limit={TENDERLAND_LIMIT} batchSize={TENDERLAND_BATCH_SIZE}"
        )
        try:
            data = self._get("/Export/Create", {
                "autosearchId": TENDERLAND_AUTOSEARCH_ID,
                "limit": TENDERLAND_LIMIT,
                "batchSize": TENDERLAND_BATCH_SIZE,
                "format": "json",
            })
            task = TenderlandExportTask.model_validate(data)
            logger.info(f"Export task {task.id} created ({task.total_count} tenders)")
            return task
        except (requests.RequestException, ValueError, ValidationError) as e:
            logger.error(f"Failed to create Tenderland export: {e}")
            return None

    def get_tenders_by_task_id(self, task_id: int) -> Optional[TenderlandTendersResponse]:
        try:
            data = self._get("/Export/Get", {"exportId": task_id})
            return TenderlandTendersResponse.model_validate(data)
        except (requests.RequestException, ValueError, ValidationError) as e:
            logger.error(f"Failed to get Tenderland export {task_id}: {e}")
            return None

    def fetch_new_tenders(self) -> int:
        """Run one export and create records for tenders seen for the first time."""
        task = self.create_export_task()
        if not task:
            return 0

        response = self.get_tenders_by_task_id(task.id)
        if not response:
            return 0

        created = 0
        for item in response.items:
            tender = item.tender
            try:
                if self.store.upsert_by_key(tender.reg_number, tender.to_metadata(item.ordinal_number)):
                    created += 1
            except StoreWriteError as e:
                logger.error(f"Failed to store tender {tender.reg_number} (#{item.ordinal_number}): {e}")

        logger.info(f"Tenderland export {task.id}: {len(response.items)} tenders, {created} new")
        return created

    def get_tender_by_reg_number(self, reg_number: str, export_view_id: int = 1) -> Optional[TenderlandTender]:
        logger.info(f"Looking up tender {reg_number} in Tenderland")
        try:
            data = self._get("/Search/Get", {"keys": reg_number, "exportViewId": export_view_id})
            response = TenderlandTendersResponse.model_validate(data)
        except (requests.RequestException, ValueError, ValidationError) as e:
            logger.warning(f"Tender {reg_number} lookup failed: {e}")
            return None

        if not response.items:
            logger.info(f"Tender {reg_number} not found in Tenderland")
            return None
        return response.items[0].tender
