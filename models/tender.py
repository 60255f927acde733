"""
Tender record and extraction schema models (pydantic v2)

TenderRecord is the stored aggregate, one per registration number.
TenderExtraction is the structured result of document analysis; it is
immutable once produced.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AnalysisStage(str, Enum):
    """Forward-only analysis states of a tender"""
    NEW = "new"
    FILES_NORMALIZED = "files_normalized"
    EXTRACTED = "extracted"
    ITEMS_ENRICHED = "items_enriched"
    REPORT_GENERATED = "report_generated"

    @property
    def order(self) -> int:
        return list(AnalysisStage).index(self)

    def is_before(self, other: "AnalysisStage") -> bool:
        return self.order < other.order


# ==================== EXTRACTION SCHEMA ====================

class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


def _to_optional_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace(" ", "").replace(" ", "").replace(",", ".")
    try:
        return float(text)
    except ValueError:
        return None


class TenderInfo(_Frozen):
    name: str = ""
    number: str = ""
    type: str = ""
    price: str = ""
    currency: str = ""
    application_deadline: str = ""
    auction_date: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _stringify(cls, value):
        return "" if value is None else str(value)


class CustomerInfo(_Frozen):
    name: str = ""
    inn: str = ""
    ogrn: str = ""
    address: str = ""
    contacts: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _stringify(cls, value):
        return "" if value is None else str(value)


class DeliveryPeriod(_Frozen):
    type: str = ""
    value: str = ""


class PaymentTerms(_Frozen):
    prepayment_percent: Optional[float] = None
    payment_days: Optional[float] = None

    @field_validator("*", mode="before")
    @classmethod
    def _numeric(cls, value):
        return _to_optional_float(value)


class SecurityAmount(_Frozen):
    amount: Optional[float] = None
    percent: Optional[float] = None

    @field_validator("*", mode="before")
    @classmethod
    def _numeric(cls, value):
        return _to_optional_float(value)


class DeliveryTerms(_Frozen):
    delivery_period: DeliveryPeriod = Field(default_factory=DeliveryPeriod)
    delivery_location: str = ""
    payment_terms: PaymentTerms = Field(default_factory=PaymentTerms)
    application_security: SecurityAmount = Field(default_factory=SecurityAmount)
    contract_security: SecurityAmount = Field(default_factory=SecurityAmount)


class Quantity(_Frozen):
    value: str = ""
    unit: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _stringify(cls, value):
        return "" if value is None else str(value)


class TenderItem(_Frozen):
    """One product/service line of a tender"""
    name: str
    quantity: Quantity = Field(default_factory=Quantity)
    specifications: Dict[str, str] = Field(default_factory=dict)
    requirements: List[str] = Field(default_factory=list)
    estimated_price: Optional[float] = None

    @field_validator("specifications", mode="before")
    @classmethod
    def _stringify_specs(cls, value):
        if not value:
            return {}
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        raise ValueError("specifications must be a mapping")

    @field_validator("requirements", mode="before")
    @classmethod
    def _listify(cls, value):
        if not value:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value]

    @field_validator("estimated_price", mode="before")
    @classmethod
    def _price(cls, value):
        return _to_optional_float(value)

    def describe(self) -> str:
        """Plain-text description of the item used for query generation."""
        specs = ", ".join(f"\n{key}: {value}" for key, value in self.specifications.items())
        return (
            f"Product name: {self.name}\n"
            f"Technical specifications: {specs}\n"
        )


class SpecialConditions(_Frozen):
    requirements_for_participants: List[str] = Field(default_factory=list)
    penalties: List[str] = Field(default_factory=list)
    other_conditions: List[str] = Field(default_factory=list)


class TenderExtraction(_Frozen):
    """Structured tender analysis produced by the extraction stage"""
    tender: TenderInfo = Field(default_factory=TenderInfo)
    customer: CustomerInfo = Field(default_factory=CustomerInfo)
    delivery_terms: DeliveryTerms = Field(default_factory=DeliveryTerms)
    items: List[TenderItem]
    special_conditions: SpecialConditions = Field(default_factory=SpecialConditions)


# ==================== STORED RECORD ====================

class TenderCustomer(BaseModel):
    model_config = ConfigDict(extra="allow")
    lot_customer_short_name: str = ""


class TenderMetadata(BaseModel):
    """Descriptive fields from the discovery feed, written once at creation"""
    model_config = ConfigDict(extra="allow")

    ordinal_number: Optional[int] = None
    name: str = ""
    begin_price: Optional[float] = None
    publish_date: Optional[str] = None
    end_date: Optional[str] = None
    region: Optional[str] = None
    type_name: Optional[str] = None
    lot_categories: List[str] = Field(default_factory=list)
    files: Optional[str] = None
    module: Optional[str] = None
    etp_link: Optional[str] = None
    customers: List[TenderCustomer] = Field(default_factory=list)


class SiteResult(BaseModel):
    """One candidate web page; content is "" whenever fetch or analysis failed"""
    link: str
    title: str = ""
    snippet: str = ""
    content: str = ""

    @field_validator("title", "snippet", "content", mode="before")
    @classmethod
    def _no_none(cls, value):
        return "" if value is None else value


class ParsedRequest(BaseModel):
    request_name: str
    response_from_websites: List[SiteResult] = Field(default_factory=list)


class FindRequest(BaseModel):
    item_name: str
    search_queries: List[str] = Field(default_factory=list)
    parsed_request: List[ParsedRequest] = Field(default_factory=list)
    product_analysis: Optional[str] = None


class AnalyzedFile(BaseModel):
    file: str
    response: str = ""


class TenderRecord(BaseModel):
    reg_number: str
    metadata: TenderMetadata = Field(default_factory=TenderMetadata)
    stage: AnalysisStage = AnalysisStage.NEW
    analyzed_files: List[AnalyzedFile] = Field(default_factory=list)
    extracted_analysis: Optional[TenderExtraction] = None
    find_requests: List[FindRequest] = Field(default_factory=list)
    is_processed: bool = False
    final_report: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def items(self) -> List[TenderItem]:
        if self.extracted_analysis is None:
            return []
        return list(self.extracted_analysis.items)

    def product_analyses(self) -> List[str]:
        """Per-item synthesis results in item order (missing ones skipped)."""
        return [fr.product_analysis for fr in self.find_requests if fr.product_analysis]


class AnalysisOutcome(BaseModel):
    """Result of one full analysis run as reported to callers"""
    reg_number: str
    success: bool
    stage: AnalysisStage = AnalysisStage.NEW
    report: Optional[str] = None
    message: Optional[str] = None
