"""
Prompt templates for tender analysis and item enrichment
"""
import json

from models.tender import TenderExtraction, TenderRecord

SUMMARIZE_DOCUMENT_PROMPT = """You are an expert in public procurement (44-FZ / 223-FZ tenders).
The attached file is one document from a tender documentation bundle.

Read the whole document and write a factual summary that keeps every detail
relevant for a supplier preparing a bid:
- subject of the purchase and the customer
- every product or service line with quantity, units and technical characteristics
- prices, deadlines, delivery terms and place of delivery
- payment terms, application and contract security
- requirements for participants, penalties and any special conditions

Do not invent anything that is not in the document. Answer in Russian."""


EXTRACTION_PROMPT = """You are given analyses of every document of one procurement tender.
Combine them into a single structured description of the tender.

Return ONLY one JSON block fenced exactly like this:
```json
{ ... }
```

The JSON must follow this structure:
{
  "tender": {"name": "", "number": "", "type": "", "price": "", "currency": "",
             "application_deadline": "", "auction_date": ""},
  "customer": {"name": "", "inn": "", "ogrn": "", "address": "", "contacts": ""},
  "delivery_terms": {
    "delivery_period": {"type": "", "value": ""},
    "delivery_location": "",
    "payment_terms": {"prepayment_percent": null, "payment_days": null},
    "application_security": {"amount": null, "percent": null},
    "contract_security": {"amount": null, "percent": null}
  },
  "items": [
    {"name": "", "quantity": {"value": "", "unit": ""},
     "specifications": {"characteristic": "value"},
     "requirements": [""],
     "estimated_price": null}
  ],
  "special_conditions": {"requirements_for_participants": [""], "penalties": [""],
                         "other_conditions": [""]}
}

List every distinct product or service as its own element of "items", in the
order they appear in the documentation. Use null for unknown numbers and ""
for unknown text. Text values in Russian.

Document analyses:
"""


QUERY_GENERATION_PROMPT = """You help a supplier find a product on the Russian market.
Below is a product from a tender with its technical specifications.

Write up to {max_queries} web search queries that would find online shops,
manufacturers or distributors selling this exact product or a full analogue.
Each query on its own line, no numbering, no quotes, no explanations.
Queries in Russian.

{item_description}"""


PAGE_ANALYSIS_INSTRUCTION = """The attached file is a saved web page found while searching for a product.
Extract current product facts from it: product names and models, prices with
currency, availability, key technical characteristics, the seller's name and
contacts. If the page has nothing to do with selling a product, answer with an
empty string. Answer in Russian, concisely."""


PRODUCT_SYNTHESIS_PROMPT = """You are a procurement analyst. A tender requires the following product:

{item_description}

Below are facts extracted from web pages of sellers found for it.
Write a short market overview for this product:
- which offers match the tender specifications and which do not
- price range with the cheapest suitable offers and their sources (links)
- availability and notable risks

Answer in Russian.

Collected facts:
{findings}"""


FINAL_REPORT_PROMPT = """You are a procurement analyst preparing a bid/no-bid report for a supplier.
Using the tender data, the per-item market overviews and the notable findings
below, write a final report:
1. Short summary of the tender (what, who, when, how much)
2. Key terms and risks (delivery, payment, security, penalties, participant requirements)
3. Per item: can it be sourced, at what price, from whom
4. Estimated margin versus the tender's starting price
5. Recommendation: participate or not, and why

Answer in Russian.

{tender_details}"""


def describe_item(item) -> str:
    return item.describe()


def build_query_prompt(item, max_queries: int) -> str:
    return QUERY_GENERATION_PROMPT.format(max_queries=max_queries, item_description=describe_item(item))


def build_synthesis_prompt(item, findings: list[tuple[str, str]]) -> str:
    """findings is a list of (link, content) pairs with non-empty content"""
    blocks = [f"Source: {link}\n{content}" for link, content in findings]
    return PRODUCT_SYNTHESIS_PROMPT.format(
        item_description=describe_item(item),
        findings="\n\n---\n\n".join(blocks),
    )


def build_extraction_prompt(analyses_blob: str) -> str:
    return EXTRACTION_PROMPT + analyses_blob


def render_tender_for_report(record: TenderRecord) -> str:
    """Render the accumulated record as plain text for the final report prompt."""
    sections = []

    metadata = record.metadata.model_dump(exclude_none=True)
    sections.append("Tender card:\n" + json.dumps(metadata, ensure_ascii=False, indent=2))

    extraction: TenderExtraction | None = record.extracted_analysis
    if extraction is not None:
        summary = extraction.model_dump(exclude={"items"})
        sections.append("Tender terms:\n" + json.dumps(summary, ensure_ascii=False, indent=2))

    for index, item in enumerate(record.items):
        lines = [f"Item {index + 1}: {item.name}"]
        if item.quantity.value:
            lines.append(f"Quantity: {item.quantity.value} {item.quantity.unit}".rstrip())
        if item.estimated_price is not None:
            lines.append(f"Estimated price: {item.estimated_price}")

        find_request = record.find_requests[index] if index < len(record.find_requests) else None
        if find_request and find_request.product_analysis:
            lines.append("Market overview:\n" + find_request.product_analysis)
        else:
            lines.append("Market overview: not available")

        notable = []
        if find_request:
            for parsed in find_request.parsed_request:
                for site in parsed.response_from_websites:
                    if site.content:
                        notable.append(f"- {site.title or site.link} ({site.link})")
        if notable:
            lines.append("Notable sources:\n" + "\n".join(notable))

        sections.append("\n".join(lines))

    return "\n\n".join(sections)
