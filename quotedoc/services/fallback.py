# quotedoc/services/fallback.py
"""
Plain agreement document built from resolved tokens when the uploaded
template cannot be loaded or rendered. The user still gets a DOCX that
reflects their quote.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from quotedoc.config import FALLBACK_TERMS, FALLBACK_TITLE
from quotedoc.services.token_resolver import ResolvedTokens, normalize_key
from quotedoc.utils.doc_helpers import (
    add_grid_table,
    add_labeled_line,
    add_section_heading,
    add_title,
    document_to_bytes,
    new_document,
)

logger = logging.getLogger(__name__)

_EXHIBIT_COLUMNS = (("Type", "exhibitType"), ("Description", "exhibitDesc"),
                    ("Plan", "exhibitPlan"), ("Price", "exhibitPrice"))


def _field(row: Any, name: str) -> str:
    if isinstance(row, dict):
        key = normalize_key(name)
        for k, v in row.items():
            if normalize_key(k) == key:
                return "" if v is None else str(v)
        return ""
    return "" if row is None else str(row)


def build_fallback_document(
    resolved: ResolvedTokens,
    *,
    title: str = FALLBACK_TITLE,
    terms: Optional[Sequence[str]] = None,
) -> bytes:
    """Synthesize the fallback agreement. Raises whatever python-docx raises."""
    t = resolved.get
    doc = new_document()

    add_title(doc, title)
    add_labeled_line(doc, "Company", t("company_name"))
    add_labeled_line(doc, "Date", t("date"))
    add_labeled_line(doc, "Quote ID", t("quote_id"))

    add_section_heading(doc, "CLIENT INFORMATION")
    add_labeled_line(doc, "Client Name", t("client_name"))
    add_labeled_line(doc, "Email", t("client_email"))
    add_labeled_line(doc, "Company", t("company_name"))

    add_section_heading(doc, "SERVICE DETAILS")
    add_labeled_line(doc, "Migration Type", t("migration_type"))
    add_labeled_line(doc, "Plan", t("plan_name"))
    add_labeled_line(doc, "Number of Users", t("users_count"))
    add_labeled_line(doc, "Instance Type", t("instance_type"))
    add_labeled_line(doc, "Number of Instances", t("number_of_instances"))
    add_labeled_line(doc, "Duration (months)", t("duration"))
    if resolved.data_size_applicable:
        add_labeled_line(doc, "Data Size (GB)", t("data_size"))
    add_labeled_line(doc, "Start Date", t("start_date"))
    add_labeled_line(doc, "End Date", t("end_date"))

    add_section_heading(doc, "PRICING BREAKDOWN")
    add_labeled_line(doc, "User Cost", t("users_cost"))
    add_labeled_line(doc, "Migration Cost", t("migration_cost"))
    add_labeled_line(doc, "Instance Cost", t("instance_cost"))
    if resolved.data_size_applicable:
        add_labeled_line(doc, "Data Cost", t("data_cost"))
    if resolved.discount_applied:
        add_labeled_line(doc, "Discount", t("discount"))
        add_labeled_line(doc, "Total After Discount", t("total_after_discount"))
    add_labeled_line(doc, "Total Price", t("total_price"))

    exhibits = resolved.collection("exhibits") or []
    if exhibits:
        add_section_heading(doc, "EXHIBITS")
        rows: List[Sequence[str]] = [[_field(e, key) for _, key in _EXHIBIT_COLUMNS] for e in exhibits]
        add_grid_table(doc, [label for label, _ in _EXHIBIT_COLUMNS], rows)

    servers = resolved.collection("servers") or []
    if servers:
        add_section_heading(doc, "SERVER BREAKDOWN")
        for s in servers:
            desc, cost = _field(s, "description"), _field(s, "cost")
            doc.add_paragraph(f"{desc}: {cost}" if cost else desc, style="List Bullet")

    add_section_heading(doc, "TERMS AND CONDITIONS")
    for line in terms if terms is not None else FALLBACK_TERMS:
        doc.add_paragraph(line, style="List Bullet")

    data = document_to_bytes(doc)
    logger.info("fallback document built (%d bytes)", len(data))
    return data


__all__ = ["build_fallback_document"]
