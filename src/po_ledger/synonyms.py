"""Header synonym table — recognised spellings for every canonical field."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from po_ledger import CANONICAL_FIELDS

SNAPSHOT_KEY = "procurement.rows.v2"
MAX_HEADER_SEARCH_ROWS = 8

# teamName has no synonyms: it always comes from the sheet name.
HEADER_SYNONYMS: dict[str, tuple[str, ...]] = {
    "poNumber": ("po number", "po no", "po #", "purchase order no", "po"),
    "creationDate": (
        "creation date",
        "created on",
        "po date",
        "date",
        "po request sent",
        "request date",
        "po sent date",
    ),
    "marketerName": ("marketer", "marketer name", "owner", "requestor"),
    "vendorName": ("vendor", "supplier", "vendor name"),
    "teamName": (),
    "poAmount": (
        "Estimate Amt.",
        "po amount",
        "amount",
        "total amount",
        "$ amount",
        "est. amount",
        "estimate amount",
        "po amt",
        "est amt",
        "estimated amount",
        "value",
    ),
    "invoiceNumber": ("invoice no", "inv #", "invoice number"),
    "invoiceAmount": ("invoice amount", "inv amount"),
    "grDate": ("gr date", "goods received date", "receipt date"),
    "status": ("po open or closed", "open/closed", "status", "$ left on po"),
}


def merge_synonyms(
    base: Mapping[str, Iterable[str]],
    extra: Mapping[str, Iterable[str]],
) -> dict[str, tuple[str, ...]]:
    """Return a new table with *extra* spellings appended to *base*.

    Raises
    ------
    ValueError
        If *extra* names an unknown field, or tries to add synonyms for
        ``teamName`` (which is never header-derived).
    """
    merged: dict[str, tuple[str, ...]] = {field: tuple(values) for field, values in base.items()}
    for field, values in extra.items():
        if field not in CANONICAL_FIELDS:
            raise ValueError(
                f"Unknown field {field!r}. Expected one of: {', '.join(CANONICAL_FIELDS)}"
            )
        if field == "teamName":
            raise ValueError("teamName is derived from the sheet name and cannot be mapped")
        existing = merged.get(field, ())
        additions = tuple(v for v in values if v not in existing)
        merged[field] = existing + additions
    return merged
