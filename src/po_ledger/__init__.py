"""po-ledger — Reconcile messy PO / invoice spreadsheets into per-PO ledgers."""

__version__ = "0.2.0"

CANONICAL_FIELDS: list[str] = [
    "poNumber",
    "creationDate",
    "marketerName",
    "vendorName",
    "teamName",
    "poAmount",
    "invoiceNumber",
    "invoiceAmount",
    "grDate",
    "status",
]
