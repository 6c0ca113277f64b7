"""CSV export of completed import jobs."""

from typing import Any

import pandas as pd

EXPORT_COLUMNS = (
    "date",
    "posted_date",
    "description",
    "raw_merchant",
    "canonical_merchant",
    "merchant_confidence",
    "merchant_source",
    "amount",
    "type",
    "balance",
    "account_number",
    "category",
    "fitid",
    "source_row_index",
)
BASE_COLUMNS = ("date", "description", "raw_merchant", "amount", "type", "source_row_index")


def transactions_to_csv(result: dict[str, Any] | None) -> str:
    """Render the transactions stored on an import job's result as CSV text."""
    rows = (result or {}).get("transactions") or []
    columns = [column for column in EXPORT_COLUMNS if any(row.get(column) is not None for row in rows)]
    return pd.DataFrame(rows, columns=columns or list(BASE_COLUMNS)).to_csv(index=False)
