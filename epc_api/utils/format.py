from typing import Any, Sequence

import pandas as pd

_FORMULA_PREFIXES = ("=", "+", "-", "@")


def neutralize_csv_field(value: Any) -> Any:
    """Prefix spreadsheet-formula-looking strings with a quote. Non-strings pass through."""
    if isinstance(value, str) and value.startswith(_FORMULA_PREFIXES):
        return "'" + value
    return value


def frame_to_csv(df: pd.DataFrame, columns: Sequence[str]) -> str:
    """
    Serialize rows as CSV text with a header row.

    - column order follows ``columns`` (missing ones become empty)
    - NULLs become empty cells
    - text cells are neutralized against formula injection
    """
    out = df.reindex(columns=list(columns))
    for col in out.columns:
        out[col] = out[col].map(neutralize_csv_field)
    return out.to_csv(index=False, lineterminator="\n")
