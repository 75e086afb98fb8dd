from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from sqlalchemy import select, text
from sqlalchemy.orm import sessionmaker

from epc_api.db.db_session import session_scope
from epc_api.db.schemas.certificate_schema import Certificate
from epc_api.services.query_builder import BuiltQuery

TABLE = Certificate.__tablename__

# Columns that may be listed in get_distinct_values (prevents SQL injection)
DISTINCT_COLS = {
    "property_type": Certificate.property_type,
    "local_authority": Certificate.local_authority,
    "constituency": Certificate.constituency,
}


def _select_sql(columns: Sequence[str], built: BuiltQuery) -> str:
    bad = [c for c in columns if c not in Certificate.__table__.c]
    if bad:
        raise ValueError(f"Unknown columns requested: {bad}")
    return (
        f"SELECT {', '.join(columns)} FROM {TABLE} "
        f"{built.where_clause} ORDER BY lmk_key LIMIT :row_limit"
    )


def fetch_certificates(
    session_factory: sessionmaker,
    built: BuiltQuery,
    columns: Sequence[str],
    limit: int,
) -> List[Dict[str, Any]]:
    """
    Fetch up to ``limit`` rows matching ``built``, ordered by lmk_key ascending.

    Args:
        built: predicate and bind values from the query builder.
        columns: projection (must be columns of certificates_stg).
        limit: LIMIT N (callers ask for one extra row to detect a next page).

    Returns:
        list of row dicts, in key order.
    """
    sql = _select_sql(columns, built)
    with session_scope(session_factory) as session:
        rows = session.execute(
            text(sql), {**built.bind_params(), "row_limit": int(limit)}
        ).mappings().all()
        return [dict(r) for r in rows]


def fetch_certificates_frame(
    session_factory: sessionmaker,
    built: BuiltQuery,
    columns: Sequence[str],
    limit: int,
) -> pd.DataFrame:
    sql = _select_sql(columns, built)
    with session_scope(session_factory) as session:
        # pandas can read from the session's checked-out connection
        df = pd.read_sql(
            text(sql),
            session.connection(),
            params={**built.bind_params(), "row_limit": int(limit)},
        )
    return df.reindex(columns=list(columns))


def get_market_stats(session_factory: sessionmaker, top_n: int = 50) -> List[Dict[str, Any]]:
    """Certificate counts per (2-character postcode prefix, rating), largest first."""
    sql = f"""
        SELECT SUBSTR(postcode, 1, 2) AS postcode_prefix,
               current_energy_rating,
               COUNT(*) AS count
        FROM {TABLE}
        GROUP BY SUBSTR(postcode, 1, 2), current_energy_rating
        ORDER BY count DESC, postcode_prefix, current_energy_rating
        LIMIT :top_n
    """
    with session_scope(session_factory) as session:
        rows = session.execute(text(sql), {"top_n": int(top_n)}).mappings().all()
        return [dict(r) for r in rows]


def get_rating_and_fuel(session_factory: sessionmaker, lmk_key: str) -> Optional[Dict[str, Any]]:
    with session_scope(session_factory) as s:
        q = (
            select(Certificate.current_energy_rating, Certificate.main_fuel)
            .where(Certificate.lmk_key == lmk_key)
            .limit(1)
        )
        row = s.execute(q).mappings().first()
        if row is None:
            return None
        return dict(row)


def get_distinct_values(session_factory: sessionmaker, field: str) -> List[str]:
    if field not in DISTINCT_COLS:
        raise ValueError(f"Unsupported distinct field: {field}")
    col = DISTINCT_COLS[field]
    with session_scope(session_factory) as s:
        q = select(col).where(col.is_not(None)).distinct().order_by(col)
        return list(s.execute(q).scalars().all())
