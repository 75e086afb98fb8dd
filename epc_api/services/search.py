"""
Search service: filtered, keyset-paginated reads over certificates_stg.

All database access goes through the session factory handed in at
construction. Database failures are logged here with detail and re-raised
as SearchServiceError so callers never see SQL or driver messages.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pandas.errors import DatabaseError as PandasDatabaseError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from epc_api.db.accessors.certificate_accessors import (
    fetch_certificates,
    fetch_certificates_frame,
    get_distinct_values,
    get_market_stats,
    get_rating_and_fuel,
)
from epc_api.db.schemas.certificate_schema import CERTIFICATE_COLUMNS, LEAD_COLUMNS
from epc_api.schemas.output_data_schemas import (
    CertificateRecord,
    CertificatesResponse,
    FilterOptionsResponse,
    LeadRecord,
    MarketStat,
    PropertyScoreResponse,
    SearchLeadsResponse,
)
from epc_api.schemas.request_data_schemas import (
    MAX_EXPORT_LIMIT,
    MAX_PAGE_SIZE,
    CertificateSearchRequest,
    ExportLeadsRequest,
    SearchFilter,
    SearchLeadsRequest,
)
from epc_api.services.errors import PropertyNotFoundError, SearchServiceError
from epc_api.services.query_builder import build_where
from epc_api.services.scoring import score_property
from epc_api.utils.cache import TTLCache
from epc_api.utils.features import FLOOR_AREA_RANGES
from epc_api.utils.format import frame_to_csv

logger = logging.getLogger(__name__)

MARKET_STATS_TOP_N = 50
FILTER_OPTIONS_CACHE_KEY = "filters:options"


def split_page(rows: List[Dict[str, Any]], limit: int) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """
    Trim a ``limit + 1`` fetch to one page.

    Returns the page and the cursor for the next one: the key of the last row
    kept, or None when nothing was trimmed (final page).
    """
    if len(rows) <= limit:
        return rows, None
    page = rows[:limit]
    return page, page[-1]["lmk_key"]


class SearchService:
    def __init__(
        self,
        session_factory: sessionmaker,
        max_page_size: int = MAX_PAGE_SIZE,
        max_export_limit: int = MAX_EXPORT_LIMIT,
        options_cache: Optional[TTLCache] = None,
        options_ttl_sec: float = 600,
    ):
        self._session_factory = session_factory
        self.max_page_size = max_page_size
        self.max_export_limit = max_export_limit
        self._options_cache = options_cache if options_cache is not None else TTLCache()
        self._options_ttl_sec = options_ttl_sec

    @contextmanager
    def _db_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        # pd.read_sql re-raises driver errors as pandas DatabaseError
        except (SQLAlchemyError, PandasDatabaseError):
            logger.exception("Database error during %s", operation)
            raise SearchServiceError("Database query failed")

    # =============================
    # Paginated reads
    # =============================
    def _page(
        self, request: SearchFilter, page_size: int, columns: List[str], operation: str
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        limit = min(page_size, self.max_page_size)
        built = build_where(request.model_dump(), cursor=request.cursor)
        with self._db_errors(operation):
            rows = fetch_certificates(self._session_factory, built, columns, limit + 1)
        page, next_cursor = split_page(rows, limit)
        logger.debug(
            "%s: %d rows, filters=%d, next_cursor=%s",
            operation, len(page), len(built.params), next_cursor,
        )
        return page, next_cursor

    def search(self, request: SearchLeadsRequest) -> SearchLeadsResponse:
        rows, next_cursor = self._page(request, request.page_size, LEAD_COLUMNS, "leads.search")
        return SearchLeadsResponse(
            results=[LeadRecord(**r) for r in rows],
            next_cursor=next_cursor,
        )

    def get_by_postcode(self, request: CertificateSearchRequest) -> CertificatesResponse:
        rows, next_cursor = self._page(
            request, request.page_size, CERTIFICATE_COLUMNS, "certificates.getByPostcode"
        )
        return CertificatesResponse(
            certificates=[CertificateRecord(**r) for r in rows],
            next_cursor=next_cursor,
        )

    # =============================
    # Export
    # =============================
    def export_csv(self, request: ExportLeadsRequest) -> str:
        limit = min(request.limit, self.max_export_limit)
        built = build_where(request.model_dump(), cursor=request.cursor)
        with self._db_errors("leads.export"):
            df = fetch_certificates_frame(self._session_factory, built, LEAD_COLUMNS, limit)
        logger.info("Exporting %d leads as CSV", len(df))
        return frame_to_csv(df, LEAD_COLUMNS)

    # =============================
    # Reports & lookups
    # =============================
    def market_stats(self) -> List[MarketStat]:
        with self._db_errors("stats.market"):
            rows = get_market_stats(self._session_factory, top_n=MARKET_STATS_TOP_N)
        return [MarketStat(**r) for r in rows]

    def score(self, lmk_key: str) -> PropertyScoreResponse:
        with self._db_errors("properties.score"):
            row = get_rating_and_fuel(self._session_factory, lmk_key)
        if row is None:
            raise PropertyNotFoundError(lmk_key)
        rating, fuel = row["current_energy_rating"], row["main_fuel"]
        return PropertyScoreResponse(
            lmk_key=lmk_key,
            score=score_property(rating, fuel),
            current_energy_rating=rating,
            main_fuel=fuel,
        )

    def get_filter_options(self) -> FilterOptionsResponse:
        cached = self._options_cache.get(FILTER_OPTIONS_CACHE_KEY)
        if cached is not None:
            return cached

        # NOTE: DISTINCT over the full table; relies on the column indexes.
        with self._db_errors("filters.getOptions"):
            options = FilterOptionsResponse(
                property_types=get_distinct_values(self._session_factory, "property_type"),
                local_authorities=get_distinct_values(self._session_factory, "local_authority"),
                constituencies=get_distinct_values(self._session_factory, "constituency"),
                floor_area_ranges=list(FLOOR_AREA_RANGES),
            )
        self._options_cache.set(FILTER_OPTIONS_CACHE_KEY, options, ttl_sec=self._options_ttl_sec)
        return options
