"""
RPC procedure registry and batch dispatch.

Every procedure is named ``<resource>.<action>`` and maps to an optional input
model plus a handler taking the service dependencies and the validated input.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from epc_api.schemas.output_data_schemas import HealthResponse
from epc_api.schemas.request_data_schemas import (
    CertificateSearchRequest,
    ExportLeadsRequest,
    LeadScoreRequest,
    SearchLeadsRequest,
)
from epc_api.services.errors import InvalidFilterError, PropertyNotFoundError, SearchServiceError
from epc_api.services.search import SearchService

logger = logging.getLogger(__name__)


# =============================
# Dependencies (DI-friendly)
# =============================
@dataclass
class ServiceDeps:
    search: SearchService
    started_at: float


def health_check(deps: ServiceDeps) -> HealthResponse:
    return HealthResponse(status="ok", uptime=round(time.monotonic() - deps.started_at, 3))


@dataclass(frozen=True)
class Procedure:
    name: str
    handler: Callable[..., Any]
    input_model: Optional[Type[BaseModel]] = None

    def call(self, deps: ServiceDeps, raw_input: Any) -> Any:
        if self.input_model is None:
            return self.handler(deps)
        payload = self.input_model.model_validate(raw_input if raw_input is not None else {})
        return self.handler(deps, payload)


PROCEDURES: Dict[str, Procedure] = {
    p.name: p
    for p in (
        Procedure("health.check", health_check),
        Procedure("leads.search", lambda d, req: d.search.search(req), SearchLeadsRequest),
        Procedure("leads.export", lambda d, req: d.search.export_csv(req), ExportLeadsRequest),
        Procedure("stats.market", lambda d: d.search.market_stats()),
        Procedure(
            "properties.score", lambda d, req: d.search.score(req.lmk_key), LeadScoreRequest
        ),
        Procedure("filters.getOptions", lambda d: d.search.get_filter_options()),
        Procedure(
            "certificates.getByPostcode",
            lambda d, req: d.search.get_by_postcode(req),
            CertificateSearchRequest,
        ),
    )
}


def to_jsonable(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json", by_alias=True)
    if isinstance(result, list):
        return [to_jsonable(r) for r in result]
    return result


def _error(code: str, message: str, details: Any = None) -> Dict[str, Any]:
    err: Dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        err["details"] = details
    return {"error": err}


def run_procedure(deps: ServiceDeps, name: str, raw_input: Any) -> Dict[str, Any]:
    """Run one call and wrap the outcome in a result or error envelope."""
    procedure = PROCEDURES.get(name)
    if procedure is None:
        return _error("METHOD_NOT_FOUND", f"No such procedure: {name}")
    try:
        return {"result": {"data": to_jsonable(procedure.call(deps, raw_input))}}
    except ValidationError as ve:
        return _error(
            "BAD_REQUEST",
            "Input validation failed",
            ve.errors(include_url=False, include_context=False),
        )
    except InvalidFilterError as ife:
        return _error("BAD_REQUEST", str(ife))
    except PropertyNotFoundError:
        return _error("NOT_FOUND", "Property not found")
    except SearchServiceError as se:
        return _error("INTERNAL_SERVER_ERROR", se.message)
    except Exception:
        logger.exception("Unhandled error in procedure %s", name)
        return _error("INTERNAL_SERVER_ERROR", "Internal server error")


def dispatch_batch(deps: ServiceDeps, calls: List[Dict[str, Any]], max_batch: int) -> List[Dict[str, Any]]:
    """
    Run a batch of ``{"procedure": name, "input": {...}}`` calls in order.

    One envelope per call; a failing call does not affect the others.
    """
    if len(calls) > max_batch:
        raise ValueError(f"Batch too large: {len(calls)} calls (max {max_batch})")
    out = []
    for call in calls:
        name = call.get("procedure") if isinstance(call, dict) else None
        if not isinstance(name, str):
            out.append(_error("BAD_REQUEST", "Each call needs a 'procedure' name"))
            continue
        out.append(run_procedure(deps, name, call.get("input")))
    logger.info("Batch of %d procedure calls dispatched", len(calls))
    return out
