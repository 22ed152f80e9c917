import logging
import uuid
from typing import Annotated, Optional

import orjson
from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import ORJSONResponse, Response
from pydantic import ValidationError

from reporter.app.coordinator.coordinator import ChecklistReportCoordinator
from reporter.app.core.errors import InputError
from reporter.app.schemas.requests import GenerateChecklistReportRequest

logger = logging.getLogger("reporter.api")

router = APIRouter(tags=["Checklist Reports"])

REPORT_PATH = "/generate-checklist-report"
REPORT_ID_KEYS = ("report_id", "reportId", "driver_daily_report_id")
MISSING_REPORT_ID = "Missing required field 'report_id'."

# =============================================================================
# Dependency providers
# =============================================================================

def get_correlation_id(
    x_correlation_id: Annotated[
        Optional[str],
        Header(description="Request trace ID"),
    ] = None,
) -> str:
    """Extract or generate a correlation ID for end-to-end traceability."""
    if x_correlation_id and len(x_correlation_id) > 128:
        return str(uuid.uuid4())
    return x_correlation_id or str(uuid.uuid4())


def get_coordinator(request: Request) -> ChecklistReportCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise RuntimeError("coordinator not initialized")
    return coordinator


def _error(message: str, status_code: int, correlation_id: str) -> ORJSONResponse:
    return ORJSONResponse(
        content={"success": False, "error": message},
        status_code=status_code,
        headers={"X-Correlation-ID": correlation_id},
    )


def _validation_message(exc: ValidationError) -> str:
    error = exc.errors()[0]
    cause = (error.get("ctx") or {}).get("error")
    if cause is not None:
        return str(cause)
    field = ".".join(str(part) for part in error.get("loc", ()))
    return f"Invalid value for '{field}': {error.get('msg')}"


def parse_report_request(raw: bytes) -> GenerateChecklistReportRequest:
    """Decode and validate a request body, raising InputError on any defect."""
    try:
        body = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise InputError("Invalid JSON in request body.") from exc

    if not isinstance(body, dict):
        raise InputError("Request body must be a JSON object.")

    if all(body.get(key) in (None, "") for key in REPORT_ID_KEYS):
        raise InputError(MISSING_REPORT_ID)

    try:
        return GenerateChecklistReportRequest.model_validate(body)
    except ValidationError as exc:
        raise InputError(_validation_message(exc)) from exc


# =============================================================================
# POST /generate-checklist-report
# =============================================================================

@router.post(
    REPORT_PATH,
    summary="Render a checklist report to PDF and publish it",
    responses={
        200: {"description": "Report generated (possibly with an export warning)"},
        400: {"description": "Malformed or incomplete request"},
        404: {"description": "Report record not found"},
        500: {"description": "Downstream failure"},
    },
)
async def generate_checklist_report(
    request: Request,
    coordinator: Annotated[
        ChecklistReportCoordinator,
        Depends(get_coordinator),
    ],
    correlation_id: Annotated[
        str,
        Depends(get_correlation_id),
    ],
) -> ORJSONResponse:
    """
    Generate the PDF report for one driver daily report.

    Input errors are rejected before any external call. The pipeline
    itself runs in the threadpool; its outcome decides the status code.
    """

    # ------------------------------------------------------------------
    # 1. Input validation (no side effects)
    # ------------------------------------------------------------------

    try:
        payload = parse_report_request(await request.body())
    except InputError as exc:
        logger.warning(
            "invalid_request",
            extra={"trace_id": correlation_id, "error": str(exc)},
        )
        return _error(str(exc), exc.status_code, correlation_id)

    logger.info(
        "report_requested",
        extra={
            "trace_id": correlation_id,
            "report_id": str(payload.report_id),
            "template_id": payload.template_id,
        },
    )

    # ------------------------------------------------------------------
    # 2. Pipeline
    # ------------------------------------------------------------------

    try:
        outcome = await run_in_threadpool(coordinator.generate, payload, correlation_id)
    except Exception as exc:
        logger.exception(
            "report_pipeline_failure",
            extra={
                "trace_id": correlation_id,
                "error_type": type(exc).__name__,
            },
        )
        return _error(str(exc) or "Report generation failed.", 500, correlation_id)

    return ORJSONResponse(
        content=outcome.payload,
        status_code=outcome.http_status,
        headers={"X-Correlation-ID": correlation_id},
    )


@router.api_route(
    REPORT_PATH,
    methods=["GET", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def method_not_allowed(
    correlation_id: Annotated[str, Depends(get_correlation_id)],
) -> ORJSONResponse:
    response = _error("Method not allowed", status.HTTP_405_METHOD_NOT_ALLOWED, correlation_id)
    response.headers["Allow"] = "POST, OPTIONS"
    return response


@router.options(REPORT_PATH, include_in_schema=False)
async def report_options() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT)
