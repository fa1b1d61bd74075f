"""HTTP surface: routers, error mapping and an app factory."""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..errors import (
    AlreadyTerminal,
    Conflict,
    InvalidPayload,
    InvalidSignature,
    InvalidTransition,
    MissingReason,
    NoChange,
    NotFound,
    OrderflowError,
    StageInUse,
    UnknownStage,
    WorkflowExists,
    WorkflowInUse,
    WorkflowLocked,
)
from ..service import ProgressService
from .routes import get_service, progress_router, webhook_router
from .schemas import ErrorResponse, TransitionResponse

# Most specific class first; looked up along the exception's MRO.
ERROR_STATUS_CODES = {
    UnknownStage: 422,
    NotFound: 404,
    MissingReason: 422,
    InvalidTransition: 422,
    AlreadyTerminal: 409,
    WorkflowLocked: 409,
    StageInUse: 409,
    WorkflowExists: 409,
    WorkflowInUse: 409,
    Conflict: 409,
    InvalidSignature: 401,
    InvalidPayload: 400,
}


def status_code_for(exc: OrderflowError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


async def _orderflow_error_handler(request: Request, exc: OrderflowError) -> JSONResponse:
    body = ErrorResponse(code=exc.code, detail=str(exc))
    return JSONResponse(status_code=status_code_for(exc), content=body.model_dump())


async def _no_change_handler(request: Request, exc: NoChange) -> JSONResponse:
    body = TransitionResponse(
        changed=False,
        previous_stage_id=exc.record.current_stage_id,
        record=exc.record,
    )
    return JSONResponse(status_code=200, content=body.model_dump(mode="json"))


def register_exception_handlers(app: FastAPI) -> None:
    """Map engine errors to HTTP responses."""
    app.add_exception_handler(NoChange, _no_change_handler)
    app.add_exception_handler(OrderflowError, _orderflow_error_handler)


def create_app(service: Optional[ProgressService] = None) -> FastAPI:
    app = FastAPI(
        title="Orderflow API",
        description="Order fulfillment progress tracking",
    )
    register_exception_handlers(app)
    app.include_router(progress_router)
    app.include_router(webhook_router)
    if service is not None:
        app.dependency_overrides[get_service] = lambda: service

    @app.get("/health")
    async def health():
        return JSONResponse(content={"status": "ok"})

    return app


__all__ = [
    "create_app",
    "get_service",
    "progress_router",
    "register_exception_handlers",
    "status_code_for",
    "webhook_router",
]
