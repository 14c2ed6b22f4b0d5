from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from ..core.config import Settings
from ..core.logging import get_logger
from ..controller import ToolController
from ..dependencies import get_app_settings, get_approval_handler, get_controller, get_store
from ..orchestration.approval import ApprovalCallbackHandler
from ..orchestration.state import ToolCall
from ..orchestration.store import ResourceStore
from ..schemas.approvals import ApprovalCallbackRequest, ApprovalCallbackResponse
from ..schemas.toolcalls import ToolCallCreateRequest, ToolCallEventModel, dump_toolcall
from ..tools.exceptions import (
    AlreadyExistsError,
    ApprovalStateError,
    MalformedDecisionError,
    ToolCallError,
    ToolCallNotFoundError,
)

router = APIRouter()
logger = get_logger(name=__name__)


async def _extract_json_body(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request body must be valid JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request body must be a JSON object")
    return payload


def _validation_detail(exc: ValidationError) -> list[dict[str, Any]]:
    return exc.errors(include_url=False, include_context=False, include_input=False)  # type: ignore[return-value]


@router.post("/approvals/callback", response_model=ApprovalCallbackResponse)
async def approval_callback(
    request: Request,
    handler: ApprovalCallbackHandler = Depends(get_approval_handler),
) -> ApprovalCallbackResponse:
    raw_payload = await _extract_json_body(request)
    try:
        payload = ApprovalCallbackRequest.model_validate(raw_payload)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_validation_detail(exc)) from exc

    try:
        outcome = await handler.handle(payload.to_domain())
    except MalformedDecisionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ToolCallNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ApprovalStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ToolCallError as exc:
        logger.warning("approval_callback_persist_failed", run_id=payload.run_id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to persist approval decision",
        ) from exc
    return ApprovalCallbackResponse.from_outcome(outcome)


@router.post("/toolcalls", status_code=status.HTTP_201_CREATED)
async def create_toolcall(
    request: Request,
    store: ResourceStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    raw_payload = await _extract_json_body(request)
    try:
        payload = ToolCallCreateRequest.model_validate(raw_payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=_validation_detail(exc)
        ) from exc
    try:
        created = await store.create(payload.to_domain(settings.controller.default_namespace))
    except AlreadyExistsError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    logger.info("toolcall_created", toolcall=created.metadata.name, namespace=created.metadata.namespace)
    return dump_toolcall(created)


@router.get("/toolcalls/{namespace}/{name}")
async def get_toolcall(
    namespace: str,
    name: str,
    store: ResourceStore = Depends(get_store),
) -> dict[str, Any]:
    toolcall = await store.get(ToolCall, namespace, name)
    if toolcall is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tool call not found")
    return dump_toolcall(toolcall)


@router.get("/toolcalls/{namespace}/{name}/events")
async def list_toolcall_events(
    namespace: str,
    name: str,
    store: ResourceStore = Depends(get_store),
) -> dict[str, Any]:
    if await store.get(ToolCall, namespace, name) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tool call not found")
    events = await store.list_events(namespace, name)
    return {
        "items": [
            ToolCallEventModel.from_domain(event).model_dump(mode="json", by_alias=True) for event in events
        ]
    }


@router.get("/diagnostics/capabilities", tags=["diagnostics"])
async def capability_diagnostics(controller: ToolController = Depends(get_controller)) -> dict[str, Any]:
    return controller.diagnostics()
