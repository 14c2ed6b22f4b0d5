from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from .controller import ToolController
from .core.config import Settings
from .orchestration.approval import ApprovalCallbackHandler
from .orchestration.store import ResourceStore


def get_controller(request: Request) -> ToolController:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Controller not running")
    return controller


def get_app_settings(controller: ToolController = Depends(get_controller)) -> Settings:
    return controller.settings


def get_store(controller: ToolController = Depends(get_controller)) -> ResourceStore:
    return controller.store


def get_approval_handler(controller: ToolController = Depends(get_controller)) -> ApprovalCallbackHandler:
    if not controller.settings.approvals.enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Approval callbacks are disabled")
    return controller.approvals
