"""Change-request workflow endpoints.

Handlers are plain functions: the request and audit stores do blocking file
I/O, which FastAPI then runs in its threadpool.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from app.errors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    MissingReasonError,
    RequestNotFoundError,
    UnauthorizedTransitionError,
)
from app.services import Services
from app.workflow.models import ChangeRequest, Status

router = APIRouter()
logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    return request.app.state.services


class SubmitRequest(BaseModel):
    entity_type: str
    operation: str
    payload: dict[str, Any] = Field(default_factory=dict)
    requested_by: str
    reason: str = ""


class ActionRequest(BaseModel):
    acting_role: str
    actor: Optional[str] = None
    reason: Optional[str] = None
    # Version the caller last read; a mismatch is reported as 409
    expected_version: Optional[int] = None


def _load(services: Services, request_id: str, expected_version: Optional[int]) -> ChangeRequest:
    try:
        request = services.workflow.get(request_id)
    except RequestNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if expected_version is not None and request.version != expected_version:
        raise HTTPException(
            status_code=409,
            detail=str(ConcurrentModificationError(request_id, expected_version, request.version)),
        )
    return request


def _act(action, *args, **kwargs) -> dict:
    try:
        return action(*args, **kwargs).to_dict()
    except UnauthorizedTransitionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except (InvalidTransitionError, ConcurrentModificationError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MissingReasonError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except RequestNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (ValueError, KeyError) as e:
        # Refused by the committer check that runs before the final approval
        logger.error(f"Approved change could not be applied: {e}")
        raise HTTPException(status_code=422, detail=f"Change could not be applied: {e}")


@router.post("/requests", status_code=201)
def submit(body: SubmitRequest, services: Services = Depends(get_services)):
    try:
        request = services.workflow.submit(
            body.entity_type, body.operation, body.payload, body.requested_by, body.reason,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return request.to_dict()


@router.get("/requests")
def list_requests(
    status: Optional[str] = None,
    level: Optional[int] = None,
    services: Services = Depends(get_services),
):
    if status is not None and status not in {s.value for s in Status}:
        raise HTTPException(status_code=422, detail=f"Unknown status '{status}'")
    return [r.to_dict() for r in services.workflow.list_requests(status, level)]


@router.get("/requests/{request_id}")
def get_request(request_id: str, services: Services = Depends(get_services)):
    return _load(services, request_id, None).to_dict()


@router.get("/requests/{request_id}/audit")
def audit_trail(request_id: str, services: Services = Depends(get_services)):
    _load(services, request_id, None)
    return [e.to_dict() for e in services.workflow.audit_trail(request_id)]


@router.post("/requests/{request_id}/approve")
def approve(request_id: str, body: ActionRequest, services: Services = Depends(get_services)):
    snapshot = _load(services, request_id, body.expected_version)
    return _act(services.workflow.approve, snapshot, body.acting_role, actor=body.actor, comment=body.reason)


@router.post("/requests/{request_id}/reject")
def reject(request_id: str, body: ActionRequest, services: Services = Depends(get_services)):
    snapshot = _load(services, request_id, body.expected_version)
    return _act(services.workflow.reject, snapshot, body.acting_role, body.reason or "", actor=body.actor)


@router.post("/requests/{request_id}/send-back")
def send_back(request_id: str, body: ActionRequest, services: Services = Depends(get_services)):
    snapshot = _load(services, request_id, body.expected_version)
    return _act(services.workflow.send_back, snapshot, body.acting_role, body.reason or "", actor=body.actor)


@router.get("/inbox/{role}")
def inbox(role: str, services: Services = Depends(get_services)):
    """Open requests waiting on ``role``."""
    return [r.to_dict() for r in services.workflow.inbox(role)]
