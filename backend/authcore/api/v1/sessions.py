"""Session, device and login history routes for the signed-in user"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from authcore.api.deps import AuthContext, get_auth_context
from authcore.core.database import get_db
from authcore.schemas.response import APIResponse, PaginatedResponse
from authcore.schemas.session import (
    DeviceResponse,
    LoginHistoryResponse,
    RevokeSessionRequest,
    SessionResponse,
)
from authcore.services.audit_service import audit_service
from authcore.services.device_service import device_service
from authcore.services.session_service import session_service

router = APIRouter()


def _session_response(session, context: AuthContext) -> SessionResponse:
    data = SessionResponse.model_validate(session)
    data.is_current = session.id == context.session_id
    return data


@router.get("", response_model=PaginatedResponse[SessionResponse])
def list_sessions(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    active_only: bool = False,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """List the caller's sessions, most recently active first"""
    sessions, total = session_service.list_sessions(db, context.user_id, page, page_size, active_only)
    return PaginatedResponse[SessionResponse](
        items=[_session_response(s, context) for s in sessions],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.delete("", response_model=APIResponse)
def revoke_all_sessions(
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """Revoke every session of the caller, including the current one"""
    count = session_service.revoke_all_for_user(
        db, context.user_id, revoked_by=context.user_id, reason="user_revoked_all"
    )
    audit_service.log_event(
        db,
        action="session.revoked_all",
        entity="Session",
        user_id=context.user_id,
        new_values={"count": count},
    )
    return APIResponse(message="All sessions revoked", data={"revoked": count})


@router.get("/devices", response_model=PaginatedResponse[DeviceResponse])
def list_devices(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    devices, total = device_service.list_devices(db, context.user_id, page, page_size)
    return PaginatedResponse[DeviceResponse](
        items=[DeviceResponse.model_validate(d) for d in devices],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/devices/{device_id}/trust", response_model=DeviceResponse)
def trust_device(
    device_id: str,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    return device_service.trust_device(db, device_id, context.user_id)


@router.post("/devices/{device_id}/block", response_model=DeviceResponse)
def block_device(
    device_id: str,
    body: Optional[RevokeSessionRequest] = None,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    reason = body.reason if body else None
    return device_service.block_device(db, device_id, context.user_id, reason)


@router.get("/login-history", response_model=PaginatedResponse[LoginHistoryResponse])
def list_login_history(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    rows, total = session_service.list_login_history(db, context.user_id, page, page_size)
    return PaginatedResponse[LoginHistoryResponse](
        items=[LoginHistoryResponse.model_validate(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(
    session_id: str,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    session = session_service.get_session(db, session_id, context.user_id)
    return _session_response(session, context)


@router.delete("/{session_id}", response_model=APIResponse)
def revoke_session(
    session_id: str,
    body: Optional[RevokeSessionRequest] = None,
    context: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db)
):
    """
    Revoke one of the caller's sessions

    Args:
        session_id: Session to revoke
        body: Optional revocation reason

    Returns:
        Whether the session was live before the call
    """
    revoked = session_service.revoke_user_session(
        db, session_id, context.user_id, body.reason if body else None
    )
    return APIResponse(message="Session revoked", data={"revoked": revoked})
