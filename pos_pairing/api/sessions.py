"""Session login, refresh and revocation."""

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from pos_pairing.api.dependencies import get_auth_service, get_current_session, require_operator
from pos_pairing.database.session import get_db
from pos_pairing.models.principal_session import PrincipalSession
from pos_pairing.services.device_auth import DeviceAuthService

router = APIRouter(prefix="/sessions", tags=["sessions"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    principal_id: str


class LoginResponse(BaseModel):
    session_id: str
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int
    token_type: str = "Bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class RefreshResponse(BaseModel):
    access_token: str
    expires_in: int
    token_type: str = "Bearer"


class SessionResponse(BaseModel):
    session_id: str
    principal_id: str
    status: str
    access_token_expires_at: str
    refresh_token_expires_at: str
    last_activity_at: str
    created_at: str


class RevokeAllResponse(BaseModel):
    principal_id: str
    revoked: int


def _to_response(record: PrincipalSession) -> SessionResponse:
    return SessionResponse(
        session_id=record.session_id,
        principal_id=record.principal_id,
        status=record.status,
        access_token_expires_at=record.access_token_expires_at.isoformat(),
        refresh_token_expires_at=record.refresh_token_expires_at.isoformat(),
        last_activity_at=record.last_activity_at.isoformat(),
        created_at=record.created_at.isoformat(),
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post(
    "/login",
    response_model=LoginResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_operator)],
)
def login(
    body: LoginRequest,
    request: Request,
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    """Issue a session for a principal whose password was verified upstream."""
    result = service.login(
        db,
        body.principal_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return LoginResponse(
        session_id=result.session_id,
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=result.expires_in,
        refresh_expires_in=result.refresh_expires_in,
        token_type=result.token_type,
    )


@router.post("/refresh", response_model=RefreshResponse)
def refresh(
    body: RefreshRequest,
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    result = service.refresh_session(db, body.refresh_token)
    return RefreshResponse(
        access_token=result.access_token,
        expires_in=result.expires_in,
        token_type=result.token_type,
    )


@router.get("/me", response_model=SessionResponse)
def current_session(session: PrincipalSession = Depends(get_current_session)):
    return _to_response(session)


@router.post("/logout", response_model=SessionResponse)
def logout(
    session: PrincipalSession = Depends(get_current_session),
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    return _to_response(service.revoke_session(db, session.session_id))


@router.post(
    "/{session_id}/revoke",
    response_model=SessionResponse,
    dependencies=[Depends(require_operator)],
)
def revoke(
    session_id: str,
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    return _to_response(service.revoke_session(db, session_id))


@router.post(
    "/principals/{principal_id}/revoke",
    response_model=RevokeAllResponse,
    dependencies=[Depends(require_operator)],
)
def revoke_all(
    principal_id: str,
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    count = service.revoke_all_sessions(db, principal_id)
    return RevokeAllResponse(principal_id=principal_id, revoked=count)
