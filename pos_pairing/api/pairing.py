"""Activation code issuance, redemption and device bindings."""

from datetime import timedelta

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from pos_pairing.api.dependencies import get_auth_service, require_operator
from pos_pairing.database.session import get_db
from pos_pairing.services.device_auth import DeviceAuthService

router = APIRouter(prefix="/pairing", tags=["pairing"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class IssueCodeRequest(BaseModel):
    device_ref: str | None = None
    created_by: str | None = None
    ttl_seconds: int | None = Field(default=None, gt=0)


class IssueCodeResponse(BaseModel):
    code: str
    expires_at: str
    device_ref: str | None = None


class RedeemRequest(BaseModel):
    code: str
    fingerprint: str


class RedeemResponse(BaseModel):
    device_ref: str | None = None
    bound_at: str
    session_id: str
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


class CodeStatusResponse(BaseModel):
    status: str
    attempts_remaining: int
    expires_at: str
    device_ref: str | None = None
    bound_at: str | None = None


class InvalidateResponse(BaseModel):
    device_ref: str
    codes_expired: int


class ResetResponse(BaseModel):
    device_ref: str
    codes_expired: int
    sessions_revoked: int


class BindingResponse(BaseModel):
    device_ref: str | None = None
    status: str
    bound_at: str | None = None


# ---------------------------------------------------------------------------
# Operator routes
# ---------------------------------------------------------------------------

@router.post(
    "/codes",
    response_model=IssueCodeResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_operator)],
)
def issue_code(
    body: IssueCodeRequest,
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    """Generate a one-time activation code, superseding the device's live one."""
    ttl = timedelta(seconds=body.ttl_seconds) if body.ttl_seconds else None
    issued = service.issue_activation_code(db, device_ref=body.device_ref, ttl=ttl, created_by=body.created_by)
    return IssueCodeResponse(
        code=issued.code,
        expires_at=issued.expires_at.isoformat(),
        device_ref=issued.device_ref,
    )


@router.get(
    "/codes/{code}",
    response_model=CodeStatusResponse,
    dependencies=[Depends(require_operator)],
)
def code_status(
    code: str,
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    view = service.get_code_status(db, code)
    return CodeStatusResponse(
        status=view.status.value,
        attempts_remaining=view.attempts_remaining,
        expires_at=view.expires_at.isoformat(),
        device_ref=view.device_ref,
        bound_at=view.bound_at.isoformat() if view.bound_at else None,
    )


@router.post(
    "/devices/{device_ref}/invalidate",
    response_model=InvalidateResponse,
    dependencies=[Depends(require_operator)],
)
def invalidate_device(
    device_ref: str,
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    count = service.invalidate_device_codes(db, device_ref)
    return InvalidateResponse(device_ref=device_ref, codes_expired=count)


@router.post(
    "/devices/{device_ref}/reset",
    response_model=ResetResponse,
    dependencies=[Depends(require_operator)],
)
def reset_device(
    device_ref: str,
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    """Factory reset: expire every code and revoke every session of the device."""
    result = service.reset_device(db, device_ref)
    return ResetResponse(
        device_ref=device_ref,
        codes_expired=result.codes_expired,
        sessions_revoked=result.sessions_revoked,
    )


@router.get(
    "/bindings/{fingerprint}",
    response_model=BindingResponse,
    dependencies=[Depends(require_operator)],
)
def get_binding(
    fingerprint: str,
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    record = service.find_binding(db, fingerprint)
    return BindingResponse(
        device_ref=record.device_ref,
        status=record.status,
        bound_at=record.bound_at.isoformat() if record.bound_at else None,
    )


# ---------------------------------------------------------------------------
# Device redemption (unauthenticated, the code is the credential)
# ---------------------------------------------------------------------------

@router.post("/redeem", response_model=RedeemResponse)
def redeem_code(
    body: RedeemRequest,
    request: Request,
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    """Bind a device fingerprint to an activation code and open a device session."""
    redemption, login = service.redeem_and_login(
        db,
        body.code,
        body.fingerprint,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return RedeemResponse(
        device_ref=redemption.device_ref,
        bound_at=redemption.bound_at.isoformat(),
        session_id=login.session_id,
        access_token=login.access_token,
        refresh_token=login.refresh_token,
        expires_in=login.expires_in,
        token_type=login.token_type,
    )
