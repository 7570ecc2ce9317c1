"""Maintenance routes for external schedulers."""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from pos_pairing.api.dependencies import get_auth_service, require_operator
from pos_pairing.database.session import get_db
from pos_pairing.services.device_auth import DeviceAuthService

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_operator)])


class SweepRequest(BaseModel):
    now: datetime | None = None


class SweepResponse(BaseModel):
    codes_expired: int
    sessions_expired: int


@router.post("/sweep", response_model=SweepResponse)
def sweep_expired(
    body: SweepRequest | None = None,
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
):
    """Expire abandoned codes and dead sessions. Meant for cron, safe to repeat."""
    report = service.sweep_expired(db, body.now if body else None)
    return SweepResponse(codes_expired=report.codes_expired, sessions_expired=report.sessions_expired)
