"""Shared FastAPI dependencies for operator auth, bearer auth and services."""

import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from pos_pairing.database.session import get_db
from pos_pairing.models.principal_session import PrincipalSession
from pos_pairing.services.device_auth import DeviceAuthService

bearer_scheme = HTTPBearer(auto_error=False)
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_auth_service(request: Request) -> DeviceAuthService:
    return request.app.state.auth_service


def require_operator(
    request: Request,
    x_api_key: str | None = Depends(api_key_header),
) -> None:
    """Validate the shared operator API key."""
    expected = request.app.state.settings.OPERATOR_API_KEY
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Operator API key not configured",
        )
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
        )
    if not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


def get_current_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: DeviceAuthService = Depends(get_auth_service),
    db: Session = Depends(get_db),
) -> PrincipalSession:
    """Resolve the bearer access token to a live session."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
        )
    return service.authenticate(db, credentials.credentials)
