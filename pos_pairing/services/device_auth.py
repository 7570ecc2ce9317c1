"""The core's outward surface: what collaborators (HTTP layer, schedulers,
merchant login) call.

``DeviceAuthService`` is assembled once per process from settings and
injected; it owns no mutable state beyond its collaborators. Expected
outcomes surface as ``PairingError`` subclasses. Anything the database throws
that the state machine did not anticipate is logged with context and
re-raised as ``StorageFailure``.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pos_pairing.core.clock import Clock, utcnow
from pos_pairing.core.config import DEV_JWT_SECRET, Settings
from pos_pairing.core.errors import (
    Expired,
    InvalidArgument,
    NotFound,
    Revoked,
    StorageFailure,
)
from pos_pairing.core.identifiers import require_ref
from pos_pairing.models.activation_code import ActivationCode
from pos_pairing.models.enums import CodeStatus, SessionStatus, TokenKind
from pos_pairing.models.principal_session import PrincipalSession
from pos_pairing.services.activation_code_store import ActivationCodeStore
from pos_pairing.services.code_generator import CodeGenerator
from pos_pairing.services.fingerprint_binder import FingerprintBinder
from pos_pairing.services.pairing import PairingStateMachine
from pos_pairing.services.session_registry import SessionRegistry
from pos_pairing.services.sweeper import ExpirySweeper, SweepReport
from pos_pairing.services.token_issuer import TokenIssuer

logger = logging.getLogger(__name__)

SESSION_CLAIM = "sid"


@dataclass(frozen=True)
class IssuedCode:
    code: str
    expires_at: datetime
    device_ref: Optional[str]


@dataclass(frozen=True)
class CodeStatusView:
    status: CodeStatus
    attempts_remaining: int
    expires_at: datetime
    device_ref: Optional[str]
    bound_at: Optional[datetime]


@dataclass(frozen=True)
class Redemption:
    device_ref: Optional[str]
    principal_id: str
    bound_at: datetime


@dataclass(frozen=True)
class LoginResult:
    session_id: str
    access_token: str
    refresh_token: str
    expires_in: int
    refresh_expires_in: int
    token_type: str = "Bearer"


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    expires_in: int
    token_type: str = "Bearer"


@dataclass(frozen=True)
class DeviceReset:
    codes_expired: int
    sessions_revoked: int


def device_principal(record: ActivationCode) -> str:
    """Principal id a bound device logs in as."""
    return record.device_ref or f"device:{record.id}"


class DeviceAuthService:
    def __init__(
        self,
        pairing: PairingStateMachine,
        issuer: TokenIssuer,
        registry: SessionRegistry,
        sweeper: ExpirySweeper,
        *,
        access_ttl: timedelta = timedelta(hours=1),
        refresh_ttl: timedelta = timedelta(days=30),
        clock: Clock = utcnow,
    ):
        self.pairing = pairing
        self.issuer = issuer
        self.registry = registry
        self.sweeper = sweeper
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, config: Settings, clock: Clock = utcnow) -> "DeviceAuthService":
        if config.ENVIRONMENT == "production" and config.JWT_SECRET == DEV_JWT_SECRET:
            raise InvalidArgument("JWT_SECRET must be set in production", field="JWT_SECRET")
        store = ActivationCodeStore(CodeGenerator(), max_draws=config.ACTIVATION_CODE_MAX_DRAWS)
        binder = FingerprintBinder(store)
        pairing = PairingStateMachine(
            store,
            binder,
            default_ttl=timedelta(hours=config.ACTIVATION_CODE_TTL_HOURS),
            max_attempts=config.ACTIVATION_CODE_MAX_ATTEMPTS,
            require_device_ref=config.REQUIRE_DEVICE_REF,
            clock=clock,
        )
        issuer = TokenIssuer(
            config.JWT_SECRET,
            algorithm=config.JWT_ALGORITHM,
            issuer=config.JWT_ISSUER,
            audience=config.JWT_AUDIENCE,
            leeway=timedelta(seconds=config.JWT_LEEWAY_SECONDS),
            clock=clock,
        )
        registry = SessionRegistry(pepper=config.TOKEN_HASH_PEPPER, clock=clock)
        return cls(
            pairing,
            issuer,
            registry,
            ExpirySweeper(store, registry, clock=clock),
            access_ttl=timedelta(seconds=config.ACCESS_TOKEN_TTL_SECONDS),
            refresh_ttl=timedelta(seconds=config.REFRESH_TOKEN_TTL_SECONDS),
            clock=clock,
        )

    @contextmanager
    def _storage(self, db: Session, operation: str, **context):
        try:
            yield
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "Storage failure",
                exc_info=exc,
                extra={"operation": operation, **context},
            )
            raise StorageFailure(operation, exc) from exc
        except StorageFailure as exc:
            db.rollback()
            logger.error(
                "Storage failure",
                exc_info=exc,
                extra={"operation": operation, **context},
            )
            raise

    # -----------------------------------------------------------------------
    # Activation codes
    # -----------------------------------------------------------------------

    def issue_activation_code(
        self,
        db: Session,
        device_ref: Optional[str] = None,
        ttl: Optional[timedelta] = None,
        created_by: Optional[str] = None,
    ) -> IssuedCode:
        with self._storage(db, "issue_activation_code", device_ref=device_ref):
            record = self.pairing.issue(db, device_ref=device_ref, created_by=created_by, ttl=ttl)
            return IssuedCode(code=record.code, expires_at=record.expires_at, device_ref=record.device_ref)

    def redeem_activation_code(self, db: Session, code: str, fingerprint: str) -> Redemption:
        with self._storage(db, "redeem_activation_code"):
            record = self.pairing.redeem(db, code, fingerprint)
            return Redemption(
                device_ref=record.device_ref,
                principal_id=device_principal(record),
                bound_at=record.bound_at,
            )

    def get_code_status(self, db: Session, code: str) -> CodeStatusView:
        with self._storage(db, "get_code_status"):
            record = self.pairing.status(db, code)
            return CodeStatusView(
                status=self.pairing.effective_status(record),
                attempts_remaining=record.attempts_remaining,
                expires_at=record.expires_at,
                device_ref=record.device_ref,
                bound_at=record.bound_at,
            )

    def invalidate_device_codes(self, db: Session, device_ref: str) -> int:
        with self._storage(db, "invalidate_device_codes", device_ref=device_ref):
            return self.pairing.invalidate_all_for_device(db, device_ref)

    def find_binding(self, db: Session, fingerprint: str) -> ActivationCode:
        """Device reconnect: recover a binding from the fingerprint alone."""
        if not fingerprint or not fingerprint.strip():
            raise InvalidArgument("device fingerprint is required", field="fingerprint")
        with self._storage(db, "find_binding"):
            record = self.pairing.binder.find_bound_by_fingerprint(db, fingerprint.strip())
        if record is None:
            raise NotFound("no device bound to this fingerprint")
        return record

    def reset_device(self, db: Session, device_ref: str) -> DeviceReset:
        codes = self.invalidate_device_codes(db, device_ref)
        sessions = self.revoke_all_sessions(db, device_ref.strip())
        return DeviceReset(codes_expired=codes, sessions_revoked=sessions)

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    def _open_session(
        self,
        db: Session,
        principal_id: str,
        ip_address: Optional[str],
        user_agent: Optional[str],
        commit: bool = True,
    ) -> LoginResult:
        session_id = uuid.uuid4()
        tokens = self.issuer.issue(
            principal_id,
            {SESSION_CLAIM: str(session_id)},
            access_ttl=self.access_ttl,
            refresh_ttl=self.refresh_ttl,
        )
        record = self.registry.open(
            db,
            principal_id,
            tokens,
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
            commit=commit,
        )
        return LoginResult(
            session_id=record.session_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.access_expires_in,
            refresh_expires_in=tokens.refresh_expires_in,
        )

    def login(
        self,
        db: Session,
        principal_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        """Open a session for a principal the caller has already authenticated."""
        principal_id = require_ref(principal_id, "principal_id")
        with self._storage(db, "login", principal_id=principal_id):
            return self._open_session(db, principal_id, ip_address, user_agent)

    def redeem_and_login(
        self,
        db: Session,
        code: str,
        fingerprint: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Tuple[Redemption, LoginResult]:
        """Bind the code and open the device's session in one transaction.

        If the session cannot be opened the bind is rolled back too, so the
        device can simply retry with the same code.
        """
        with self._storage(db, "redeem_and_login"):
            try:
                record = self.pairing.redeem(db, code, fingerprint, commit=False)
                redemption = Redemption(
                    device_ref=record.device_ref,
                    principal_id=device_principal(record),
                    bound_at=record.bound_at,
                )
                login = self._open_session(
                    db, redemption.principal_id, ip_address, user_agent, commit=False,
                )
                db.commit()
            except Exception:
                db.rollback()
                raise
        logger.info(
            "Device paired",
            extra={"device_ref": redemption.device_ref, "session_id": login.session_id},
        )
        return redemption, login

    def _live_session(self, db: Session, token: str) -> PrincipalSession:
        record = self.registry.lookup(db, token)
        if record is None:
            raise NotFound("session not found")
        if record.status == SessionStatus.REVOKED:
            raise Revoked("session revoked", session_id=record.session_id)
        if record.status == SessionStatus.EXPIRED:
            raise Expired("session expired", session_id=record.session_id)
        return record

    def refresh_session(self, db: Session, refresh_token: str) -> RefreshResult:
        verified = self.issuer.verify(refresh_token)
        if verified.kind is not TokenKind.REFRESH:
            raise InvalidArgument("not a refresh token", field="refresh_token")
        if verified.expired:
            raise Expired("refresh token expired")

        with self._storage(db, "refresh_session", principal_id=verified.principal_id):
            record = self._live_session(db, refresh_token)
            now = self._clock()
            if now > record.refresh_token_expires_at:
                raise Expired("refresh window elapsed", session_id=record.session_id)

            access_token, expires_at = self.issuer.issue_access(
                record.principal_id,
                {SESSION_CLAIM: record.session_id},
                ttl=self.access_ttl,
                not_after=record.refresh_token_expires_at,
            )
            self.registry.rotate_access(db, record, access_token, expires_at)

        return RefreshResult(
            access_token=access_token,
            expires_in=max(0, int((expires_at - now).total_seconds())),
        )

    def authenticate(self, db: Session, access_token: str) -> PrincipalSession:
        """Resolve a bearer access token to its live session and record activity."""
        verified = self.issuer.verify(access_token)
        if verified.kind is not TokenKind.ACCESS:
            raise InvalidArgument("not an access token", field="access_token")
        if verified.expired:
            raise Expired("access token expired")

        with self._storage(db, "authenticate", principal_id=verified.principal_id):
            record = self._live_session(db, access_token)
            return self.registry.touch(db, record.id)

    def revoke_session(self, db: Session, session_id: str) -> PrincipalSession:
        with self._storage(db, "revoke_session", session_id=str(session_id)):
            return self.registry.revoke(db, session_id)

    def revoke_all_sessions(self, db: Session, principal_id: str) -> int:
        principal_id = require_ref(principal_id, "principal_id")
        with self._storage(db, "revoke_all_sessions", principal_id=principal_id):
            return self.registry.revoke_all_for(db, principal_id)

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    def sweep_expired(self, db: Session, now: Optional[datetime] = None) -> SweepReport:
        with self._storage(db, "sweep_expired"):
            return self.sweeper.sweep(db, now)
