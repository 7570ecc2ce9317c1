"""Bookkeeping for issued token sessions.

Sessions are never deleted: they end as EXPIRED (sweeper) or REVOKED
(explicit invalidation, terminal). The registry does not promote state on
its own; an ACTIVE session whose access token has lapsed stays ACTIVE and is
only good for a refresh until the sweeper catches up.
"""

import hashlib
import logging
import uuid
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import or_
from sqlalchemy.orm import Session

from pos_pairing.core.clock import Clock, utcnow
from pos_pairing.core.errors import InvalidArgument, NotFound
from pos_pairing.models.enums import SessionStatus
from pos_pairing.models.principal_session import PrincipalSession
from pos_pairing.services.token_issuer import TokenPair

logger = logging.getLogger(__name__)

SessionId = Union[str, uuid.UUID]


def hash_token(token: str, pepper: str = "") -> str:
    """Hash a token with the configured pepper."""
    return hashlib.sha256(f"{pepper}:{token}".encode()).hexdigest()


def parse_session_id(session_id: SessionId) -> uuid.UUID:
    if isinstance(session_id, uuid.UUID):
        return session_id
    try:
        return uuid.UUID(str(session_id))
    except ValueError as exc:
        raise InvalidArgument("session id is malformed", field="session_id") from exc


class SessionRegistry:
    def __init__(self, pepper: str = "", clock: Clock = utcnow):
        self._pepper = pepper
        self._clock = clock

    def _hash(self, token: str) -> str:
        return hash_token(token, self._pepper)

    def open(
        self,
        db: Session,
        principal_id: str,
        tokens: TokenPair,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        session_id: Optional[SessionId] = None,
        commit: bool = True,
    ) -> PrincipalSession:
        if tokens.access_expires_at > tokens.refresh_expires_at:
            raise InvalidArgument("access token outlives refresh token", field="tokens")

        now = self._clock()
        record = PrincipalSession(
            id=parse_session_id(session_id) if session_id is not None else uuid.uuid4(),
            principal_id=principal_id,
            access_token_hash=self._hash(tokens.access_token),
            refresh_token_hash=self._hash(tokens.refresh_token),
            refresh_token_jti=tokens.refresh_jti,
            access_token_expires_at=tokens.access_expires_at,
            refresh_token_expires_at=tokens.refresh_expires_at,
            ip_address=ip_address[:45] if ip_address else None,
            user_agent=user_agent[:500] if user_agent else None,
            status=SessionStatus.ACTIVE.value,
            last_activity_at=now,
            created_at=now,
            updated_at=now,
        )
        db.add(record)
        if commit:
            db.commit()
        else:
            db.flush()
        db.refresh(record)

        logger.info(
            "Opened session",
            extra={"session_id": record.session_id, "principal_id": principal_id},
        )
        return record

    def get(self, db: Session, session_id: SessionId) -> Optional[PrincipalSession]:
        return db.get(PrincipalSession, parse_session_id(session_id))

    def require(self, db: Session, session_id: SessionId) -> PrincipalSession:
        record = self.get(db, session_id)
        if record is None:
            raise NotFound("session not found", session_id=str(session_id))
        return record

    def lookup(self, db: Session, token: str) -> Optional[PrincipalSession]:
        """Find the session owning an access or refresh token."""
        if not token:
            return None
        digest = self._hash(token)
        return (
            db.query(PrincipalSession)
            .filter(
                or_(
                    PrincipalSession.access_token_hash == digest,
                    PrincipalSession.refresh_token_hash == digest,
                )
            )
            .first()
        )

    def touch(self, db: Session, session_id: SessionId) -> PrincipalSession:
        record = self.require(db, session_id)
        now = self._clock()
        record.last_activity_at = now
        record.updated_at = now
        db.commit()
        db.refresh(record)
        return record

    def rotate_access(
        self,
        db: Session,
        record: PrincipalSession,
        access_token: str,
        expires_at: datetime,
    ) -> PrincipalSession:
        if expires_at > record.refresh_token_expires_at:
            raise InvalidArgument("access token outlives refresh token", field="expires_at")

        now = self._clock()
        record.access_token_hash = self._hash(access_token)
        record.access_token_expires_at = expires_at
        record.last_activity_at = now
        record.updated_at = now
        db.commit()
        db.refresh(record)
        logger.info("Rotated access token", extra={"session_id": record.session_id})
        return record

    def revoke(self, db: Session, session_id: SessionId) -> PrincipalSession:
        record = self.require(db, session_id)
        now = self._clock()
        changed = (
            db.query(PrincipalSession)
            .filter(
                PrincipalSession.id == record.id,
                PrincipalSession.status != SessionStatus.REVOKED.value,
            )
            .update(
                {
                    PrincipalSession.status: SessionStatus.REVOKED.value,
                    PrincipalSession.revoked_at: now,
                    PrincipalSession.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        db.refresh(record)
        if changed:
            logger.info("Revoked session", extra={"session_id": record.session_id})
        return record

    def revoke_all_for(self, db: Session, principal_id: str) -> int:
        now = self._clock()
        count = (
            db.query(PrincipalSession)
            .filter(
                PrincipalSession.principal_id == principal_id,
                PrincipalSession.status == SessionStatus.ACTIVE.value,
            )
            .update(
                {
                    PrincipalSession.status: SessionStatus.REVOKED.value,
                    PrincipalSession.revoked_at: now,
                    PrincipalSession.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        logger.info("Revoked principal sessions", extra={"principal_id": principal_id, "count": count})
        return count

    def expire_elapsed(self, db: Session, now: datetime) -> int:
        """ACTIVE sessions whose access and refresh windows have both elapsed."""
        return (
            db.query(PrincipalSession)
            .filter(
                PrincipalSession.status == SessionStatus.ACTIVE.value,
                PrincipalSession.access_token_expires_at < now,
                PrincipalSession.refresh_token_expires_at < now,
            )
            .update(
                {
                    PrincipalSession.status: SessionStatus.EXPIRED.value,
                    PrincipalSession.updated_at: now,
                },
                synchronize_session=False,
            )
        )
