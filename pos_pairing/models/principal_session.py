import uuid

from sqlalchemy import CheckConstraint, Column, Index, String

from pos_pairing.database.base import Base, UTCDateTime, UUIDType
from pos_pairing.models.enums import SessionStatus


class PrincipalSession(Base):
    """Access/refresh token pair issued to a merchant or device principal.

    Raw tokens never touch the database, only their peppered hashes.
    """

    __tablename__ = "principal_sessions"
    __table_args__ = (
        Index("ix_principal_sessions_principal_status", "principal_id", "status"),
        CheckConstraint("status IN ('ACTIVE', 'EXPIRED', 'REVOKED')", name="ck_principal_sessions_status"),
        CheckConstraint(
            "access_token_expires_at <= refresh_token_expires_at",
            name="ck_principal_sessions_expiry_order",
        ),
    )

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    principal_id = Column(String(64), nullable=False, index=True)
    access_token_hash = Column(String(64), nullable=False, unique=True)
    refresh_token_hash = Column(String(64), nullable=False, unique=True)
    refresh_token_jti = Column(String(36), nullable=True)
    access_token_expires_at = Column(UTCDateTime, nullable=False)
    refresh_token_expires_at = Column(UTCDateTime, nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    status = Column(String(16), nullable=False, default=SessionStatus.ACTIVE.value, index=True)
    last_activity_at = Column(UTCDateTime, nullable=False)
    revoked_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    @property
    def session_id(self) -> str:
        return str(self.id)
