import uuid

from sqlalchemy import CheckConstraint, Column, Index, Integer, String, text

from pos_pairing.database.base import Base, UTCDateTime, UUIDType
from pos_pairing.models.enums import CodeStatus


class ActivationCode(Base):
    __tablename__ = "activation_codes"
    __table_args__ = (
        # At most one BOUND code per fingerprint, enforced by the store itself.
        Index(
            "uq_activation_codes_bound_fingerprint",
            "fingerprint",
            unique=True,
            postgresql_where=text("status = 'BOUND'"),
            sqlite_where=text("status = 'BOUND'"),
        ),
        CheckConstraint("status IN ('UNUSED', 'BOUND', 'EXPIRED')", name="ck_activation_codes_status"),
        CheckConstraint("attempts >= 0", name="ck_activation_codes_attempts"),
    )

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    code = Column(String(12), nullable=False, unique=True, index=True)
    device_ref = Column(String(64), nullable=True, index=True)
    created_by = Column(String(64), nullable=True)
    fingerprint = Column(String(255), nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    status = Column(String(16), nullable=False, default=CodeStatus.UNUSED.value, index=True)
    version = Column(Integer, nullable=False, default=1)
    issued_at = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    bound_at = Column(UTCDateTime, nullable=True)
    expired_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    @property
    def attempts_remaining(self) -> int:
        return max(0, (self.max_attempts or 0) - (self.attempts or 0))

    def __repr__(self) -> str:
        return f"<ActivationCode {self.code[:4]}******** status={self.status}>"
