"""Durable lifecycle record of activation codes.

The store is the only writer of ``activation_codes`` rows. Every mutation is a
conditional UPDATE keyed on the current status, so two callers racing on the
same row cannot both win; the caller learns which one it was from the
returned row count.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pos_pairing.core.errors import StorageFailure
from pos_pairing.models.activation_code import ActivationCode
from pos_pairing.models.enums import CodeStatus
from pos_pairing.services.code_generator import CodeGenerator, mask_code

logger = logging.getLogger(__name__)


class ActivationCodeStore:
    def __init__(self, generator: CodeGenerator, max_draws: int = 5):
        self.generator = generator
        self.max_draws = max_draws

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get(self, db: Session, code: str) -> Optional[ActivationCode]:
        return db.query(ActivationCode).filter(ActivationCode.code == code).first()

    def live_for_device(self, db: Session, device_ref: str) -> List[ActivationCode]:
        return (
            db.query(ActivationCode)
            .filter(
                ActivationCode.device_ref == device_ref,
                ActivationCode.status == CodeStatus.UNUSED.value,
            )
            .all()
        )

    def bound_by_fingerprint(self, db: Session, fingerprint: str) -> Optional[ActivationCode]:
        return (
            db.query(ActivationCode)
            .filter(
                ActivationCode.fingerprint == fingerprint,
                ActivationCode.status == CodeStatus.BOUND.value,
            )
            .first()
        )

    # -----------------------------------------------------------------------
    # Inserts
    # -----------------------------------------------------------------------

    def insert(
        self,
        db: Session,
        *,
        device_ref: Optional[str],
        created_by: Optional[str],
        issued_at: datetime,
        expires_at: datetime,
        max_attempts: int,
    ) -> ActivationCode:
        """Add a fresh UNUSED row, re-drawing the code on a uniqueness clash.

        Each draw runs in a SAVEPOINT so a collision does not roll back work
        the caller already did in the surrounding transaction.
        """
        for draw in range(1, self.max_draws + 1):
            candidate = self.generator.new_code()
            record = ActivationCode(
                code=candidate,
                device_ref=device_ref,
                created_by=created_by,
                attempts=0,
                max_attempts=max_attempts,
                status=CodeStatus.UNUSED.value,
                version=1,
                issued_at=issued_at,
                expires_at=expires_at,
                created_at=issued_at,
                updated_at=issued_at,
            )
            try:
                with db.begin_nested():
                    db.add(record)
            except IntegrityError:
                logger.warning(
                    "Activation code collision, re-drawing",
                    extra={"draw": draw, "code": mask_code(candidate)},
                )
                continue
            return record

        raise StorageFailure(
            "activation_code.insert",
            RuntimeError(f"no unique code after {self.max_draws} draws"),
        )

    # -----------------------------------------------------------------------
    # Conditional transitions
    # -----------------------------------------------------------------------

    def transition(
        self,
        db: Session,
        record_id,
        from_statuses: Iterable[CodeStatus],
        to_status: CodeStatus,
        now: datetime,
        **values,
    ) -> bool:
        """Move one row to ``to_status`` only if it is still in ``from_statuses``."""
        allowed = [s.value for s in from_statuses]
        changes = {
            ActivationCode.status: to_status.value,
            ActivationCode.updated_at: now,
            ActivationCode.version: ActivationCode.version + 1,
        }
        for key, value in values.items():
            changes[getattr(ActivationCode, key)] = value

        matched = (
            db.query(ActivationCode)
            .filter(ActivationCode.id == record_id, ActivationCode.status.in_(allowed))
            .update(changes, synchronize_session=False)
        )
        return matched == 1

    def record_failed_attempt(self, db: Session, record_id, now: datetime) -> None:
        # Incremented in SQL so concurrent failures are never lost.
        db.query(ActivationCode).filter(ActivationCode.id == record_id).update(
            {
                ActivationCode.attempts: ActivationCode.attempts + 1,
                ActivationCode.updated_at: now,
                ActivationCode.version: ActivationCode.version + 1,
            },
            synchronize_session=False,
        )

    def expire_if_spent(self, db: Session, record_id, now: datetime) -> bool:
        """UNUSED -> EXPIRED once the attempt budget is used up."""
        matched = (
            db.query(ActivationCode)
            .filter(
                ActivationCode.id == record_id,
                ActivationCode.status == CodeStatus.UNUSED.value,
                ActivationCode.attempts >= ActivationCode.max_attempts,
            )
            .update(
                {
                    ActivationCode.status: CodeStatus.EXPIRED.value,
                    ActivationCode.expired_at: now,
                    ActivationCode.updated_at: now,
                    ActivationCode.version: ActivationCode.version + 1,
                },
                synchronize_session=False,
            )
        )
        return matched == 1

    def expire_for_device(self, db: Session, device_ref: str, now: datetime) -> int:
        return (
            db.query(ActivationCode)
            .filter(
                ActivationCode.device_ref == device_ref,
                ActivationCode.status.in_([CodeStatus.UNUSED.value, CodeStatus.BOUND.value]),
            )
            .update(
                {
                    ActivationCode.status: CodeStatus.EXPIRED.value,
                    ActivationCode.bound_at: None,
                    ActivationCode.expired_at: now,
                    ActivationCode.updated_at: now,
                    ActivationCode.version: ActivationCode.version + 1,
                },
                synchronize_session=False,
            )
        )

    def expire_unused_before(self, db: Session, now: datetime) -> int:
        return (
            db.query(ActivationCode)
            .filter(
                ActivationCode.status == CodeStatus.UNUSED.value,
                ActivationCode.expires_at < now,
            )
            .update(
                {
                    ActivationCode.status: CodeStatus.EXPIRED.value,
                    ActivationCode.expired_at: now,
                    ActivationCode.updated_at: now,
                    ActivationCode.version: ActivationCode.version + 1,
                },
                synchronize_session=False,
            )
        )
