"""At most one BOUND activation code per device fingerprint.

The read-side check gives a fast, friendly answer; the partial unique index
``uq_activation_codes_bound_fingerprint`` is what actually closes the race,
because the UNUSED -> BOUND write and the uniqueness check commit together.
"""

import enum
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pos_pairing.models.activation_code import ActivationCode
from pos_pairing.models.enums import CodeStatus
from pos_pairing.services.activation_code_store import ActivationCodeStore
from pos_pairing.services.code_generator import mask_code

logger = logging.getLogger(__name__)


class BindResult(str, enum.Enum):
    OK = "ok"
    CONFLICT = "conflict"
    # The code left UNUSED under us (another redemption won).
    LOST_RACE = "lost_race"


class FingerprintBinder:
    def __init__(self, store: ActivationCodeStore):
        self.store = store

    def find_bound_by_fingerprint(self, db: Session, fingerprint: str) -> Optional[ActivationCode]:
        return self.store.bound_by_fingerprint(db, fingerprint)

    def check_and_reserve(
        self,
        db: Session,
        record: ActivationCode,
        fingerprint: str,
        now: datetime,
    ) -> BindResult:
        """Bind ``fingerprint`` to ``record`` inside the caller's transaction.

        On ``OK`` the caller commits. On ``CONFLICT`` / ``LOST_RACE`` the
        transaction has already been rolled back.
        """
        existing = self.find_bound_by_fingerprint(db, fingerprint)
        if existing is not None and existing.id != record.id:
            logger.info(
                "Fingerprint already bound",
                extra={"code": mask_code(record.code), "bound_code": mask_code(existing.code)},
            )
            db.rollback()
            return BindResult.CONFLICT

        record_id = record.id
        try:
            with db.begin_nested():
                won = self.store.transition(
                    db,
                    record_id,
                    [CodeStatus.UNUSED],
                    CodeStatus.BOUND,
                    now,
                    fingerprint=fingerprint,
                    bound_at=now,
                )
        except IntegrityError:
            # A concurrent redemption bound the same fingerprint first.
            db.rollback()
            return BindResult.CONFLICT

        if not won:
            db.rollback()
            return BindResult.LOST_RACE
        return BindResult.OK
