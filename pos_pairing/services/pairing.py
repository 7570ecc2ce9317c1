"""Activation code lifecycle: issue, redeem, status, invalidation.

State machine::

    UNUSED --redeem--------------------> BOUND
    UNUSED --timeout / attempts spent--> EXPIRED
    BOUND  --device reset--------------> EXPIRED

Nothing leaves EXPIRED. Expiry is decided at read time: a code past its
``expires_at`` is treated as expired whether or not the sweeper has written
that status yet.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from pos_pairing.core.clock import Clock, utcnow
from pos_pairing.core.errors import (
    AlreadyUsed,
    AttemptsExceeded,
    Expired,
    FingerprintConflict,
    InvalidArgument,
    NotFound,
)
from pos_pairing.core.identifiers import clean_ref, require_ref
from pos_pairing.models.activation_code import ActivationCode
from pos_pairing.models.enums import CodeStatus
from pos_pairing.services.activation_code_store import ActivationCodeStore
from pos_pairing.services.code_generator import mask_code
from pos_pairing.services.fingerprint_binder import BindResult, FingerprintBinder

logger = logging.getLogger(__name__)

MAX_FINGERPRINT_LENGTH = 255


class PairingStateMachine:
    def __init__(
        self,
        store: ActivationCodeStore,
        binder: FingerprintBinder,
        *,
        default_ttl: timedelta = timedelta(hours=24),
        max_attempts: int = 3,
        require_device_ref: bool = True,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.binder = binder
        self.default_ttl = default_ttl
        self.max_attempts = max_attempts
        self.require_device_ref = require_device_ref
        self._clock = clock

    # -----------------------------------------------------------------------
    # Input normalisation
    # -----------------------------------------------------------------------

    def normalize_code(self, code: Optional[str]) -> str:
        """Codes are typed by humans: tolerate whitespace and lower case."""
        if code is None:
            raise InvalidArgument("activation code is required", field="code")
        cleaned = code.strip().upper()
        if not self.store.generator.is_well_formed(cleaned):
            raise InvalidArgument("activation code is malformed", field="code")
        return cleaned

    def _validate_fingerprint(self, fingerprint: Optional[str]) -> str:
        if fingerprint is None or not fingerprint.strip():
            raise InvalidArgument("device fingerprint is required", field="fingerprint")
        fingerprint = fingerprint.strip()
        if len(fingerprint) > MAX_FINGERPRINT_LENGTH:
            raise InvalidArgument("device fingerprint too long", field="fingerprint")
        return fingerprint

    # -----------------------------------------------------------------------
    # Issue
    # -----------------------------------------------------------------------

    def issue(
        self,
        db: Session,
        device_ref: Optional[str] = None,
        created_by: Optional[str] = None,
        ttl: Optional[timedelta] = None,
        max_attempts: Optional[int] = None,
    ) -> ActivationCode:
        """Create a new UNUSED code, superseding any live code of the device."""
        device_ref = clean_ref(device_ref, "device_ref")
        created_by = clean_ref(created_by, "created_by")
        if device_ref is None and self.require_device_ref:
            raise InvalidArgument("device_ref is required", field="device_ref")

        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise InvalidArgument("ttl must be positive", field="ttl")
        max_attempts = self.max_attempts if max_attempts is None else max_attempts
        if max_attempts < 1:
            raise InvalidArgument("max_attempts must be at least 1", field="max_attempts")

        now = self._clock()

        if device_ref is not None:
            for prior in self.store.live_for_device(db, device_ref):
                if self.store.transition(
                    db, prior.id, [CodeStatus.UNUSED], CodeStatus.EXPIRED, now, expired_at=now,
                ):
                    logger.info(
                        "Superseded live activation code",
                        extra={"device_ref": device_ref, "code": mask_code(prior.code)},
                    )

        record = self.store.insert(
            db,
            device_ref=device_ref,
            created_by=created_by,
            issued_at=now,
            expires_at=now + ttl,
            max_attempts=max_attempts,
        )
        db.commit()
        db.refresh(record)

        logger.info(
            "Issued activation code",
            extra={
                "device_ref": device_ref,
                "code": mask_code(record.code),
                "expires_at": record.expires_at.isoformat(),
            },
        )
        return record

    # -----------------------------------------------------------------------
    # Redeem
    # -----------------------------------------------------------------------

    def redeem(self, db: Session, code: str, fingerprint: str, commit: bool = True) -> ActivationCode:
        """Bind ``fingerprint`` to ``code``.

        With ``commit=False`` a successful bind is left pending in the
        caller's transaction. Failures still commit their own bookkeeping
        (expiry, attempt counts) before raising.
        """
        code = self.normalize_code(code)
        fingerprint = self._validate_fingerprint(fingerprint)
        now = self._clock()

        record = self.store.get(db, code)
        if record is None:
            db.rollback()
            raise NotFound("activation code not found", code=mask_code(code))

        if record.status != CodeStatus.UNUSED:
            spent = record.status == CodeStatus.EXPIRED and record.attempts >= record.max_attempts
            db.rollback()
            if spent:
                raise AttemptsExceeded("activation attempts exhausted", code=mask_code(code))
            raise AlreadyUsed("activation code already used or expired", code=mask_code(code))

        if now > record.expires_at:
            self._expire(db, record, now, reason="ttl")
            raise Expired("activation code expired", code=mask_code(code))

        if record.attempts >= record.max_attempts:
            self._expire(db, record, now, reason="attempts")
            raise AttemptsExceeded("activation attempts exhausted", code=mask_code(code))

        record_id = record.id
        result = self.binder.check_and_reserve(db, record, fingerprint, now)

        if result is BindResult.CONFLICT:
            # Counts as a failed attempt on the offered code, committed even
            # though the redemption fails.
            self.store.record_failed_attempt(db, record_id, now)
            spent = self.store.expire_if_spent(db, record_id, now)
            db.commit()
            logger.info(
                "Redemption rejected: fingerprint bound elsewhere",
                extra={"code": mask_code(code), "expired": spent},
            )
            raise FingerprintConflict("fingerprint already bound to another code", code=mask_code(code))

        if result is BindResult.LOST_RACE:
            logger.info("Redemption lost race", extra={"code": mask_code(code)})
            raise AlreadyUsed("activation code already used or expired", code=mask_code(code))

        if commit:
            db.commit()
        db.refresh(record)
        logger.info(
            "Activation code bound",
            extra={"code": mask_code(code), "device_ref": record.device_ref},
        )
        return record

    def _expire(self, db: Session, record: ActivationCode, now: datetime, reason: str) -> None:
        record_code = record.code
        self.store.transition(
            db, record.id, [CodeStatus.UNUSED], CodeStatus.EXPIRED, now, expired_at=now,
        )
        db.commit()
        logger.info("Activation code expired", extra={"code": mask_code(record_code), "reason": reason})

    # -----------------------------------------------------------------------
    # Reads and invalidation
    # -----------------------------------------------------------------------

    def status(self, db: Session, code: str) -> ActivationCode:
        code = self.normalize_code(code)
        record = self.store.get(db, code)
        if record is None:
            raise NotFound("activation code not found", code=mask_code(code))
        return record

    def effective_status(self, record: ActivationCode, now: Optional[datetime] = None) -> CodeStatus:
        """Status as a redemption would see it right now (no write)."""
        now = now or self._clock()
        status = CodeStatus(record.status)
        if status is CodeStatus.UNUSED and (
            now > record.expires_at or record.attempts >= record.max_attempts
        ):
            return CodeStatus.EXPIRED
        return status

    def invalidate_all_for_device(self, db: Session, device_ref: str) -> int:
        device_ref = require_ref(device_ref, "device_ref")

        count = self.store.expire_for_device(db, device_ref, self._clock())
        db.commit()
        logger.info("Invalidated device activation codes", extra={"device_ref": device_ref, "count": count})
        return count
