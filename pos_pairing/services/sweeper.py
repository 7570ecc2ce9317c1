"""Batch expiry of stale activation codes and sessions.

Triggered from outside (cron, admin endpoint); never schedules itself.
Idempotent and additive: it only ever moves UNUSED -> EXPIRED and
ACTIVE -> EXPIRED, and only for rows whose window has already closed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from pos_pairing.core.clock import Clock, utcnow
from pos_pairing.services.activation_code_store import ActivationCodeStore
from pos_pairing.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepReport:
    codes_expired: int
    sessions_expired: int


class ExpirySweeper:
    def __init__(self, store: ActivationCodeStore, registry: SessionRegistry, clock: Clock = utcnow):
        self.store = store
        self.registry = registry
        self._clock = clock

    def sweep_expired_codes(self, db: Session, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        count = self.store.expire_unused_before(db, now)
        db.commit()
        return count

    def sweep_expired_sessions(self, db: Session, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        count = self.registry.expire_elapsed(db, now)
        db.commit()
        return count

    def sweep(self, db: Session, now: Optional[datetime] = None) -> SweepReport:
        now = now or self._clock()
        report = SweepReport(
            codes_expired=self.sweep_expired_codes(db, now),
            sessions_expired=self.sweep_expired_sessions(db, now),
        )
        logger.info(
            "Expiry sweep finished",
            extra={
                "now": now.isoformat(),
                "codes_expired": report.codes_expired,
                "sessions_expired": report.sessions_expired,
            },
        )
        return report
