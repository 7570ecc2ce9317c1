import pytest
from sqlalchemy.exc import IntegrityError

from pos_pairing.core.errors import FingerprintConflict
from pos_pairing.models.activation_code import ActivationCode
from pos_pairing.models.enums import CodeStatus
from pos_pairing.services.fingerprint_binder import BindResult


def _get(db, code):
    db.expire_all()
    return db.query(ActivationCode).filter(ActivationCode.code == code).one()


def test_find_bound_by_fingerprint(db, pairing):
    code = pairing.issue(db, device_ref="D1").code
    pairing.redeem(db, code, "fp-abc")

    found = pairing.binder.find_bound_by_fingerprint(db, "fp-abc")
    assert found is not None
    assert found.code == code
    assert found.device_ref == "D1"

    assert pairing.binder.find_bound_by_fingerprint(db, "fp-unknown") is None


def test_unused_codes_do_not_hold_fingerprints(db, pairing):
    pairing.issue(db, device_ref="D1")
    assert pairing.binder.find_bound_by_fingerprint(db, "fp-abc") is None


def test_check_and_reserve_reports_conflict(db, pairing, clock):
    first = pairing.issue(db, device_ref="D1").code
    pairing.redeem(db, first, "fp-abc")
    second = pairing.issue(db, device_ref="D2").code

    result = pairing.binder.check_and_reserve(db, _get(db, second), "fp-abc", clock.now)

    assert result is BindResult.CONFLICT
    assert _get(db, second).status == CodeStatus.UNUSED


def test_check_and_reserve_reports_lost_race(db, pairing, clock):
    code = pairing.issue(db, device_ref="D1").code
    record = _get(db, code)
    pairing.redeem(db, code, "fp-abc")

    assert pairing.binder.check_and_reserve(db, record, "fp-other", clock.now) is BindResult.LOST_RACE


def test_unique_index_closes_gap_left_by_read_check(db, pairing, clock, mocker):
    first = pairing.issue(db, device_ref="D1").code
    pairing.redeem(db, first, "fp-abc")
    second = pairing.issue(db, device_ref="D2").code

    # Simulate a redemption whose read-side check ran before the first commit.
    mocker.patch.object(pairing.binder, "find_bound_by_fingerprint", return_value=None)
    result = pairing.binder.check_and_reserve(db, _get(db, second), "fp-abc", clock.now)

    assert result is BindResult.CONFLICT
    assert _get(db, second).status == CodeStatus.UNUSED
    assert _get(db, first).status == CodeStatus.BOUND


def test_redeem_maps_index_violation_to_conflict(db, pairing, mocker):
    first = pairing.issue(db, device_ref="D1").code
    pairing.redeem(db, first, "fp-abc")
    second = pairing.issue(db, device_ref="D2").code

    mocker.patch.object(pairing.binder, "find_bound_by_fingerprint", return_value=None)
    with pytest.raises(FingerprintConflict):
        pairing.redeem(db, second, "fp-abc")
    assert _get(db, second).attempts == 1


def test_store_refuses_second_bound_row(db, pairing, store, clock):
    first = pairing.issue(db, device_ref="D1").code
    pairing.redeem(db, first, "fp-abc")
    second = _get(db, pairing.issue(db, device_ref="D2").code)

    with pytest.raises(IntegrityError):
        store.transition(
            db, second.id, [CodeStatus.UNUSED], CodeStatus.BOUND, clock.now,
            fingerprint="fp-abc", bound_at=clock.now,
        )
    db.rollback()


def test_fingerprint_is_released_by_device_reset(db, pairing):
    first = pairing.issue(db, device_ref="D1").code
    pairing.redeem(db, first, "fp-abc")
    pairing.invalidate_all_for_device(db, "D1")

    again = pairing.issue(db, device_ref="D1").code
    record = pairing.redeem(db, again, "fp-abc")

    assert record.status == CodeStatus.BOUND
    assert pairing.binder.find_bound_by_fingerprint(db, "fp-abc").code == again
