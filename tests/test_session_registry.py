from datetime import timedelta

import pytest

from pos_pairing.core.errors import InvalidArgument, NotFound
from pos_pairing.models.enums import SessionStatus
from pos_pairing.models.principal_session import PrincipalSession
from pos_pairing.services.session_registry import hash_token
from pos_pairing.services.token_issuer import TokenPair


@pytest.fixture
def tokens(issuer):
    return issuer.issue("merchant-1", access_ttl=timedelta(hours=1), refresh_ttl=timedelta(days=7))


def test_open_records_hashes_not_tokens(db, registry, tokens, clock):
    record = registry.open(db, "merchant-1", tokens, ip_address="10.0.0.5", user_agent="pos-terminal/2.1")

    assert record.status == SessionStatus.ACTIVE
    assert record.principal_id == "merchant-1"
    assert record.access_token_hash == hash_token(tokens.access_token, "pepper")
    assert record.refresh_token_hash == hash_token(tokens.refresh_token, "pepper")
    assert record.refresh_token_jti == tokens.refresh_jti
    assert record.access_token_expires_at == tokens.access_expires_at
    assert record.refresh_token_expires_at == tokens.refresh_expires_at
    assert record.ip_address == "10.0.0.5"
    assert record.last_activity_at == clock.now
    assert record.created_at == clock.now

    stored = {value for value in vars(record).values() if isinstance(value, str)}
    assert tokens.access_token not in stored
    assert tokens.refresh_token not in stored


def test_open_rejects_inverted_expiry(db, registry, tokens):
    inverted = TokenPair(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        issued_at=tokens.issued_at,
        access_expires_at=tokens.refresh_expires_at + timedelta(seconds=1),
        refresh_expires_at=tokens.refresh_expires_at,
        refresh_jti=tokens.refresh_jti,
    )
    with pytest.raises(InvalidArgument):
        registry.open(db, "merchant-1", inverted)


def test_lookup_by_either_token(db, registry, tokens):
    record = registry.open(db, "merchant-1", tokens)

    assert registry.lookup(db, tokens.access_token).id == record.id
    assert registry.lookup(db, tokens.refresh_token).id == record.id
    assert registry.lookup(db, "unknown-token") is None
    assert registry.lookup(db, "") is None


def test_open_with_explicit_session_id(db, registry, tokens):
    record = registry.open(db, "merchant-1", tokens, session_id="6f1c1a52-52a4-4c4e-9e0f-4a3cfc9a3e21")
    assert record.session_id == "6f1c1a52-52a4-4c4e-9e0f-4a3cfc9a3e21"


def test_touch_updates_last_activity(db, registry, tokens, clock):
    record = registry.open(db, "merchant-1", tokens)
    clock.advance(minutes=7)

    touched = registry.touch(db, record.session_id)
    assert touched.last_activity_at == clock.now
    assert touched.created_at == clock.now - timedelta(minutes=7)


def test_touch_unknown_session(db, registry):
    with pytest.raises(NotFound):
        registry.touch(db, "6f1c1a52-52a4-4c4e-9e0f-4a3cfc9a3e21")
    with pytest.raises(InvalidArgument):
        registry.touch(db, "not-a-session-id")


def test_revoke_is_terminal_and_idempotent(db, registry, tokens, clock):
    record = registry.open(db, "merchant-1", tokens)

    revoked = registry.revoke(db, record.session_id)
    assert revoked.status == SessionStatus.REVOKED
    assert revoked.revoked_at == clock.now

    clock.advance(minutes=1)
    again = registry.revoke(db, record.session_id)
    assert again.status == SessionStatus.REVOKED
    assert again.revoked_at == clock.now - timedelta(minutes=1)


def test_revoke_unknown_session(db, registry):
    with pytest.raises(NotFound):
        registry.revoke(db, "6f1c1a52-52a4-4c4e-9e0f-4a3cfc9a3e21")


def test_revoke_all_for_principal(db, registry, issuer):
    for n in range(3):
        registry.open(db, "merchant-1", issuer.issue("merchant-1", {"n": n}))
    other = registry.open(db, "merchant-2", issuer.issue("merchant-2"))
    already = registry.open(db, "merchant-1", issuer.issue("merchant-1", {"n": 99}))
    registry.revoke(db, already.session_id)

    assert registry.revoke_all_for(db, "merchant-1") == 3
    assert registry.revoke_all_for(db, "merchant-1") == 0

    db.expire_all()
    statuses = {
        row.principal_id + ":" + row.status
        for row in db.query(PrincipalSession).all()
    }
    assert statuses == {"merchant-1:REVOKED", "merchant-2:ACTIVE"}
    assert registry.get(db, other.session_id).status == SessionStatus.ACTIVE


def test_rotate_access_replaces_hash(db, registry, issuer, tokens, clock):
    record = registry.open(db, "merchant-1", tokens)
    clock.advance(minutes=30)
    new_token, expires_at = issuer.issue_access("merchant-1", {"sid": record.session_id})

    rotated = registry.rotate_access(db, record, new_token, expires_at)

    assert rotated.access_token_hash == hash_token(new_token, "pepper")
    assert rotated.access_token_expires_at == expires_at
    assert registry.lookup(db, tokens.access_token) is None
    assert registry.lookup(db, new_token).id == record.id


def test_rotate_access_cannot_outlive_refresh(db, registry, tokens):
    record = registry.open(db, "merchant-1", tokens)
    with pytest.raises(InvalidArgument):
        registry.rotate_access(db, record, "whatever", tokens.refresh_expires_at + timedelta(seconds=1))
