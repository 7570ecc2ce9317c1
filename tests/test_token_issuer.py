from datetime import timedelta

import jwt
import pytest

from pos_pairing.core.errors import InvalidArgument, InvalidSignature, Malformed
from pos_pairing.models.enums import TokenKind
from pos_pairing.services.token_issuer import TokenIssuer

SECRET = "unit-test-signing-secret-0123456789abcdef0123456789"


@pytest.fixture
def token_issuer(clock):
    return TokenIssuer(SECRET, clock=clock)


def test_access_token_round_trip(token_issuer, clock):
    pair = token_issuer.issue("merchant-1", access_ttl=timedelta(minutes=5), refresh_ttl=timedelta(days=1))

    verified = token_issuer.verify(pair.access_token)
    assert verified.principal_id == "merchant-1"
    assert verified.kind is TokenKind.ACCESS
    assert verified.expired is False
    assert verified.issued_at == clock.now
    assert verified.expires_at == clock.now + timedelta(minutes=5)

    clock.advance(minutes=5)
    assert token_issuer.verify(pair.access_token).expired is False
    clock.advance(seconds=1)
    assert token_issuer.verify(pair.access_token).expired is True


def test_refresh_token_carries_unique_jti(token_issuer):
    first = token_issuer.issue("merchant-1")
    second = token_issuer.issue("merchant-1")

    verified = token_issuer.verify(first.refresh_token)
    assert verified.kind is TokenKind.REFRESH
    assert verified.jti == first.refresh_jti
    assert first.refresh_jti != second.refresh_jti
    assert token_issuer.verify(first.access_token).jti is None


def test_access_expires_before_refresh(token_issuer):
    pair = token_issuer.issue("device-1", access_ttl=timedelta(hours=1), refresh_ttl=timedelta(days=30))
    assert pair.access_expires_at <= pair.refresh_expires_at
    assert pair.access_expires_in == 3600
    assert pair.refresh_expires_in == 30 * 24 * 3600


def test_custom_claims_are_embedded(token_issuer):
    pair = token_issuer.issue("merchant-1", {"sid": "abc", "store": "S1"})
    verified = token_issuer.verify(pair.access_token)
    assert verified.claims == {"sid": "abc", "store": "S1"}


def test_reserved_claims_rejected(token_issuer):
    with pytest.raises(InvalidArgument):
        token_issuer.issue("merchant-1", {"sub": "someone-else"})
    with pytest.raises(InvalidArgument):
        token_issuer.issue("merchant-1", {"token_type": "refresh"})


def test_issue_validates_arguments(token_issuer):
    with pytest.raises(InvalidArgument):
        token_issuer.issue("")
    with pytest.raises(InvalidArgument):
        token_issuer.issue("m", access_ttl=timedelta(days=2), refresh_ttl=timedelta(days=1))
    with pytest.raises(InvalidArgument):
        token_issuer.issue("m", access_ttl=timedelta(0))


def test_empty_secret_rejected():
    with pytest.raises(InvalidArgument):
        TokenIssuer("")


def test_spliced_token_fails_signature(token_issuer):
    mine = token_issuer.issue("merchant-1").access_token
    theirs = token_issuer.issue("merchant-2").access_token
    header, _, signature = mine.split(".")
    _, payload, _ = theirs.split(".")

    with pytest.raises(InvalidSignature):
        token_issuer.verify(f"{header}.{payload}.{signature}")


def test_foreign_key_fails_signature(token_issuer, clock):
    other = TokenIssuer("another-secret-that-is-also-long-enough-0123456789", clock=clock)
    token = other.issue("merchant-1").access_token

    with pytest.raises(InvalidSignature):
        token_issuer.verify(token)


@pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b.c"])
def test_garbage_is_malformed(token_issuer, garbage):
    with pytest.raises(Malformed):
        token_issuer.verify(garbage)


def test_wrong_audience_is_malformed(token_issuer, clock):
    other = TokenIssuer(SECRET, audience="someone-else", clock=clock)
    with pytest.raises(Malformed):
        token_issuer.verify(other.issue("merchant-1").access_token)


def test_token_without_kind_is_malformed(token_issuer, clock):
    token = jwt.encode(
        {
            "sub": "merchant-1",
            "iat": int(clock.now.timestamp()),
            "exp": int(clock.now.timestamp()) + 60,
            "iss": "pos-system",
            "aud": "pos-users",
        },
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(Malformed):
        token_issuer.verify(token)


def test_leeway_is_explicit(clock):
    lenient = TokenIssuer(SECRET, leeway=timedelta(seconds=30), clock=clock)
    pair = lenient.issue("merchant-1", access_ttl=timedelta(minutes=1))

    clock.advance(minutes=1, seconds=20)
    assert lenient.verify(pair.access_token).expired is False
    clock.advance(seconds=11)
    assert lenient.verify(pair.access_token).expired is True


def test_issue_access_clamped_to_refresh_window(token_issuer, clock):
    not_after = clock.now + timedelta(minutes=10)
    token, expires_at = token_issuer.issue_access("merchant-1", ttl=timedelta(hours=1), not_after=not_after)

    assert expires_at == not_after
    assert token_issuer.verify(token).expires_at == not_after


def test_expiry_never_lands_before_full_ttl(token_issuer, clock):
    clock.advance(microseconds=750000)
    started = clock.now

    pair = token_issuer.issue("merchant-1", access_ttl=timedelta(minutes=5), refresh_ttl=timedelta(days=1))
    token, access_expires_at = token_issuer.issue_access("merchant-1", ttl=timedelta(minutes=5))

    assert pair.access_expires_at >= started + timedelta(minutes=5)
    assert pair.refresh_expires_at >= started + timedelta(days=1)
    assert access_expires_at >= started + timedelta(minutes=5)

    clock.advance(minutes=5)
    assert token_issuer.verify(pair.access_token).expired is False
    assert token_issuer.verify(token).expired is False
    clock.advance(seconds=1)
    assert token_issuer.verify(pair.access_token).expired is True
