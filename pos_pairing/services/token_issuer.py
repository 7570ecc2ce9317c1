"""Signed, self-contained access/refresh tokens (JWT, HMAC).

Verification needs only the signing key. Expiry is a plain comparison of the
embedded ``exp`` against the injected clock, widened only by the configured
leeway.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import jwt

from pos_pairing.core.clock import Clock, utcnow
from pos_pairing.core.errors import InvalidArgument, InvalidSignature, Malformed
from pos_pairing.models.enums import TokenKind

TOKEN_TYPE_CLAIM = "token_type"
RESERVED_CLAIMS = frozenset({"sub", "iat", "exp", "iss", "aud", "jti", TOKEN_TYPE_CLAIM})


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    issued_at: datetime
    access_expires_at: datetime
    refresh_expires_at: datetime
    refresh_jti: str

    @property
    def access_expires_in(self) -> int:
        return int((self.access_expires_at - self.issued_at).total_seconds())

    @property
    def refresh_expires_in(self) -> int:
        return int((self.refresh_expires_at - self.issued_at).total_seconds())


@dataclass(frozen=True)
class VerifiedToken:
    principal_id: str
    kind: TokenKind
    expired: bool
    issued_at: datetime
    expires_at: datetime
    jti: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)


def _ts(value: datetime) -> int:
    return int(value.timestamp())


def _ceil_second(value: datetime) -> datetime:
    # JWT times are whole seconds; never let `exp` land before now + ttl.
    if value.microsecond:
        return value.replace(microsecond=0) + timedelta(seconds=1)
    return value


class TokenIssuer:
    """The single place tokens are minted. Built once at startup, never mutated."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        issuer: str = "pos-system",
        audience: str = "pos-users",
        leeway: timedelta = timedelta(0),
        clock: Clock = utcnow,
    ):
        if not secret:
            raise InvalidArgument("token signing secret is empty", field="secret")
        self._secret = secret
        self._algorithm = algorithm
        self._issuer = issuer
        self._audience = audience
        self._leeway = leeway
        self._clock = clock

    def _now(self) -> datetime:
        return self._clock().astimezone(timezone.utc)

    def _encode(
        self,
        principal_id: str,
        kind: TokenKind,
        claims: Optional[Dict[str, Any]],
        issued_at: datetime,
        expires_at: datetime,
        jti: Optional[str] = None,
    ) -> str:
        payload = dict(claims or {})
        payload.update({
            "sub": principal_id,
            TOKEN_TYPE_CLAIM: kind.value,
            "iat": _ts(issued_at),
            "exp": _ts(expires_at),
            "iss": self._issuer,
            "aud": self._audience,
        })
        if jti is not None:
            payload["jti"] = jti
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    @staticmethod
    def _check_request(principal_id: str, claims: Optional[Dict[str, Any]]) -> None:
        if not principal_id or not principal_id.strip():
            raise InvalidArgument("principal_id is required", field="principal_id")
        clash = RESERVED_CLAIMS.intersection(claims or {})
        if clash:
            raise InvalidArgument(f"reserved claims supplied: {sorted(clash)}", field="claims")

    def issue(
        self,
        principal_id: str,
        claims: Optional[Dict[str, Any]] = None,
        access_ttl: timedelta = timedelta(hours=1),
        refresh_ttl: timedelta = timedelta(days=30),
    ) -> TokenPair:
        self._check_request(principal_id, claims)
        if access_ttl <= timedelta(0) or refresh_ttl <= timedelta(0):
            raise InvalidArgument("token ttl must be positive", field="ttl")
        if access_ttl > refresh_ttl:
            raise InvalidArgument("access ttl may not exceed refresh ttl", field="access_ttl")

        now = self._now()
        issued_at = now.replace(microsecond=0)
        access_expires_at = _ceil_second(now + access_ttl)
        refresh_expires_at = _ceil_second(now + refresh_ttl)
        jti = str(uuid.uuid4())

        return TokenPair(
            access_token=self._encode(principal_id, TokenKind.ACCESS, claims, issued_at, access_expires_at),
            refresh_token=self._encode(
                principal_id, TokenKind.REFRESH, claims, issued_at, refresh_expires_at, jti=jti,
            ),
            issued_at=issued_at,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
            refresh_jti=jti,
        )

    def issue_access(
        self,
        principal_id: str,
        claims: Optional[Dict[str, Any]] = None,
        ttl: timedelta = timedelta(hours=1),
        not_after: Optional[datetime] = None,
    ) -> Tuple[str, datetime]:
        """Mint a lone access token, never outliving ``not_after``."""
        self._check_request(principal_id, claims)
        if ttl <= timedelta(0):
            raise InvalidArgument("token ttl must be positive", field="ttl")

        now = self._now()
        issued_at = now.replace(microsecond=0)
        expires_at = _ceil_second(now + ttl)
        if not_after is not None and expires_at > not_after:
            expires_at = not_after
        token = self._encode(principal_id, TokenKind.ACCESS, claims, issued_at, expires_at)
        return token, expires_at

    def verify(self, token: str) -> VerifiedToken:
        if not token or not isinstance(token, str):
            raise Malformed("token is empty")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={
                    # Expiry is reported, not enforced, here.
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": ["sub", "exp", "iat", TOKEN_TYPE_CLAIM],
                },
            )
        except jwt.InvalidSignatureError as exc:
            raise InvalidSignature("token signature mismatch") from exc
        except jwt.InvalidTokenError as exc:
            raise Malformed(f"token rejected: {exc}") from exc

        try:
            kind = TokenKind(payload[TOKEN_TYPE_CLAIM])
            expires_ts = int(payload["exp"])
            issued_ts = int(payload["iat"])
        except (ValueError, TypeError) as exc:
            raise Malformed("token claims are malformed") from exc

        if kind is TokenKind.REFRESH and not payload.get("jti"):
            raise Malformed("refresh token missing jti")

        now = self._clock().timestamp()
        extra = {k: v for k, v in payload.items() if k not in RESERVED_CLAIMS}
        return VerifiedToken(
            principal_id=str(payload["sub"]),
            kind=kind,
            expired=now > expires_ts + self._leeway.total_seconds(),
            issued_at=datetime.fromtimestamp(issued_ts, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires_ts, tz=timezone.utc),
            jti=payload.get("jti"),
            claims=extra,
        )
