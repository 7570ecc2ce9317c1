"""SQLAlchemy models for the pairing and session core."""

from .activation_code import ActivationCode
from .enums import CodeStatus, SessionStatus, TokenKind
from .principal_session import PrincipalSession

__all__ = [
    "ActivationCode",
    "PrincipalSession",
    "CodeStatus",
    "SessionStatus",
    "TokenKind",
]
