import enum


class CodeStatus(str, enum.Enum):
    UNUSED = "UNUSED"
    BOUND = "BOUND"
    EXPIRED = "EXPIRED"


class SessionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class TokenKind(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


# No transition leaves these.
TERMINAL_CODE_STATUSES = frozenset({CodeStatus.EXPIRED})
TERMINAL_SESSION_STATUSES = frozenset({SessionStatus.REVOKED})
