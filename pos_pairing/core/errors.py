"""Typed outcomes of the pairing and session core.

Every expected failure is a ``PairingError`` subclass; callers map them by
``error_code`` / ``status_code`` without inspecting internal state.
``StorageFailure`` is the only unexpected outcome and is deliberately not a
``PairingError``.
"""


class PairingError(Exception):
    error_code = "pairing_error"
    status_code = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.error_code)
        self.message = message or self.error_code
        self.context = context


class NotFound(PairingError):
    error_code = "not_found"
    status_code = 404


class AlreadyUsed(PairingError):
    error_code = "already_used"
    status_code = 409


class Expired(PairingError):
    error_code = "expired"
    status_code = 410


class AttemptsExceeded(PairingError):
    error_code = "attempts_exceeded"
    status_code = 429


class FingerprintConflict(PairingError):
    error_code = "fingerprint_conflict"
    status_code = 409


class InvalidArgument(PairingError):
    error_code = "invalid_argument"
    status_code = 400


class InvalidSignature(PairingError):
    error_code = "invalid_signature"
    status_code = 401


class Malformed(PairingError):
    error_code = "malformed_token"
    status_code = 401


class Revoked(PairingError):
    error_code = "revoked"
    status_code = 401


class StorageFailure(Exception):
    """Unrecoverable storage-layer error (connection loss, unexpected constraint)."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"storage failure during {operation}")
        self.operation = operation
        self.cause = cause
