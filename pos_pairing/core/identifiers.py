"""Opaque identifiers handed in by collaborators (device refs, principals)."""

from typing import Optional

from pos_pairing.core.errors import InvalidArgument

MAX_REF_LENGTH = 64


def clean_ref(value: Optional[str], field: str) -> Optional[str]:
    """Strip ``value``; blank becomes ``None``, over-long is rejected."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if len(value) > MAX_REF_LENGTH:
        raise InvalidArgument(f"{field} longer than {MAX_REF_LENGTH} characters", field=field)
    return value


def require_ref(value: Optional[str], field: str) -> str:
    cleaned = clean_ref(value, field)
    if cleaned is None:
        raise InvalidArgument(f"{field} is required", field=field)
    return cleaned
