"""
Public tracking codes for deliveries.
"""
import secrets
import string

TRACKING_CODE_ALPHABET = string.ascii_uppercase + string.digits
TRACKING_CODE_LENGTH = 12


def generate_tracking_code() -> str:
    """12 characters drawn uniformly from [A-Z0-9] with a CSPRNG."""
    return "".join(secrets.choice(TRACKING_CODE_ALPHABET) for _ in range(TRACKING_CODE_LENGTH))


def is_tracking_code(value: str) -> bool:
    return (
        len(value) == TRACKING_CODE_LENGTH
        and all(ch in TRACKING_CODE_ALPHABET for ch in value)
    )
