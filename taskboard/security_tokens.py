import hmac
import secrets
import string

TEAM_CODE_LENGTH = 6
_TEAM_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_verification_token(nbytes: int = 32) -> str:
    # 64 hex chars, safe in URLs and emails
    return secrets.token_hex(nbytes)


def generate_numeric_code() -> str:
    """Six-digit code a user can type in instead of clicking the link."""
    return str(100000 + secrets.randbelow(900000))


def generate_team_code() -> str:
    return "".join(secrets.choice(_TEAM_CODE_ALPHABET) for _ in range(TEAM_CODE_LENGTH))


def constant_time_equals(a: str | None, b: str | None) -> bool:
    a = a or ""
    b = b or ""
    return hmac.compare_digest(a, b)
