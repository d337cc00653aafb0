"""Payment reference generation."""

import secrets
import string
import time

_ALPHABET = string.ascii_lowercase + string.digits


def random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def now_ms() -> int:
    return int(time.time() * 1000)


def subscription_reference() -> str:
    """SUB_<ms>_<rand>"""
    return f"SUB_{now_ms()}_{random_suffix(8)}"


def mpesa_reference() -> str:
    """MPESA_<ms>_<rand>"""
    return f"MPESA_{now_ms()}_{random_suffix(8)}"


def client_payment_reference() -> str:
    """client-biz-<ms>-<rand9>"""
    return f"client-biz-{now_ms()}-{random_suffix(9)}"


def platform_clearance_reference(business_id: str) -> str:
    """PLT_<ms>_<first 8 chars of the business id>"""
    return f"PLT_{now_ms()}_{business_id[:8]}"
