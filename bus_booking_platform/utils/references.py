"""
Ticket numbers, payment references and mobile number handling.
"""

import re
import secrets
import string
import time
from typing import Optional
from uuid import UUID

_BASE36 = string.digits + string.ascii_uppercase

# EcoCash (077/078) and OneMoney (071) style numbers, local or international form
ZIMBABWE_MOBILE_PATTERN = re.compile(r"^(\+263|0)(7)(7|8|1|3)\d{7}$")

SUPPORTED_PAYMENT_METHODS = ("ecocash", "onemoney")


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_ticket_number(now_ms: Optional[int] = None) -> str:
    """TKT + base36 millisecond timestamp + random suffix, upper-case."""
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"TKT{to_base36(ts)}{_random_suffix(4)}"


def generate_payment_reference(ticket_id: UUID, now_ms: Optional[int] = None) -> str:
    """Merchant reference sent to the gateway; unique per payment attempt."""
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"TKT{ticket_id.hex[:8]}{to_base36(ts)}{_random_suffix(5)}".upper()


def clean_phone_number(phone_number: str) -> str:
    return re.sub(r"[\s\-()]", "", phone_number or "")


def is_valid_mobile_number(phone_number: str) -> bool:
    return bool(ZIMBABWE_MOBILE_PATTERN.match(clean_phone_number(phone_number)))


def normalize_mobile_number(phone_number: str) -> str:
    """Return the number in +263 international form."""
    cleaned = clean_phone_number(phone_number)
    if cleaned.startswith("0"):
        return "+263" + cleaned[1:]
    return cleaned

