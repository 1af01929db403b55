"""
Local identifiers for records created on the device.

Ids only need to be unique per device until the backend assigns its own,
so a millisecond timestamp plus a short random suffix is enough.
"""

import random
import string
import time

OFFLINE_ID_PREFIX = "offline_"
OFFLINE_ORDER_PREFIX = "OFF-"

_ALPHABET = string.digits + string.ascii_lowercase


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_offline_id() -> str:
    """Return ``offline_<epoch-ms>_<9 base36 chars>``."""
    suffix = "".join(random.choices(_ALPHABET, k=9))
    return f"{OFFLINE_ID_PREFIX}{_now_ms()}_{suffix}"


def generate_offline_order_number() -> str:
    """
    Human-facing order number for an unsynced order.

    The ``OFF-`` prefix keeps staff from mistaking it for a number issued
    by the backend.
    """
    return f"{OFFLINE_ORDER_PREFIX}{str(_now_ms())[-6:]}"


def is_offline_id(value: str) -> bool:
    return bool(value) and value.startswith(OFFLINE_ID_PREFIX)
