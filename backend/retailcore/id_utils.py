from __future__ import annotations

import secrets
import uuid

from .time_utils import utcnow


def generate_id(prefix: str) -> str:
    """Prefixed random primary key, e.g. ``mord_3f2c...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def generate_order_number() -> str:
    """Human-readable order number: MO-YYMMDD-XXXXXX."""
    date_part = utcnow().strftime("%y%m%d")
    return f"MO-{date_part}-{secrets.token_hex(3).upper()}"
