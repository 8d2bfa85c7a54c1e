"""
Keyset pagination cursors.

A cursor is the urlsafe base64 encoding of "<created_at iso>|<id>" taken
from the last row of a page. Rows are ordered (created_at DESC, id DESC),
so the next page holds rows strictly "older" than the cursor tuple.
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime

from sqlalchemy import and_, or_

from .time_utils import to_naive_utc
from .validation import ValidationError


def encode_cursor(created_at: datetime, row_id: str) -> str:
    raw = f"{to_naive_utc(created_at).isoformat()}|{row_id}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    """Return (created_at, id). Raises ValidationError for anything malformed."""
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
        created_part, row_id = raw.split("|", 1)
        created_at = datetime.fromisoformat(created_part)
    except (ValueError, UnicodeError, binascii.Error):
        raise ValidationError("Invalid cursor")

    if not row_id:
        raise ValidationError("Invalid cursor")
    return to_naive_utc(created_at), row_id


def before_cursor(created_col, id_col, cursor: str):
    """WHERE clause selecting rows that sort after the cursor in DESC order."""
    created_at, row_id = decode_cursor(cursor)
    return or_(
        created_col < created_at,
        and_(created_col == created_at, id_col < row_id),
    )
