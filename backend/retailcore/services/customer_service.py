# Overview: Mobile customer profile reads and partial updates.

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from ..models import Customer
from ..validation import ValidationError

PROFILE_FIELDS = {"name": 255, "email": 255, "address": 500}


def _profile_dict(customer: Customer) -> dict:
    profile = customer.to_dict()
    profile.pop("is_blocked")
    return profile


def get_profile(handle, tenant_id: str, customer_id: str) -> dict | None:
    customer = handle.session.execute(
        select(Customer).where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
    ).scalar_one_or_none()
    if customer is None:
        return None
    return _profile_dict(customer)


def update_profile(handle, tenant_id: str, customer_id: str, data: dict[str, Any]) -> dict | None:
    """
    Update name, email and address from a partial payload.

    Absent or null keys keep the stored value. The phone number is the login
    identity and cannot be changed here.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    changes = {}
    for field, max_length in PROFILE_FIELDS.items():
        value = data.get(field)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"{field} must be a string")
        value = value.strip()
        if len(value) > max_length:
            raise ValidationError(f"{field} must be at most {max_length} characters")
        changes[field] = value or None

    email = changes.get("email")
    if email is not None and "@" not in email:
        raise ValidationError("email must be a valid email address")

    customer = handle.lock(
        select(Customer).where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
    )
    if customer is None:
        return None

    for field, value in changes.items():
        setattr(customer, field, value)

    handle.flush()
    return _profile_dict(customer)
