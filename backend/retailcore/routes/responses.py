# Overview: Maps order-engine exceptions to JSON error responses.

from flask import jsonify

from ..services.order_service import (
    InvalidTransitionError,
    NotOrderOwnerError,
    OrderError,
    OrderNotFoundError,
)
from ..validation import ValidationError


def error_response(e: OrderError | ValidationError):
    """
    Business and validation failures: {"error": message, "details": {...}}.

    404 not found, 403 not the owner, 409 illegal transition, 400 otherwise.
    """
    status = 400
    if isinstance(e, OrderNotFoundError):
        status = 404
    elif isinstance(e, NotOrderOwnerError):
        status = 403
    elif isinstance(e, InvalidTransitionError):
        status = 409
    return jsonify({"error": str(e), "details": e.details}), status
