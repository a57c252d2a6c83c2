"""
Domain errors raised by the inventory services.

Each error carries a machine readable ``kind`` and the HTTP status the API
layer answers with; ``details`` holds structured context for the client.
"""
from __future__ import annotations

from decimal import Decimal


class InventoryError(Exception):
    """Base class for every error raised by the movement engine."""

    kind = 'INVENTORY_ERROR'
    status_code = 400
    default_message = 'Inventory operation failed.'

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self) -> dict:
        payload = {'status': 'error', 'kind': self.kind, 'message': self.message}
        if self.details:
            payload['details'] = {key: _jsonable(value) for key, value in self.details.items()}
        return payload


class ValidationError(InventoryError):
    kind = 'VALIDATION_ERROR'
    default_message = 'Invalid request.'


class InsufficientStock(InventoryError):
    """Raised when the requested quantity exceeds what the location holds."""

    kind = 'INSUFFICIENT_STOCK'

    def __init__(self, *, item, required: Decimal, available: Decimal, uom: str, message: str | None = None):
        shortfall = required - available
        message = message or (
            f"Insufficient stock for {item}. Need {required} {uom}, "
            f"available {available} {uom} (short by {shortfall} {uom})."
        )
        super().__init__(
            message,
            item_id=getattr(item, 'pk', item),
            required=required,
            available=available,
            shortfall=shortfall,
            uom=uom,
        )
        self.shortfall = shortfall


class UnsupportedUnit(InventoryError):
    kind = 'UNSUPPORTED_UNIT'

    def __init__(self, *, item, unit: str):
        super().__init__(
            f"No conversion between {unit} and base unit {item.base_uom} for item {item.code}.",
            item_id=item.pk,
            unit=unit,
            base_uom=item.base_uom,
        )


class InvalidBatch(InventoryError):
    """A named batch cannot serve the request. ``reason`` says why."""

    kind = 'INVALID_BATCH'

    NOT_FOUND = 'NOT_FOUND'
    WRONG_ITEM = 'WRONG_ITEM'
    WRONG_LOCATION = 'WRONG_LOCATION'
    EXPIRED = 'EXPIRED'

    def __init__(self, reason: str, *, batch_id, message: str | None = None):
        super().__init__(message or f"Batch {batch_id} is not usable ({reason}).", reason=reason, batch_id=batch_id)
        self.reason = reason


class Forbidden(InventoryError):
    kind = 'FORBIDDEN'
    status_code = 403
    default_message = 'You are not allowed to perform this operation.'


class NotFound(InventoryError):
    kind = 'NOT_FOUND'
    status_code = 404
    default_message = 'Record not found.'


class AlreadyProcessed(InventoryError):
    kind = 'ALREADY_PROCESSED'
    status_code = 409
    default_message = 'This approval has already been processed.'


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    return value
