from __future__ import annotations

import logging
import re
from typing import Any

from ..db.entity_store import EntityClient
from .events import CLIENT_CREATED, CLIENT_DELETED, ClientChanged, ClientDeleted, EventBus

"""Client record service: validated create / delete with event broadcast."""

__all__ = [
    "ValidationError",
    "create_client",
    "delete_client",
    "is_valid_phone",
    "validate_client_field",
]

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 7


class ValidationError(Exception):
    """Input rejected before any backend call."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


def is_valid_phone(phone: Any) -> bool:
    """At least 7 digits, not all the same digit ("0000000" is a placeholder)."""
    digits = re.sub(r"\D", "", str(phone or ""))
    return len(digits) >= MIN_PHONE_DIGITS and len(set(digits)) >= 2


def validate_client_field(field: str, value: Any) -> None:
    if field == "name" and not str(value or "").strip():
        raise ValidationError("Client name cannot be empty", field="name")


async def create_client(
    entity: EntityClient,
    payload: dict[str, Any],
    bus: EventBus | None = None,
) -> dict[str, Any]:
    """Create a client after validating the name.

    Raises:
        ValidationError: blank name
        EntityError: backend failure
    """
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValidationError("Client name is required", field="name")
    data = {**payload, "name": name}
    phone = data.get("phone")
    if phone and not is_valid_phone(phone):
        logger.warning("Client %s has a suspicious phone number: %s", name, phone)

    created = await entity.create(data)
    logger.info("Client created: %s (%s)", name, created.get("id"))
    if bus is not None:
        bus.publish(CLIENT_CREATED, ClientChanged(client=created))
    return created


async def delete_client(entity: EntityClient, client_id: str, bus: EventBus | None = None) -> None:
    await entity.delete(client_id)
    logger.info("Client deleted: %s", client_id)
    if bus is not None:
        bus.publish(CLIENT_DELETED, ClientDeleted(client_id=client_id))
