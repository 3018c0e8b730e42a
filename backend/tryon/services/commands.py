"""Typed transition commands.

Each command names exactly one target status. HTTP payloads are parsed into
commands here so that services never merge arbitrary request fields into a
row update.
"""
from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

from tryon.errors import InvalidCommand


@dataclass(frozen=True)
class PickUp:
    target = "PICKED_UP"
    pickup_photo_urls: tuple[str, ...] = ()


@dataclass(frozen=True)
class StartTransit:
    target = "IN_TRANSIT"


@dataclass(frozen=True)
class DeliverForTryOn:
    target = "DELIVERED_FOR_TRYON"
    delivery_photo_urls: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConfirmFit:
    target = "VERIFIED_OK"


@dataclass(frozen=True)
class ScheduleReturn:
    target = "RETURN_SCHEDULED"
    reason: str = ""


@dataclass(frozen=True)
class MarkReturned:
    target = "RETURNED"


@dataclass(frozen=True)
class Complete:
    target = "COMPLETED"


@dataclass(frozen=True)
class DeliveryPickedUp:
    target = "PICKED_UP"
    photo_urls: tuple[str, ...] = ()


@dataclass(frozen=True)
class DeliveryInTransit:
    target = "IN_TRANSIT"


@dataclass(frozen=True)
class DeliveryDelivered:
    target = "DELIVERED"
    photo_urls: tuple[str, ...] = ()


@dataclass(frozen=True)
class DeliveryCompleted:
    target = "COMPLETED"


ORDER_COMMANDS = {
    cls.target: cls
    for cls in (PickUp, StartTransit, DeliverForTryOn, ConfirmFit, ScheduleReturn, MarkReturned, Complete)
}

DELIVERY_COMMANDS = {
    cls.target: cls
    for cls in (DeliveryPickedUp, DeliveryInTransit, DeliveryDelivered, DeliveryCompleted)
}


def _coerce_field(name: str, default: Any, value: Any):
    if isinstance(default, tuple):
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            raise InvalidCommand(f"{name} must be a list of strings", field=name)
        out = []
        for item in value:
            if not isinstance(item, str) or not item.strip():
                raise InvalidCommand(f"{name} must be a list of strings", field=name)
            out.append(item.strip()[:1024])
        return tuple(out)
    if isinstance(default, str):
        if value is None:
            return ""
        if not isinstance(value, str):
            raise InvalidCommand(f"{name} must be a string", field=name)
        return value.strip()[:240]
    return value


def _build(registry: dict, kind: str, status, payload: dict | None):
    target = str(status or "").strip().upper()
    cls = registry.get(target)
    if cls is None:
        raise InvalidCommand(f"unsupported {kind} status: {target or '<empty>'}", status=target)

    data = dict(payload or {})
    data.pop("status", None)
    allowed = {f.name: f.default for f in fields(cls)}
    unknown = sorted(k for k in data if k not in allowed)
    if unknown:
        raise InvalidCommand(f"unrecognized fields for {target}: {', '.join(unknown)}", fields=unknown)

    kwargs = {name: _coerce_field(name, allowed[name], data[name]) for name in data}
    return cls(**kwargs)


def parse_order_command(status, payload: dict | None = None):
    return _build(ORDER_COMMANDS, "order", status, payload)


def parse_delivery_command(status, payload: dict | None = None):
    return _build(DELIVERY_COMMANDS, "delivery", status, payload)
