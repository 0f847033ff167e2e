"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Applied payment allocations are financial facts.  Once written they are never
edited or deleted; a correction is a new payment, never a changed row.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
Listeners registered here intercept these events and abort the flush:

    session.flush()
         |
         v
    [before_update event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTION KINDS
===============================================================================

Kind          | When Immutable                          | Example
--------------|-----------------------------------------|------------------------
append-only   | ALWAYS (from creation)                  | PaymentAllocation
frozen-status | once ``status_attr`` held a frozen value| Payment after "applied"

The kernel does not know the module models.  Modules declare their protected
models through ``protect_append_only`` / ``protect_when_status`` and call
``register_immutability_listeners()`` once at startup.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from treasury_kernel.exceptions import ImmutabilityViolationError
from treasury_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


@dataclass(frozen=True)
class _StatusRule:
    entity_type: str
    status_attr: str
    frozen_values: frozenset[str]


_append_only: dict[type, str] = {}
_status_rules: dict[type, _StatusRule] = {}
_registered = False


def protect_append_only(model: type, entity_type: str) -> None:
    """Declare a model whose rows may never be updated or deleted."""
    _append_only[model] = entity_type


def protect_when_status(
    model: type,
    entity_type: str,
    status_attr: str,
    frozen_values: frozenset[str],
) -> None:
    """Declare a model frozen once ``status_attr`` holds one of ``frozen_values``."""
    _status_rules[model] = _StatusRule(entity_type, status_attr, frozen_values)


def _status_value(value) -> str | None:
    if value is None:
        return None
    return getattr(value, "value", value)


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_append_only_update(mapper, connection, target):
    entity_type = _append_only.get(type(target))
    if entity_type is None:
        return
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.history.has_changes():
            _block(
                entity_type, target, "UPDATE",
                f"{entity_type} records cannot be modified", field=attr.key,
            )


def _check_append_only_delete(mapper, connection, target):
    entity_type = _append_only.get(type(target))
    if entity_type is None:
        return
    _block(entity_type, target, "DELETE", f"{entity_type} records cannot be deleted")


def _was_frozen(target, rule: _StatusRule) -> bool:
    """
    True when the row already held a frozen status before this flush.

    A transition INTO a frozen status is allowed: that is the freezing write.
    """
    history = get_history(target, rule.status_attr)
    if history.deleted:
        return _status_value(history.deleted[0]) in rule.frozen_values
    if not history.added:
        return _status_value(getattr(target, rule.status_attr)) in rule.frozen_values
    return False


def _check_status_update(mapper, connection, target):
    rule = _status_rules.get(type(target))
    if rule is None or not _was_frozen(target, rule):
        return
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.history.has_changes():
            _block(
                rule.entity_type, target, "UPDATE",
                f"Cannot modify field '{attr.key}' on applied {rule.entity_type}",
                field=attr.key,
            )


def _check_status_delete(mapper, connection, target):
    rule = _status_rules.get(type(target))
    if rule is None:
        return
    if _status_value(getattr(target, rule.status_attr)) in rule.frozen_values:
        _block(
            rule.entity_type, target, "DELETE",
            f"Applied {rule.entity_type} records cannot be deleted",
        )


_LISTENERS = (
    ("append_only", "before_update", _check_append_only_update),
    ("append_only", "before_delete", _check_append_only_delete),
    ("status", "before_update", _check_status_update),
    ("status", "before_delete", _check_status_delete),
)


def _targets(kind: str) -> list[type]:
    return list(_append_only if kind == "append_only" else _status_rules)


def register_immutability_listeners() -> None:
    """
    Attach listeners to every declared model (idempotent).

    Call after the module ORM models have been imported.
    """
    global _registered
    for kind, event_name, listener_fn in _LISTENERS:
        for model in _targets(kind):
            if not event.contains(model, event_name, listener_fn):
                event.listen(model, event_name, listener_fn)
    _registered = True
    logger.debug(
        "immutability_listeners_registered",
        extra={
            "append_only": sorted(_append_only.values()),
            "status_frozen": sorted(r.entity_type for r in _status_rules.values()),
        },
    )


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    global _registered
    for kind, event_name, listener_fn in _LISTENERS:
        for model in _targets(kind):
            if event.contains(model, event_name, listener_fn):
                event.remove(model, event_name, listener_fn)
    _registered = False


def listeners_registered() -> bool:
    return _registered
