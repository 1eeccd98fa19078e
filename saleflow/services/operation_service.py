"""
Operation Service — operation lifecycle around the step workflow.

Business logic for:
    - Creation:       unit snapshot, totals, step template materialisation
    - Lookup:         organization/buyer-scoped reads
    - Cancellation:   out-of-band stop; freezes the step workflow
    - Audit trail:    per-operation history for the dashboard

Step transitions, documents and comments go through
services.workflow_coordinator, never through this module.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import func, select

from saleflow.core.exceptions import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from saleflow.models import db
from saleflow.models.audit import AuditLog, write_audit
from saleflow.models.operation import (
    DEFAULT_STEP_TEMPLATE,
    OPERATION_COMPLETED,
    Operation,
    OperationStep,
    OperationUnit,
)
from saleflow.services.helpers.transaction import atomic, lock_operation

logger = logging.getLogger(__name__)

ID_MAX_LENGTH = 64
STEP_NAME_MAX_LENGTH = 120


# ── Input parsing ────────────────────────────────────────────────────────────


def _text(value, field: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be text", details={field: "must be a string"})
    return value.strip()


def _parse_units(units) -> list[tuple[str, Decimal]]:
    if not units:
        raise ValidationError(
            "An operation needs at least one unit.", details={"units": "required"},
        )
    if not isinstance(units, (list, tuple)):
        raise ValidationError("units must be a list", details={"units": "invalid"})

    parsed = []
    seen = set()
    for idx, unit in enumerate(units):
        if not isinstance(unit, dict):
            raise ValidationError(
                f"units[{idx}] must be an object", details={f"units[{idx}]": "invalid"},
            )
        unit_id = str(unit.get("unit_id") or "").strip()
        if not unit_id:
            raise ValidationError(
                f"units[{idx}].unit_id is required", details={f"units[{idx}].unit_id": "required"},
            )
        if len(unit_id) > ID_MAX_LENGTH:
            raise ValidationError(
                f"units[{idx}].unit_id must be ≤ {ID_MAX_LENGTH} characters",
                details={f"units[{idx}].unit_id": "too_long"},
            )
        if unit_id in seen:
            raise ValidationError(
                f"Unit {unit_id} is listed more than once", details={"units": "duplicate"},
            )
        seen.add(unit_id)
        try:
            price = Decimal(str(unit.get("price")))
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(
                f"units[{idx}].price must be a number", details={f"units[{idx}].price": "invalid"},
            ) from None
        if not price.is_finite() or price < 0:
            raise ValidationError(
                f"units[{idx}].price must be ≥ 0", details={f"units[{idx}].price": "invalid"},
            )
        parsed.append((unit_id, price))
    return parsed


def _step_template(step_names):
    if step_names is None:
        return [dict(entry) for entry in current_app.config.get("DEFAULT_STEP_TEMPLATE", DEFAULT_STEP_TEMPLATE)]
    if not isinstance(step_names, (list, tuple)):
        raise ValidationError(
            "step_names must be a list of names", details={"step_names": "invalid"},
        )
    names = [str(n).strip() for n in step_names]
    if not names or any(not n for n in names):
        raise ValidationError(
            "step_names must be a non-empty list of names", details={"step_names": "invalid"},
        )
    if any(len(n) > STEP_NAME_MAX_LENGTH for n in names):
        raise ValidationError(
            f"step names must be ≤ {STEP_NAME_MAX_LENGTH} characters", details={"step_names": "too_long"},
        )
    return [{"step_name": n, "suggested_document_type": None} for n in names]


# ── Lookup ───────────────────────────────────────────────────────────────────


def get_operation(operation_id: int, *, organization_id: str | None = None,
                  buyer_id: str | None = None) -> Operation:
    """Fetch an operation, optionally scoped to an organization and/or buyer.

    An operation outside the caller's scope is reported as not found.
    """
    stmt = select(Operation).where(Operation.id == operation_id)
    if organization_id is not None:
        stmt = stmt.where(Operation.organization_id == organization_id)
    if buyer_id is not None:
        stmt = stmt.where(Operation.buyer_id == buyer_id)
    operation = db.session.execute(stmt).scalar_one_or_none()
    if operation is None:
        raise NotFoundError("Operation", operation_id)
    return operation


def get_active_operation_for_buyer(buyer_id: str) -> Operation | None:
    """Return the buyer's operation that is neither cancelled nor completed."""
    candidates = db.session.execute(
        select(Operation)
        .where(Operation.buyer_id == buyer_id, Operation.cancelled_at.is_(None))
        .order_by(Operation.created_at.desc())
    ).scalars().all()
    for operation in candidates:
        if operation.status != OPERATION_COMPLETED:
            return operation
    return None


# ── Create ───────────────────────────────────────────────────────────────────


def _lock_buyer(buyer_id: str) -> None:
    """Serialise operation creation per buyer until the transaction ends.

    Takes a PostgreSQL transaction-level advisory lock keyed on the buyer id.
    SQLite already serialises writers, so nothing is taken there.
    """
    if db.session.get_bind().dialect.name != "postgresql":
        return
    db.session.execute(select(func.pg_advisory_xact_lock(func.hashtext(buyer_id))))


def create_operation(
    organization_id: str,
    buyer_id: str,
    units,
    *,
    currency: str | None = None,
    notes: str = "",
    step_names=None,
    created_by: str | None = None,
) -> Operation:
    """Open a new operation with its units and a pending step ledger.

    Args:
        organization_id: Selling organization.
        buyer_id:        Buyer; may hold only one open operation.
        units:           [{"unit_id": str, "price": number}, …]
        currency:        One of SUPPORTED_CURRENCIES (default DEFAULT_CURRENCY).
        notes:           Free text.
        step_names:      Optional custom stage names; default template otherwise.

    Raises:
        ValidationError: bad ids, units, currency, notes or step names.
        ConflictError:   buyer already has an open operation.
    """
    organization_id = str(organization_id or "").strip()
    buyer_id = str(buyer_id or "").strip()
    if not organization_id or not buyer_id:
        raise ValidationError(
            "organization_id and buyer_id are required",
            details={"organization_id": "required"} if not organization_id else {"buyer_id": "required"},
        )
    for field, value in (("organization_id", organization_id), ("buyer_id", buyer_id)):
        if len(value) > ID_MAX_LENGTH:
            raise ValidationError(
                f"{field} must be ≤ {ID_MAX_LENGTH} characters", details={field: "too_long"},
            )

    cfg = current_app.config
    currency = (_text(currency, "currency") or cfg.get("DEFAULT_CURRENCY", "USD")).upper()
    supported = cfg.get("SUPPORTED_CURRENCIES", ("USD",))
    if currency not in supported:
        raise ValidationError(
            f"Unsupported currency '{currency}'. Must be one of: {', '.join(supported)}",
            details={"currency": "invalid"},
        )

    notes = _text(notes, "notes")
    parsed_units = _parse_units(units)
    template = _step_template(step_names)

    with atomic("create_operation", buyer_id=buyer_id):
        _lock_buyer(buyer_id)
        existing = get_active_operation_for_buyer(buyer_id)
        if existing is not None:
            raise ConflictError("Operation", "buyer_id", buyer_id)

        operation = Operation(
            organization_id=organization_id,
            buyer_id=buyer_id,
            total_amount=sum((price for _, price in parsed_units), Decimal("0")),
            platform_fee=Decimal(str(cfg.get("PLATFORM_FEE", 0))),
            currency=currency,
            notes=notes,
            created_by=created_by or buyer_id,
        )
        for unit_id, price in parsed_units:
            operation.units.append(OperationUnit(unit_id=unit_id, price_at_reservation=price))
        for order, entry in enumerate(template, start=1):
            operation.steps.append(OperationStep(
                step_order=order,
                step_name=entry["step_name"],
                suggested_document_type=entry.get("suggested_document_type"),
            ))
        db.session.add(operation)
        db.session.flush()

        write_audit(
            entity_type="operation",
            entity_id=operation.id,
            action="operation.create",
            actor=created_by or buyer_id,
            operation_id=operation.id,
            organization_id=organization_id,
            diff={
                "buyer_id": buyer_id,
                "units": [u for u, _ in parsed_units],
                "total_amount": str(operation.total_amount),
                "currency": currency,
                "steps": [e["step_name"] for e in template],
            },
        )

    logger.info(
        "Operation created for buyer %s", buyer_id,
        extra={"operation_id": operation.id, "event_type": "operation.create"},
    )
    return operation


# ── Cancel ───────────────────────────────────────────────────────────────────


def cancel_operation(operation_id: int, actor_id: str, reason: str) -> Operation:
    """Cancel an open operation.

    Raises:
        ValidationError:   reason missing.
        NotFoundError:     operation missing.
        InvalidTransition: already cancelled or completed.
    """
    reason = _text(reason, "reason")
    if not reason:
        raise ValidationError(
            "A cancellation reason is required.", details={"reason": "required"},
        )

    with atomic("cancel_operation", operation_id=operation_id):
        operation = lock_operation(operation_id)
        if operation.is_cancelled:
            raise InvalidTransition(
                f"Operation {operation_id} is already cancelled.",
                details={"operation_id": operation_id},
            )
        if operation.status == OPERATION_COMPLETED:
            raise InvalidTransition(
                f"Operation {operation_id} is completed and cannot be cancelled.",
                details={"operation_id": operation_id},
            )
        previous = operation.status
        operation.cancelled_at = datetime.now(timezone.utc)
        operation.cancelled_by = str(actor_id) if actor_id is not None else None
        operation.cancellation_reason = reason
        db.session.flush()

        write_audit(
            entity_type="operation",
            entity_id=operation.id,
            action="operation.cancel",
            actor=actor_id,
            operation_id=operation.id,
            organization_id=operation.organization_id,
            diff={"status": {"old": previous, "new": "cancelled"}, "reason": reason},
        )

    logger.info(
        "Operation cancelled",
        extra={"operation_id": operation_id, "event_type": "operation.cancel"},
    )
    return operation


# ── Audit ────────────────────────────────────────────────────────────────────


def list_audit(operation_id: int, *, action: str | None = None, limit: int = 200) -> list[AuditLog]:
    """Audit rows of an operation, oldest first."""
    stmt = select(AuditLog).where(AuditLog.operation_id == operation_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    stmt = stmt.order_by(AuditLog.timestamp.asc(), AuditLog.id.asc()).limit(limit)
    return db.session.execute(stmt).scalars().all()
