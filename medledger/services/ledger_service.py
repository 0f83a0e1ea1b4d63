import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from medledger.core.clock import as_utc
from medledger.core.errors import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from medledger.core.observability import log_event
from medledger.db.transaction import run_in_transaction
from medledger.models.medication import Medication, MedicationBatch, StockAdjustment
from medledger.services.alert_service import apply_alert_flags, is_batch_expired, is_on_hand
from medledger.services.audit_service import log_audit_event
from medledger.services.medication_repository import (
    get_medication,
    ledger_balance,
    load_batches,
    lock_medication,
    next_adjustment_sequence,
)

# Every adjustment type maps to exactly one direction.
ADJUSTMENT_SIGNS: dict[str, int] = {
    "received": 1,
    "returned": 1,
    "adjusted_in": 1,
    "dispensed": -1,
    "expired": -1,
    "damaged": -1,
    "adjusted_out": -1,
}


@dataclass(frozen=True)
class Reconciliation:
    current_stock: int
    ledger_total: int
    batch_total: int

    @property
    def is_consistent(self) -> bool:
        return self.current_stock == self.ledger_total == self.batch_total


def signed_delta(adjustment_type: str, quantity: int) -> int:
    sign = ADJUSTMENT_SIGNS.get(adjustment_type)
    if sign is None:
        allowed = ", ".join(sorted(ADJUSTMENT_SIGNS))
        raise ValidationError(f"Unknown adjustment type '{adjustment_type}'. Allowed: {allowed}")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    return sign * quantity


def _find_batch(batches: Sequence[MedicationBatch], batch_number: str) -> MedicationBatch:
    for batch in batches:
        if batch.batch_number == batch_number:
            return batch
    raise NotFoundError(f"Batch {batch_number} not found")


def _allocate_first_expiry_first_out(
    batches: Sequence[MedicationBatch],
    quantity: int,
    now: datetime,
    *,
    skip_expired: bool,
) -> list[tuple[MedicationBatch, int]]:
    candidates = [
        batch
        for batch in sorted(batches, key=lambda b: (as_utc(b.expiry_date), b.position))
        if is_on_hand(batch) and not (skip_expired and is_batch_expired(batch, now))
    ]
    available = sum(batch.quantity for batch in candidates)
    if available < quantity:
        raise InsufficientStockError(requested=quantity, available=available)

    plan: list[tuple[MedicationBatch, int]] = []
    remaining = quantity
    for batch in candidates:
        if remaining == 0:
            break
        take = min(batch.quantity, remaining)
        plan.append((batch, take))
        remaining -= take
    return plan


def record_adjustment(
    db: Session,
    medication: Medication,
    batches: list[MedicationBatch],
    *,
    adjustment_type: str,
    quantity: int,
    performed_by: str,
    now: datetime,
    batch_number: str | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> StockAdjustment:
    """
    Apply one stock movement to a locked medication and append its ledger entry.

    Does not commit. All checks run before anything is mutated, so a raised
    error leaves ``medication`` and ``batches`` untouched.
    """
    if not performed_by:
        raise ValidationError("performed_by is required")
    delta = signed_delta(adjustment_type, quantity)
    batch = _find_batch(batches, batch_number) if batch_number else None

    allocations: list[tuple[MedicationBatch, int]] = []
    if delta > 0:
        if batch is None:
            raise ValidationError("batch_number is required for stock increases")
        if adjustment_type == "received":
            if batch.received_at is not None:
                raise ConflictError(f"Batch {batch.batch_number} has already been received")
            if quantity != batch.quantity:
                raise ValidationError(
                    f"Received quantity must match batch {batch.batch_number} quantity ({batch.quantity})"
                )
        elif batch.received_at is None:
            raise ConflictError(f"Batch {batch.batch_number} has not been received yet")
    else:
        if medication.current_stock < quantity:
            raise InsufficientStockError(requested=quantity, available=medication.current_stock)
        if batch is not None:
            if batch.received_at is None:
                raise ConflictError(f"Batch {batch.batch_number} has not been received yet")
            if batch.quantity < quantity:
                raise InsufficientStockError(
                    requested=quantity,
                    available=batch.quantity,
                    batch_number=batch.batch_number,
                )
            allocations = [(batch, quantity)]
        else:
            allocations = _allocate_first_expiry_first_out(
                batches,
                quantity,
                now,
                skip_expired=adjustment_type == "dispensed",
            )

    new_stock = medication.current_stock + delta
    if new_stock < 0:
        raise InsufficientStockError(requested=quantity, available=medication.current_stock)

    if delta > 0:
        if adjustment_type == "received":
            batch.received_at = now
        else:
            batch.quantity += quantity
    for allocated_batch, take in allocations:
        allocated_batch.quantity -= take

    medication.current_stock = new_stock
    medication.updated_at = now
    medication.last_updated_by_user_id = performed_by
    apply_alert_flags(medication, batches, now)

    entry = StockAdjustment(
        id=str(uuid.uuid4()),
        clinic_id=medication.clinic_id,
        medication_id=medication.id,
        sequence=next_adjustment_sequence(db, medication.id),
        adjustment_type=adjustment_type,
        quantity=quantity,
        qty_delta=delta,
        stock_after=new_stock,
        batch_number=batch.batch_number if batch is not None else None,
        allocations_json=(
            [{"batch_number": b.batch_number, "quantity": take} for b, take in allocations]
            if batch is None and allocations
            else None
        ),
        reason=reason,
        notes=notes,
        performed_by_user_id=performed_by,
        created_at=now,
    )
    db.add(entry)
    return entry


def adjust_stock(
    db: Session,
    *,
    clinic_id: str,
    medication_id: str,
    adjustment_type: str,
    quantity: int,
    performed_by: str,
    now: datetime,
    batch_number: str | None = None,
    reason: str | None = None,
    notes: str | None = None,
) -> Medication:
    def work() -> tuple[Medication, StockAdjustment]:
        medication = lock_medication(db, clinic_id=clinic_id, medication_id=medication_id)
        batches = load_batches(db, medication.id)
        entry = record_adjustment(
            db,
            medication,
            batches,
            adjustment_type=adjustment_type,
            quantity=quantity,
            performed_by=performed_by,
            now=now,
            batch_number=batch_number,
            reason=reason,
            notes=notes,
        )
        log_audit_event(
            db,
            clinic_id=clinic_id,
            actor_user_id=performed_by,
            action="stock.adjust",
            target_id=medication.id,
            metadata_json={
                "adjustment_type": adjustment_type,
                "qty_delta": entry.qty_delta,
                "batch_number": entry.batch_number,
                "stock_after": entry.stock_after,
            },
        )
        return medication, entry

    medication, entry = run_in_transaction(db, work, target_id=medication_id)
    log_event(
        "stock_adjusted",
        medication_id=medication_id,
        adjustment_type=adjustment_type,
        qty_delta=entry.qty_delta,
        stock_after=entry.stock_after,
    )
    return medication


def list_adjustments(
    db: Session,
    *,
    clinic_id: str,
    medication_id: str,
    limit: int,
    offset: int,
) -> tuple[list[StockAdjustment], int]:
    get_medication(db, clinic_id=clinic_id, medication_id=medication_id)
    total = int(
        db.execute(
            select(func.count(StockAdjustment.id)).where(StockAdjustment.medication_id == medication_id)
        ).scalar_one()
    )
    rows = db.execute(
        select(StockAdjustment)
        .where(StockAdjustment.medication_id == medication_id)
        .order_by(StockAdjustment.sequence.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(rows), total


def reconcile(db: Session, medication: Medication) -> Reconciliation:
    batches = load_batches(db, medication.id)
    return Reconciliation(
        current_stock=medication.current_stock,
        ledger_total=ledger_balance(db, medication.id),
        batch_total=sum(batch.quantity for batch in batches if batch.received_at is not None),
    )
