import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from medledger.core.clock import as_utc
from medledger.core.errors import DuplicateBatchError, ValidationError
from medledger.core.money import to_money
from medledger.core.observability import log_event
from medledger.db.transaction import run_in_transaction
from medledger.models.medication import Medication, MedicationBatch
from medledger.services.alert_service import apply_alert_flags
from medledger.services.audit_service import log_audit_event
from medledger.services.ledger_service import record_adjustment
from medledger.services.medication_repository import get_medication, load_batches, lock_medication


def _sort_key(batch: MedicationBatch):
    return as_utc(batch.expiry_date), batch.position


def append_batch(
    db: Session,
    medication: Medication,
    batches: list[MedicationBatch],
    *,
    batch_number: str,
    quantity: int,
    expiry_date: datetime,
    actor_user_id: str,
    now: datetime,
    supplier: str | None = None,
    cost: Decimal | None = None,
) -> MedicationBatch:
    """
    Add a pending batch to ``medication`` without touching its stock.

    Stock only moves when a ``received`` ledger entry confirms the batch.
    ``batches`` is extended in place and kept in expiry order.
    """
    cleaned_number = (batch_number or "").strip()
    if not cleaned_number:
        raise ValidationError("batch_number is required")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    if not isinstance(expiry_date, datetime):
        raise ValidationError("expiry_date must be a datetime")
    if cost is not None and cost < 0:
        raise ValidationError("cost cannot be negative")
    if any(existing.batch_number == cleaned_number for existing in batches):
        raise DuplicateBatchError(cleaned_number)

    batch = MedicationBatch(
        id=str(uuid.uuid4()),
        medication_id=medication.id,
        batch_number=cleaned_number,
        position=max((existing.position for existing in batches), default=0) + 1,
        quantity=quantity,
        expiry_date=as_utc(expiry_date),
        supplier=supplier,
        cost=to_money(cost) if cost is not None else None,
        received_at=None,
        created_at=now,
    )
    db.add(batch)
    batches.append(batch)
    batches.sort(key=_sort_key)

    medication.updated_at = now
    medication.last_updated_by_user_id = actor_user_id
    apply_alert_flags(medication, batches, now)
    return batch


def add_batch(
    db: Session,
    *,
    clinic_id: str,
    medication_id: str,
    batch_number: str,
    quantity: int,
    expiry_date: datetime,
    actor_user_id: str,
    now: datetime,
    supplier: str | None = None,
    cost: Decimal | None = None,
) -> Medication:
    def work() -> Medication:
        medication = lock_medication(db, clinic_id=clinic_id, medication_id=medication_id)
        batches = load_batches(db, medication.id)
        append_batch(
            db,
            medication,
            batches,
            batch_number=batch_number,
            quantity=quantity,
            expiry_date=expiry_date,
            actor_user_id=actor_user_id,
            now=now,
            supplier=supplier,
            cost=cost,
        )
        log_audit_event(
            db,
            clinic_id=clinic_id,
            actor_user_id=actor_user_id,
            action="batch.add",
            target_id=medication.id,
            metadata_json={"batch_number": batch_number, "quantity": quantity},
        )
        return medication

    return run_in_transaction(db, work, target_id=medication_id)


def receive_batch(
    db: Session,
    *,
    clinic_id: str,
    medication_id: str,
    batch_number: str,
    quantity: int,
    expiry_date: datetime,
    actor_user_id: str,
    now: datetime,
    supplier: str | None = None,
    cost: Decimal | None = None,
) -> Medication:
    """Add a batch and record its ``received`` ledger entry in one transaction."""

    def work() -> Medication:
        medication = lock_medication(db, clinic_id=clinic_id, medication_id=medication_id)
        batches = load_batches(db, medication.id)
        batch = append_batch(
            db,
            medication,
            batches,
            batch_number=batch_number,
            quantity=quantity,
            expiry_date=expiry_date,
            actor_user_id=actor_user_id,
            now=now,
            supplier=supplier,
            cost=cost,
        )
        record_adjustment(
            db,
            medication,
            batches,
            adjustment_type="received",
            quantity=quantity,
            performed_by=actor_user_id,
            now=now,
            batch_number=batch.batch_number,
            reason="New batch received",
            notes=f"Supplier: {supplier}" if supplier else None,
        )
        log_audit_event(
            db,
            clinic_id=clinic_id,
            actor_user_id=actor_user_id,
            action="batch.receive",
            target_id=medication.id,
            metadata_json={
                "batch_number": batch.batch_number,
                "quantity": quantity,
                "expiry_date": batch.expiry_date.isoformat(),
            },
        )
        return medication

    medication = run_in_transaction(db, work, target_id=medication_id)
    log_event(
        "batch_received",
        medication_id=medication_id,
        batch_number=batch_number,
        quantity=quantity,
    )
    return medication


def list_batches(db: Session, *, clinic_id: str, medication_id: str) -> tuple[Medication, list[MedicationBatch]]:
    medication = get_medication(db, clinic_id=clinic_id, medication_id=medication_id)
    return medication, load_batches(db, medication.id)
