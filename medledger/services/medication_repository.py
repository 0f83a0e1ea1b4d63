from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from medledger.core.errors import NotFoundError
from medledger.models.medication import Medication, MedicationBatch, StockAdjustment


def get_medication(db: Session, *, clinic_id: str, medication_id: str) -> Medication:
    medication = db.execute(
        select(Medication).where(
            Medication.id == medication_id,
            Medication.clinic_id == clinic_id,
        )
    ).scalar_one_or_none()
    if not medication:
        raise NotFoundError("Medication not found")
    return medication


def lock_medication(db: Session, *, clinic_id: str, medication_id: str) -> Medication:
    # FOR UPDATE is ignored by SQLite; the version_id check still guards the write.
    medication = db.execute(
        select(Medication)
        .where(
            Medication.id == medication_id,
            Medication.clinic_id == clinic_id,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not medication:
        raise NotFoundError("Medication not found")
    return medication


def load_batches(db: Session, medication_id: str) -> list[MedicationBatch]:
    return list(
        db.execute(
            select(MedicationBatch)
            .where(MedicationBatch.medication_id == medication_id)
            .order_by(MedicationBatch.expiry_date.asc(), MedicationBatch.position.asc())
        ).scalars().all()
    )


def load_batches_for(db: Session, medication_ids: Iterable[str]) -> dict[str, list[MedicationBatch]]:
    ids = list(medication_ids)
    grouped: dict[str, list[MedicationBatch]] = {medication_id: [] for medication_id in ids}
    if not ids:
        return grouped
    rows = db.execute(
        select(MedicationBatch)
        .where(MedicationBatch.medication_id.in_(ids))
        .order_by(MedicationBatch.expiry_date.asc(), MedicationBatch.position.asc())
    ).scalars().all()
    for batch in rows:
        grouped[batch.medication_id].append(batch)
    return grouped


def next_adjustment_sequence(db: Session, medication_id: str) -> int:
    current = db.execute(
        select(func.coalesce(func.max(StockAdjustment.sequence), 0)).where(
            StockAdjustment.medication_id == medication_id
        )
    ).scalar_one()
    return int(current) + 1


def ledger_balance(db: Session, medication_id: str) -> int:
    q = select(func.coalesce(func.sum(StockAdjustment.qty_delta), 0)).where(
        StockAdjustment.medication_id == medication_id
    )
    return int(db.execute(q).scalar_one())
