import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from medledger.core.config import settings
from medledger.core.errors import ConflictError, ValidationError
from medledger.core.money import ZERO_MONEY, stock_value, to_money
from medledger.core.observability import log_event
from medledger.db.transaction import run_in_transaction
from medledger.models.clinic import Clinic
from medledger.models.medication import Medication, MedicationBatch
from medledger.services.alert_service import AlertState, apply_alert_flags, project_alerts
from medledger.services.audit_service import log_audit_event
from medledger.services.medication_repository import (
    load_batches,
    load_batches_for,
    lock_medication,
)

_MONEY_FIELDS = {"cost_price", "selling_price"}
_UPDATABLE_FIELDS = {
    "name",
    "generic_name",
    "brand_name",
    "manufacturer",
    "category",
    "form",
    "strength",
    "unit",
    "sku",
    "barcode",
    "requires_prescription",
    "is_controlled",
    "controlled_class",
    "reorder_level",
    "reorder_quantity",
    "max_stock_level",
    "cost_price",
    "selling_price",
    "storage_location",
    "storage_conditions",
    "requires_refrigeration",
    "dosage_instructions",
}
_REQUIRED_FIELDS = {"name", "category", "form", "strength", "unit", "selling_price"}
_NON_NULLABLE_FIELDS = _REQUIRED_FIELDS | {
    "is_active",
    "requires_prescription",
    "is_controlled",
    "requires_refrigeration",
    "reorder_level",
    "reorder_quantity",
}


@dataclass(frozen=True)
class MedicationView:
    medication: Medication
    batches: list[MedicationBatch]
    alerts: AlertState | None


@dataclass(frozen=True)
class MedicationListSummary:
    total: int
    low_stock: int
    expiring_soon: int
    expired: int
    total_value: Decimal


def build_view(medication: Medication, batches: list[MedicationBatch], now: datetime) -> MedicationView:
    alerts = project_alerts(medication, batches, now) if medication.is_active else None
    return MedicationView(medication=medication, batches=batches, alerts=alerts)


def _ensure_sku_available(db: Session, *, clinic_id: str, sku: str | None, exclude_id: str | None = None) -> None:
    if sku is None:
        return
    if not sku.strip():
        raise ValidationError("sku cannot be blank; send null to clear it")
    stmt = select(Medication.id).where(
        Medication.clinic_id == clinic_id,
        func.lower(Medication.sku) == sku.lower(),
    )
    if exclude_id:
        stmt = stmt.where(Medication.id != exclude_id)
    if db.execute(stmt).scalar_one_or_none():
        raise ConflictError(f"SKU {sku} already exists in this clinic")


def create_medication(
    db: Session,
    *,
    clinic: Clinic,
    fields: dict[str, Any],
    actor_user_id: str,
    now: datetime,
) -> Medication:
    missing = sorted(name for name in _REQUIRED_FIELDS if fields.get(name) in (None, ""))
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    unknown = sorted(set(fields) - _UPDATABLE_FIELDS - {"currency"})
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(unknown)}")

    values = {name: value for name, value in fields.items() if value is not None}
    for name in _MONEY_FIELDS & set(values):
        values[name] = to_money(values[name])
    values.setdefault("reorder_level", settings.default_reorder_level)
    values.setdefault("reorder_quantity", settings.default_reorder_quantity)
    values.setdefault("currency", clinic.currency or settings.default_currency)

    def work() -> Medication:
        _ensure_sku_available(db, clinic_id=clinic.id, sku=values.get("sku"))
        medication = Medication(
            id=str(uuid.uuid4()),
            clinic_id=clinic.id,
            current_stock=0,
            is_active=True,
            created_by_user_id=actor_user_id,
            last_updated_by_user_id=actor_user_id,
            created_at=now,
            updated_at=now,
            **values,
        )
        apply_alert_flags(medication, [], now)
        db.add(medication)
        log_audit_event(
            db,
            clinic_id=clinic.id,
            actor_user_id=actor_user_id,
            action="medication.create",
            target_id=medication.id,
            metadata_json={"name": medication.name, "sku": medication.sku},
        )
        return medication

    return run_in_transaction(db, work, target_id=clinic.id)


def update_medication(
    db: Session,
    *,
    clinic_id: str,
    medication_id: str,
    changes: dict[str, Any],
    actor_user_id: str,
    now: datetime,
) -> Medication:
    """
    Patch descriptive and threshold fields. ``current_stock`` and the alert flags
    are not writable here; stock only moves through the ledger.
    """
    unknown = sorted(set(changes) - _UPDATABLE_FIELDS - {"is_active"})
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")
    for name in _NON_NULLABLE_FIELDS & set(changes):
        if changes[name] in (None, ""):
            raise ValidationError(f"{name} cannot be cleared")

    def work() -> Medication:
        medication = lock_medication(db, clinic_id=clinic_id, medication_id=medication_id)
        if "sku" in changes:
            _ensure_sku_available(db, clinic_id=clinic_id, sku=changes["sku"], exclude_id=medication.id)

        for name, value in changes.items():
            if name in _MONEY_FIELDS and value is not None:
                value = to_money(value)
            setattr(medication, name, value)
        medication.updated_at = now
        medication.last_updated_by_user_id = actor_user_id
        apply_alert_flags(medication, load_batches(db, medication.id), now)

        log_audit_event(
            db,
            clinic_id=clinic_id,
            actor_user_id=actor_user_id,
            action="medication.update",
            target_id=medication.id,
            metadata_json={"fields": sorted(changes)},
        )
        return medication

    return run_in_transaction(db, work, target_id=medication_id)


def deactivate_medication(
    db: Session,
    *,
    clinic_id: str,
    medication_id: str,
    actor_user_id: str,
    now: datetime,
) -> Medication:
    def work() -> Medication:
        medication = lock_medication(db, clinic_id=clinic_id, medication_id=medication_id)
        medication.is_active = False
        medication.updated_at = now
        medication.last_updated_by_user_id = actor_user_id
        apply_alert_flags(medication, [], now)
        log_audit_event(
            db,
            clinic_id=clinic_id,
            actor_user_id=actor_user_id,
            action="medication.deactivate",
            target_id=medication.id,
        )
        return medication

    return run_in_transaction(db, work, target_id=medication_id)


def list_medications(
    db: Session,
    *,
    clinic_id: str,
    now: datetime,
    category: str | None = None,
    search: str | None = None,
    low_stock: bool = False,
    expiring_soon: bool = False,
    is_active: bool = True,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[MedicationView], MedicationListSummary, int]:
    """
    Filter a clinic's medications, projecting alerts at ``now`` rather than
    trusting stored flags, which go stale as time passes.
    """
    stmt = select(Medication).where(
        Medication.clinic_id == clinic_id,
        Medication.is_active.is_(is_active),
    )
    if category:
        stmt = stmt.where(Medication.category == category)
    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Medication.name).like(pattern),
                func.lower(Medication.generic_name).like(pattern),
                func.lower(Medication.brand_name).like(pattern),
                func.lower(Medication.sku).like(pattern),
            )
        )
    medications = db.execute(stmt.order_by(Medication.name.asc(), Medication.id.asc())).scalars().all()
    batches_by_medication = load_batches_for(db, (m.id for m in medications))

    views = [build_view(m, batches_by_medication[m.id], now) for m in medications]
    if low_stock:
        views = [v for v in views if v.alerts and v.alerts.has_low_stock]
    if expiring_soon:
        views = [v for v in views if v.alerts and v.alerts.has_expiring_soon]

    summary = MedicationListSummary(
        total=len(views),
        low_stock=sum(1 for v in views if v.alerts and v.alerts.has_low_stock),
        expiring_soon=sum(1 for v in views if v.alerts and v.alerts.has_expiring_soon),
        expired=sum(1 for v in views if v.alerts and v.alerts.has_expired),
        total_value=sum(
            (stock_value(v.medication.current_stock, v.medication.cost_price) for v in views),
            ZERO_MONEY,
        ),
    )
    return views[offset : offset + limit], summary, len(views)


def refresh_alert_flags(db: Session, *, clinic_id: str, now: datetime) -> tuple[int, int]:
    """
    Recompute stored flags for every active medication of a clinic.

    Returns ``(evaluated, changed)``. Meant for a periodic sweep: expiry flags
    flip with the passage of time even when nothing is written.
    """

    def work() -> tuple[int, int]:
        medications = db.execute(
            select(Medication)
            .where(Medication.clinic_id == clinic_id, Medication.is_active.is_(True))
            .execution_options(populate_existing=True)
        ).scalars().all()
        batches_by_medication = load_batches_for(db, (m.id for m in medications))
        changed = 0
        for medication in medications:
            if apply_alert_flags(medication, batches_by_medication[medication.id], now):
                changed += 1
        return len(medications), changed

    evaluated, changed = run_in_transaction(db, work, target_id=clinic_id)
    log_event("alert_flags_refreshed", clinic_id=clinic_id, evaluated=evaluated, changed=changed)
    return evaluated, changed
