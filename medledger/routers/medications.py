from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from medledger.core.api_docs import error_responses
from medledger.core.clock import Clock, as_utc, get_clock
from medledger.core.deps import get_db
from medledger.core.errors import ValidationError
from medledger.core.permissions import require_permission
from medledger.core.security_current import ClinicAccess
from medledger.models.medication import MedicationBatch, StockAdjustment
from medledger.schemas.common import PaginationMeta
from medledger.schemas.medication import (
    AlertRefreshOut,
    BatchAllocationOut,
    BatchCreateIn,
    BatchListOut,
    BatchOut,
    MedicationAlertsOut,
    MedicationCategory,
    MedicationCreateIn,
    MedicationDetailOut,
    MedicationListOut,
    MedicationOut,
    MedicationSummaryOut,
    MedicationUpdateIn,
    StockAdjustIn,
    StockAdjustmentListOut,
    StockAdjustmentOut,
)
from medledger.services import batch_service, ledger_service, medication_service
from medledger.services.alert_service import is_batch_expired
from medledger.services.medication_repository import get_medication, load_batches
from medledger.services.medication_service import MedicationView, build_view
from medledger.services.report_service import build_alerts

router = APIRouter(prefix="/medications", tags=["medications"])


def _batch_out(batch: MedicationBatch, now: datetime) -> BatchOut:
    return BatchOut(
        id=batch.id,
        batch_number=batch.batch_number,
        quantity=batch.quantity,
        expiry_date=as_utc(batch.expiry_date),
        supplier=batch.supplier,
        cost=float(batch.cost) if batch.cost is not None else None,
        received_at=as_utc(batch.received_at) if batch.received_at else None,
        is_expired=is_batch_expired(batch, now),
        created_at=as_utc(batch.created_at),
    )


def _medication_fields(view: MedicationView) -> dict:
    medication = view.medication
    alerts = view.alerts
    return {
        "id": medication.id,
        "clinic_id": medication.clinic_id,
        "name": medication.name,
        "generic_name": medication.generic_name,
        "brand_name": medication.brand_name,
        "manufacturer": medication.manufacturer,
        "category": medication.category,
        "form": medication.form,
        "strength": medication.strength,
        "unit": medication.unit,
        "sku": medication.sku,
        "barcode": medication.barcode,
        "requires_prescription": medication.requires_prescription,
        "is_controlled": medication.is_controlled,
        "controlled_class": medication.controlled_class,
        "current_stock": medication.current_stock,
        "reorder_level": medication.reorder_level,
        "reorder_quantity": medication.reorder_quantity,
        "max_stock_level": medication.max_stock_level,
        "cost_price": float(medication.cost_price) if medication.cost_price is not None else None,
        "selling_price": float(medication.selling_price),
        "currency": medication.currency,
        "storage_location": medication.storage_location,
        "storage_conditions": medication.storage_conditions,
        "requires_refrigeration": medication.requires_refrigeration,
        "dosage_instructions": medication.dosage_instructions,
        "is_active": medication.is_active,
        "has_low_stock": alerts.has_low_stock if alerts else None,
        "has_expiring_soon": alerts.has_expiring_soon if alerts else None,
        "has_expired": alerts.has_expired if alerts else None,
        "created_by_user_id": medication.created_by_user_id,
        "last_updated_by_user_id": medication.last_updated_by_user_id,
        "created_at": as_utc(medication.created_at),
        "updated_at": as_utc(medication.updated_at),
    }


def _detail_out(db: Session, *, clinic_id: str, medication_id: str, now: datetime) -> MedicationDetailOut:
    medication = get_medication(db, clinic_id=clinic_id, medication_id=medication_id)
    batches = load_batches(db, medication.id)
    view = build_view(medication, batches, now)
    return MedicationDetailOut(
        **_medication_fields(view),
        batches=[_batch_out(batch, now) for batch in batches],
    )


def _adjustment_out(entry: StockAdjustment) -> StockAdjustmentOut:
    return StockAdjustmentOut(
        id=entry.id,
        medication_id=entry.medication_id,
        sequence=entry.sequence,
        adjustment_type=entry.adjustment_type,
        quantity=entry.quantity,
        qty_delta=entry.qty_delta,
        stock_after=entry.stock_after,
        batch_number=entry.batch_number,
        allocations=(
            [BatchAllocationOut(**item) for item in entry.allocations_json]
            if entry.allocations_json
            else None
        ),
        reason=entry.reason,
        notes=entry.notes,
        performed_by_user_id=entry.performed_by_user_id,
        created_at=as_utc(entry.created_at),
    )


@router.post(
    "",
    response_model=MedicationDetailOut,
    status_code=201,
    summary="Create medication",
    responses=error_responses(401, 403, 409, 422, 500),
)
def create_medication(
    payload: MedicationCreateIn,
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("medications.manage")),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    medication = medication_service.create_medication(
        db,
        clinic=access.clinic,
        fields=payload.model_dump(exclude_none=True),
        actor_user_id=access.user.id,
        now=now,
    )
    return _detail_out(db, clinic_id=access.clinic.id, medication_id=medication.id, now=now)


@router.get(
    "",
    response_model=MedicationListOut,
    summary="List medications",
    responses=error_responses(401, 403, 422, 500),
)
def list_medications(
    category: MedicationCategory | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100, description="Matches name, generic/brand name or SKU"),
    low_stock: bool = Query(default=False),
    expiring_soon: bool = Query(default=False),
    is_active: bool = Query(default=True, description="Deactivated medications are hidden unless false"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("medications.view")),
    clock: Clock = Depends(get_clock),
):
    views, summary, total = medication_service.list_medications(
        db,
        clinic_id=access.clinic.id,
        now=clock(),
        category=category,
        search=search,
        low_stock=low_stock,
        expiring_soon=expiring_soon,
        is_active=is_active,
        limit=limit,
        offset=offset,
    )
    items = [MedicationOut(**_medication_fields(view)) for view in views]
    count = len(items)
    return MedicationListOut(
        items=items,
        summary=MedicationSummaryOut(
            total=summary.total,
            low_stock=summary.low_stock,
            expiring_soon=summary.expiring_soon,
            expired=summary.expired,
            total_value=float(summary.total_value),
        ),
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/alerts",
    response_model=MedicationAlertsOut,
    summary="Low-stock, expiring and expired medication alerts",
    responses=error_responses(401, 403, 500),
)
def medication_alerts(
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("medications.view")),
    clock: Clock = Depends(get_clock),
):
    return build_alerts(db, clinic_id=access.clinic.id, now=clock())


@router.post(
    "/alerts/refresh",
    response_model=AlertRefreshOut,
    summary="Recompute stored alert flags for the clinic",
    responses=error_responses(401, 403, 409, 500, 503),
)
def refresh_alerts(
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("alerts.refresh")),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    evaluated, changed = medication_service.refresh_alert_flags(db, clinic_id=access.clinic.id, now=now)
    return AlertRefreshOut(evaluated=evaluated, changed=changed, evaluated_at=now)


@router.get(
    "/{medication_id}",
    response_model=MedicationDetailOut,
    summary="Get medication with batches",
    responses=error_responses(401, 403, 404, 500),
)
def get_medication_detail(
    medication_id: str,
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("medications.view")),
    clock: Clock = Depends(get_clock),
):
    return _detail_out(db, clinic_id=access.clinic.id, medication_id=medication_id, now=clock())


@router.patch(
    "/{medication_id}",
    response_model=MedicationDetailOut,
    summary="Update medication",
    responses=error_responses(401, 403, 404, 409, 422, 500, 503),
)
def update_medication(
    medication_id: str,
    payload: MedicationUpdateIn,
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("medications.manage")),
    clock: Clock = Depends(get_clock),
):
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    now = clock()
    medication_service.update_medication(
        db,
        clinic_id=access.clinic.id,
        medication_id=medication_id,
        changes=changes,
        actor_user_id=access.user.id,
        now=now,
    )
    return _detail_out(db, clinic_id=access.clinic.id, medication_id=medication_id, now=now)


@router.delete(
    "/{medication_id}",
    response_model=MedicationDetailOut,
    summary="Deactivate medication",
    description="Soft delete: the medication is kept but hidden from default listings and alerts.",
    responses=error_responses(401, 403, 404, 409, 500, 503),
)
def deactivate_medication(
    medication_id: str,
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("medications.manage")),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    medication_service.deactivate_medication(
        db,
        clinic_id=access.clinic.id,
        medication_id=medication_id,
        actor_user_id=access.user.id,
        now=now,
    )
    return _detail_out(db, clinic_id=access.clinic.id, medication_id=medication_id, now=now)


@router.post(
    "/{medication_id}/batches",
    response_model=MedicationDetailOut,
    status_code=201,
    summary="Add or receive a new batch",
    description=(
        "Adds the batch and records a `received` stock adjustment in one transaction. "
        "With `receive=false` the batch is stored as pending and stock is unchanged."
    ),
    responses=error_responses(401, 403, 404, 409, 422, 500, 503),
)
def receive_batch(
    medication_id: str,
    payload: BatchCreateIn,
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("stock.receive")),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    if not payload.allow_past_expiry and as_utc(payload.expiry_date) <= as_utc(now):
        raise ValidationError(
            "expiry_date is in the past",
            details=[{"field": "expiry_date", "message": "must be in the future", "type": "value_error"}],
        )
    store = batch_service.receive_batch if payload.receive else batch_service.add_batch
    store(
        db,
        clinic_id=access.clinic.id,
        medication_id=medication_id,
        batch_number=payload.batch_number,
        quantity=payload.quantity,
        expiry_date=payload.expiry_date,
        supplier=payload.supplier,
        cost=payload.cost,
        actor_user_id=access.user.id,
        now=now,
    )
    return _detail_out(db, clinic_id=access.clinic.id, medication_id=medication_id, now=now)


@router.get(
    "/{medication_id}/batches",
    response_model=BatchListOut,
    summary="List batches by expiry date",
    responses=error_responses(401, 403, 404, 500),
)
def list_batches(
    medication_id: str,
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("medications.view")),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    medication, batches = batch_service.list_batches(db, clinic_id=access.clinic.id, medication_id=medication_id)
    return BatchListOut(
        medication_id=medication.id,
        medication_name=medication.name,
        batches=[_batch_out(batch, now) for batch in batches],
    )


@router.post(
    "/{medication_id}/adjust",
    response_model=MedicationDetailOut,
    summary="Adjust medication stock",
    responses=error_responses(401, 403, 404, 409, 422, 500, 503),
)
def adjust_stock(
    medication_id: str,
    payload: StockAdjustIn,
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("stock.adjust")),
    clock: Clock = Depends(get_clock),
):
    now = clock()
    ledger_service.adjust_stock(
        db,
        clinic_id=access.clinic.id,
        medication_id=medication_id,
        adjustment_type=payload.adjustment_type,
        quantity=payload.quantity,
        batch_number=payload.batch_number,
        reason=payload.reason,
        notes=payload.notes,
        performed_by=access.user.id,
        now=now,
    )
    return _detail_out(db, clinic_id=access.clinic.id, medication_id=medication_id, now=now)


@router.get(
    "/{medication_id}/adjustments",
    response_model=StockAdjustmentListOut,
    summary="Stock adjustment history (newest first)",
    responses=error_responses(401, 403, 404, 422, 500),
)
def list_adjustments(
    medication_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("medications.view")),
):
    rows, total = ledger_service.list_adjustments(
        db,
        clinic_id=access.clinic.id,
        medication_id=medication_id,
        limit=limit,
        offset=offset,
    )
    items = [_adjustment_out(row) for row in rows]
    count = len(items)
    return StockAdjustmentListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )
