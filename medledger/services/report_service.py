from collections import Counter
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from medledger.core.clock import as_utc
from medledger.core.money import ZERO_MONEY, stock_value
from medledger.models.medication import Medication
from medledger.schemas.medication import (
    AlertCountsOut,
    ExpiredBatchAlertOut,
    ExpiringBatchAlertOut,
    LowStockAlertOut,
    MedicationAlertsOut,
)
from medledger.schemas.report import (
    ComplianceCountsOut,
    InventoryReportOut,
    InventoryReportSummaryOut,
    StockLevelBucketsOut,
    TopShortfallItemOut,
    TopValueItemOut,
)
from medledger.services.alert_service import days_until_expiry, project_alerts
from medledger.services.medication_repository import load_batches_for

TOP_N = 10


def _active_medications(db: Session, clinic_id: str) -> list[Medication]:
    return list(
        db.execute(
            select(Medication)
            .where(Medication.clinic_id == clinic_id, Medication.is_active.is_(True))
            .order_by(Medication.name.asc(), Medication.id.asc())
        ).scalars().all()
    )


def build_alerts(db: Session, *, clinic_id: str, now: datetime) -> MedicationAlertsOut:
    medications = _active_medications(db, clinic_id)
    batches_by_medication = load_batches_for(db, (m.id for m in medications))

    low_stock: list[LowStockAlertOut] = []
    expiring: list[ExpiringBatchAlertOut] = []
    expired: list[ExpiredBatchAlertOut] = []
    for medication in medications:
        state = project_alerts(medication, batches_by_medication[medication.id], now)
        if state.has_low_stock:
            low_stock.append(
                LowStockAlertOut(
                    medication_id=medication.id,
                    name=medication.name,
                    form=medication.form,
                    strength=medication.strength,
                    current_stock=medication.current_stock,
                    reorder_level=medication.reorder_level,
                )
            )
        for batch in state.expiring_batches:
            expiring.append(
                ExpiringBatchAlertOut(
                    medication_id=medication.id,
                    medication_name=medication.name,
                    form=medication.form,
                    strength=medication.strength,
                    batch_number=batch.batch_number,
                    quantity=batch.quantity,
                    expiry_date=as_utc(batch.expiry_date),
                    days_until_expiry=days_until_expiry(batch, now),
                )
            )
        for batch in state.expired_batches:
            expired.append(
                ExpiredBatchAlertOut(
                    medication_id=medication.id,
                    medication_name=medication.name,
                    form=medication.form,
                    strength=medication.strength,
                    batch_number=batch.batch_number,
                    quantity=batch.quantity,
                    expiry_date=as_utc(batch.expiry_date),
                )
            )

    low_stock.sort(key=lambda item: (item.current_stock, item.name))
    expiring.sort(key=lambda item: (item.expiry_date, item.medication_name))
    expired.sort(key=lambda item: (item.expiry_date, item.medication_name))
    return MedicationAlertsOut(
        low_stock=low_stock,
        expiring_soon=expiring,
        expired=expired,
        summary=AlertCountsOut(
            low_stock_count=len(low_stock),
            expiring_soon_count=len(expiring),
            expired_count=len(expired),
        ),
    )


def build_inventory_report(db: Session, *, clinic_id: str, now: datetime) -> InventoryReportOut:
    medications = _active_medications(db, clinic_id)
    batches_by_medication = load_batches_for(db, (m.id for m in medications))
    states = {m.id: project_alerts(m, batches_by_medication[m.id], now) for m in medications}

    inventory_value: Decimal = sum(
        (stock_value(m.current_stock, m.cost_price) for m in medications), ZERO_MONEY
    )
    selling_value: Decimal = sum(
        (stock_value(m.current_stock, m.selling_price) for m in medications), ZERO_MONEY
    )

    top_by_value = sorted(
        (
            TopValueItemOut(
                medication_id=m.id,
                name=m.name,
                form=m.form,
                strength=m.strength,
                current_stock=m.current_stock,
                value=float(stock_value(m.current_stock, m.cost_price)),
            )
            for m in medications
        ),
        key=lambda item: item.value,
        reverse=True,
    )[:TOP_N]
    top_low_stock = sorted(
        (
            TopShortfallItemOut(
                medication_id=m.id,
                name=m.name,
                form=m.form,
                strength=m.strength,
                current_stock=m.current_stock,
                reorder_level=m.reorder_level,
                shortfall=m.reorder_level - m.current_stock,
            )
            for m in medications
            if states[m.id].has_low_stock
        ),
        key=lambda item: item.shortfall,
        reverse=True,
    )[:TOP_N]

    return InventoryReportOut(
        summary=InventoryReportSummaryOut(
            total_medications=len(medications),
            total_inventory_value=float(inventory_value),
            total_selling_value=float(selling_value),
            potential_profit=float(selling_value - inventory_value),
            low_stock_count=sum(1 for s in states.values() if s.has_low_stock),
            expiring_soon_count=sum(1 for s in states.values() if s.has_expiring_soon),
            expired_count=sum(1 for s in states.values() if s.has_expired),
        ),
        category_distribution=dict(Counter(m.category for m in medications)),
        form_distribution=dict(Counter(m.form for m in medications)),
        stock_levels=StockLevelBucketsOut(
            out_of_stock=sum(1 for m in medications if m.current_stock == 0),
            low_stock=sum(1 for m in medications if m.current_stock > 0 and states[m.id].has_low_stock),
            adequate=sum(1 for m in medications if m.current_stock > m.reorder_level),
        ),
        top_by_value=top_by_value,
        top_low_stock=top_low_stock,
        compliance=ComplianceCountsOut(
            prescription_required=sum(1 for m in medications if m.requires_prescription),
            controlled_substances=sum(1 for m in medications if m.is_controlled),
            refrigeration_required=sum(1 for m in medications if m.requires_refrigeration),
        ),
    )
