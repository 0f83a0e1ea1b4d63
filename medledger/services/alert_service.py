import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from medledger.core.clock import as_utc
from medledger.core.config import settings
from medledger.models.medication import Medication, MedicationBatch


@dataclass(frozen=True)
class AlertState:
    has_low_stock: bool
    has_expiring_soon: bool
    has_expired: bool
    expiring_batches: tuple[MedicationBatch, ...]
    expired_batches: tuple[MedicationBatch, ...]


def is_on_hand(batch: MedicationBatch) -> bool:
    return batch.received_at is not None and batch.quantity > 0


def is_batch_expired(batch: MedicationBatch, now: datetime) -> bool:
    return as_utc(batch.expiry_date) <= as_utc(now)


def days_until_expiry(batch: MedicationBatch, now: datetime) -> int:
    remaining = as_utc(batch.expiry_date) - as_utc(now)
    return math.ceil(remaining / timedelta(days=1))


def project_alerts(
    medication: Medication,
    batches: Sequence[MedicationBatch],
    now: datetime,
    *,
    warning_days: int | None = None,
) -> AlertState:
    """
    Derive the alert flags for a medication at instant ``now``.

    Pure: reads its arguments only and never mutates them. Pending batches
    (no receipt recorded yet) are not on hand and never raise an alert.
    """
    now_utc = as_utc(now)
    window = settings.expiry_warning_days if warning_days is None else warning_days
    horizon = now_utc + timedelta(days=window)

    expiring: list[MedicationBatch] = []
    expired: list[MedicationBatch] = []
    for batch in batches:
        if not is_on_hand(batch):
            continue
        expiry = as_utc(batch.expiry_date)
        if expiry <= now_utc:
            expired.append(batch)
        elif expiry <= horizon:
            expiring.append(batch)

    return AlertState(
        has_low_stock=bool(medication.is_active) and medication.current_stock <= medication.reorder_level,
        has_expiring_soon=bool(expiring),
        has_expired=bool(expired),
        expiring_batches=tuple(expiring),
        expired_batches=tuple(expired),
    )


def apply_alert_flags(
    medication: Medication,
    batches: Sequence[MedicationBatch],
    now: datetime,
) -> bool:
    """Store freshly projected flags on ``medication``; returns True when any flag changed."""
    before = (medication.has_low_stock, medication.has_expiring_soon, medication.has_expired)
    if not medication.is_active:
        # Alerts do not apply to deactivated medications.
        after = (None, None, None)
    else:
        state = project_alerts(medication, batches, now)
        after = (state.has_low_stock, state.has_expiring_soon, state.has_expired)

    medication.has_low_stock, medication.has_expiring_soon, medication.has_expired = after
    return before != after
