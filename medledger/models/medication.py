from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from medledger.db.base import Base


class Medication(Base):
    """
    Stock-keeping record for one medication in one clinic.

    ``current_stock`` is the authoritative on-hand quantity and always equals the
    sum of ``StockAdjustment.qty_delta`` for the medication. The ``has_*`` flags
    are recomputed on every mutation and are NULL while the medication is inactive.
    """
    __tablename__ = "medications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    clinic_id: Mapped[str] = mapped_column(String(36), ForeignKey("clinics.id"), index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    generic_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    brand_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    manufacturer: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    form: Mapped[str] = mapped_column(String(30), nullable=False)
    strength: Mapped[str] = mapped_column(String(50), nullable=False)  # e.g. "500mg"
    unit: Mapped[str] = mapped_column(String(20), nullable=False)  # e.g. "mg", "ml"
    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    barcode: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    requires_prescription: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_controlled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    controlled_class: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    current_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reorder_level: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default="10")
    reorder_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=50, server_default="50")
    max_stock_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    cost_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    selling_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD", server_default="USD")

    storage_location: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    storage_conditions: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    requires_refrigeration: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dosage_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    has_low_stock: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    has_expiring_soon: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    has_expired: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    created_by_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    last_updated_by_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    __table_args__ = (
        Index("ix_medications_clinic_name", "clinic_id", "name"),
        Index("ix_medications_clinic_active", "clinic_id", "is_active"),
        Index("ix_medications_clinic_low_stock", "clinic_id", "has_low_stock"),
        Index("ix_medications_clinic_expiring_soon", "clinic_id", "has_expiring_soon"),
        Index(
            "ux_medications_clinic_sku_lower",
            "clinic_id",
            func.lower(sku),
            unique=True,
            postgresql_where=sku.isnot(None),
            sqlite_where=sku.isnot(None),
        ),
    )


class MedicationBatch(Base):
    """
    One receipt of a medication. ``received_at`` stays NULL until the ``received``
    ledger entry for the batch is written; until then the batch is not on hand.
    """
    __tablename__ = "medication_batches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    medication_id: Mapped[str] = mapped_column(String(36), ForeignKey("medications.id"), index=True)
    batch_number: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # insertion order within medication

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    supplier: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ux_medication_batches_medication_batch_number", "medication_id", "batch_number", unique=True),
        Index("ix_medication_batches_medication_expiry", "medication_id", "expiry_date"),
    )


class StockAdjustment(Base):
    """
    Append-only stock movement. ``quantity`` is the magnitude; ``qty_delta`` is the
    signed effect on ``Medication.current_stock``.
    """
    __tablename__ = "stock_adjustments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    clinic_id: Mapped[str] = mapped_column(String(36), ForeignKey("clinics.id"), index=True)
    medication_id: Mapped[str] = mapped_column(String(36), ForeignKey("medications.id"), index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    adjustment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_after: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    # [{"batch_number": ..., "quantity": ...}] when a decrease was split across batches
    allocations_json: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, nullable=True)

    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by_user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ux_stock_adjustments_medication_sequence", "medication_id", "sequence", unique=True),
        Index("ix_stock_adjustments_clinic_created_at", "clinic_id", "created_at"),
    )
