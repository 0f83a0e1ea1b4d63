from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from medledger.schemas.common import PaginationMeta

MedicationCategory = Literal[
    "antibiotic",
    "analgesic",
    "antihistamine",
    "antiviral",
    "cardiovascular",
    "diabetes",
    "gastrointestinal",
    "respiratory",
    "dermatological",
    "neurological",
    "other",
]
MedicationForm = Literal[
    "tablet",
    "capsule",
    "syrup",
    "injection",
    "cream",
    "ointment",
    "drops",
    "inhaler",
    "suppository",
    "patch",
    "other",
]
AdjustmentType = Literal[
    "received",
    "returned",
    "adjusted_in",
    "dispensed",
    "expired",
    "damaged",
    "adjusted_out",
]


def _strip_optional(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


class MedicationCreateIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    generic_name: str | None = Field(default=None, max_length=255)
    brand_name: str | None = Field(default=None, max_length=255)
    manufacturer: str | None = Field(default=None, max_length=255)
    category: MedicationCategory
    form: MedicationForm
    strength: str = Field(min_length=1, max_length=50)
    unit: str = Field(min_length=1, max_length=20)
    sku: str | None = Field(default=None, max_length=100)
    barcode: str | None = Field(default=None, max_length=100)
    requires_prescription: bool = True
    is_controlled: bool = False
    controlled_class: str | None = Field(default=None, max_length=20)
    reorder_level: int | None = Field(default=None, ge=0)
    reorder_quantity: int | None = Field(default=None, ge=0)
    max_stock_level: int | None = Field(default=None, ge=0)
    cost_price: Decimal | None = Field(default=None, ge=0)
    selling_price: Decimal = Field(ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    storage_location: str | None = Field(default=None, max_length=100)
    storage_conditions: str | None = Field(default=None, max_length=255)
    requires_refrigeration: bool = False
    dosage_instructions: str | None = None

    @field_validator("name", "strength", "unit")
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value cannot be blank")
        return cleaned

    @field_validator(
        "generic_name",
        "brand_name",
        "manufacturer",
        "sku",
        "barcode",
        "controlled_class",
        "storage_location",
        "storage_conditions",
        "dosage_instructions",
    )
    @classmethod
    def normalize_optional_text(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str | None) -> str | None:
        cleaned = _strip_optional(value)
        return cleaned.upper() if cleaned else None

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "name": "Amoxicillin",
                "generic_name": "amoxicillin trihydrate",
                "category": "antibiotic",
                "form": "capsule",
                "strength": "500mg",
                "unit": "capsule",
                "sku": "AMX-500-CAP",
                "reorder_level": 50,
                "reorder_quantity": 200,
                "cost_price": 0.35,
                "selling_price": 0.9,
            }
        },
    )


class MedicationUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    generic_name: str | None = Field(default=None, max_length=255)
    brand_name: str | None = Field(default=None, max_length=255)
    manufacturer: str | None = Field(default=None, max_length=255)
    category: MedicationCategory | None = None
    form: MedicationForm | None = None
    strength: str | None = Field(default=None, min_length=1, max_length=50)
    unit: str | None = Field(default=None, min_length=1, max_length=20)
    sku: str | None = Field(default=None, max_length=100)
    barcode: str | None = Field(default=None, max_length=100)
    requires_prescription: bool | None = None
    is_controlled: bool | None = None
    controlled_class: str | None = Field(default=None, max_length=20)
    reorder_level: int | None = Field(default=None, ge=0)
    reorder_quantity: int | None = Field(default=None, ge=0)
    max_stock_level: int | None = Field(default=None, ge=0)
    cost_price: Decimal | None = Field(default=None, ge=0)
    selling_price: Decimal | None = Field(default=None, ge=0)
    storage_location: str | None = Field(default=None, max_length=100)
    storage_conditions: str | None = Field(default=None, max_length=255)
    requires_refrigeration: bool | None = None
    dosage_instructions: str | None = None
    is_active: bool | None = None

    @field_validator("name", "strength", "unit")
    @classmethod
    def validate_required_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value cannot be blank")
        return cleaned

    @field_validator(
        "generic_name",
        "brand_name",
        "manufacturer",
        "sku",
        "barcode",
        "controlled_class",
        "storage_location",
        "storage_conditions",
        "dosage_instructions",
    )
    @classmethod
    def normalize_optional_text(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={"example": {"reorder_level": 80, "storage_location": "Shelf B2"}},
    )


class BatchCreateIn(BaseModel):
    batch_number: str = Field(min_length=1, max_length=100)
    quantity: int = Field(gt=0)
    expiry_date: datetime
    supplier: str | None = Field(default=None, max_length=255)
    cost: Decimal | None = Field(default=None, ge=0)
    allow_past_expiry: bool = Field(
        default=False,
        description="Accept a batch whose expiry date has already passed (e.g. back-filling records).",
    )
    receive: bool = Field(
        default=True,
        description=(
            "Record the `received` stock adjustment immediately. When false the batch stays pending "
            "until confirmed with `POST /medications/{id}/adjust` (`adjustment_type=received`)."
        ),
    )

    @field_validator("batch_number")
    @classmethod
    def validate_batch_number(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("batch_number cannot be blank")
        return cleaned

    @field_validator("supplier")
    @classmethod
    def normalize_supplier(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "batch_number": "AMX-2026-031",
                "quantity": 500,
                "expiry_date": "2027-08-31T00:00:00Z",
                "supplier": "MedSupply Ltd",
                "cost": 160.0,
            }
        },
    )


class StockAdjustIn(BaseModel):
    adjustment_type: AdjustmentType
    quantity: int = Field(gt=0, description="Magnitude; the adjustment type decides the sign.")
    batch_number: str | None = Field(default=None, max_length=100)
    reason: str | None = Field(default=None, max_length=255)
    notes: str | None = None

    @field_validator("batch_number", "reason", "notes")
    @classmethod
    def normalize_optional_text(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "adjustment_type": "dispensed",
                "quantity": 21,
                "reason": "Prescription RX-1042",
            }
        },
    )


class BatchOut(BaseModel):
    id: str
    batch_number: str
    quantity: int
    expiry_date: datetime
    supplier: str | None = None
    cost: float | None = None
    received_at: datetime | None = None
    is_expired: bool
    created_at: datetime


class MedicationOut(BaseModel):
    id: str
    clinic_id: str
    name: str
    generic_name: str | None = None
    brand_name: str | None = None
    manufacturer: str | None = None
    category: str
    form: str
    strength: str
    unit: str
    sku: str | None = None
    barcode: str | None = None
    requires_prescription: bool
    is_controlled: bool
    controlled_class: str | None = None
    current_stock: int
    reorder_level: int
    reorder_quantity: int
    max_stock_level: int | None = None
    cost_price: float | None = None
    selling_price: float
    currency: str
    storage_location: str | None = None
    storage_conditions: str | None = None
    requires_refrigeration: bool
    dosage_instructions: str | None = None
    is_active: bool
    has_low_stock: bool | None = None
    has_expiring_soon: bool | None = None
    has_expired: bool | None = None
    created_by_user_id: str
    last_updated_by_user_id: str
    created_at: datetime
    updated_at: datetime


class MedicationDetailOut(MedicationOut):
    batches: list[BatchOut]


class MedicationSummaryOut(BaseModel):
    total: int
    low_stock: int
    expiring_soon: int
    expired: int
    total_value: float


class MedicationListOut(BaseModel):
    items: list[MedicationOut]
    summary: MedicationSummaryOut
    pagination: PaginationMeta


class BatchListOut(BaseModel):
    medication_id: str
    medication_name: str
    batches: list[BatchOut]


class BatchAllocationOut(BaseModel):
    batch_number: str
    quantity: int


class StockAdjustmentOut(BaseModel):
    id: str
    medication_id: str
    sequence: int
    adjustment_type: str
    quantity: int
    qty_delta: int
    stock_after: int
    batch_number: str | None = None
    allocations: list[BatchAllocationOut] | None = None
    reason: str | None = None
    notes: str | None = None
    performed_by_user_id: str
    created_at: datetime


class StockAdjustmentListOut(BaseModel):
    items: list[StockAdjustmentOut]
    pagination: PaginationMeta


class LowStockAlertOut(BaseModel):
    medication_id: str
    name: str
    form: str
    strength: str
    current_stock: int
    reorder_level: int


class ExpiringBatchAlertOut(BaseModel):
    medication_id: str
    medication_name: str
    form: str
    strength: str
    batch_number: str
    quantity: int
    expiry_date: datetime
    days_until_expiry: int


class ExpiredBatchAlertOut(BaseModel):
    medication_id: str
    medication_name: str
    form: str
    strength: str
    batch_number: str
    quantity: int
    expiry_date: datetime


class AlertCountsOut(BaseModel):
    low_stock_count: int
    expiring_soon_count: int
    expired_count: int


class MedicationAlertsOut(BaseModel):
    low_stock: list[LowStockAlertOut]
    expiring_soon: list[ExpiringBatchAlertOut]
    expired: list[ExpiredBatchAlertOut]
    summary: AlertCountsOut


class AlertRefreshOut(BaseModel):
    evaluated: int
    changed: int
    evaluated_at: datetime
