from pydantic import BaseModel


class InventoryReportSummaryOut(BaseModel):
    total_medications: int
    total_inventory_value: float
    total_selling_value: float
    potential_profit: float
    low_stock_count: int
    expiring_soon_count: int
    expired_count: int


class StockLevelBucketsOut(BaseModel):
    out_of_stock: int
    low_stock: int
    adequate: int


class TopValueItemOut(BaseModel):
    medication_id: str
    name: str
    form: str
    strength: str
    current_stock: int
    value: float


class TopShortfallItemOut(BaseModel):
    medication_id: str
    name: str
    form: str
    strength: str
    current_stock: int
    reorder_level: int
    shortfall: int


class ComplianceCountsOut(BaseModel):
    prescription_required: int
    controlled_substances: int
    refrigeration_required: int


class InventoryReportOut(BaseModel):
    summary: InventoryReportSummaryOut
    category_distribution: dict[str, int]
    form_distribution: dict[str, int]
    stock_levels: StockLevelBucketsOut
    top_by_value: list[TopValueItemOut]
    top_low_stock: list[TopShortfallItemOut]
    compliance: ComplianceCountsOut
