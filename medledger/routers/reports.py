from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from medledger.core.api_docs import error_responses
from medledger.core.clock import Clock, get_clock
from medledger.core.deps import get_db
from medledger.core.permissions import require_permission
from medledger.core.security_current import ClinicAccess
from medledger.schemas.report import InventoryReportOut
from medledger.services.report_service import build_inventory_report

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get(
    "/inventory",
    response_model=InventoryReportOut,
    summary="Inventory valuation, distribution and alert report",
    responses=error_responses(401, 403, 500),
)
def inventory_report(
    db: Session = Depends(get_db),
    access: ClinicAccess = Depends(require_permission("reports.view")),
    clock: Clock = Depends(get_clock),
):
    return build_inventory_report(db, clinic_id=access.clinic.id, now=clock())
