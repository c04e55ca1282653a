from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockbook.core.api_docs import error_responses
from stockbook.core.deps import get_db
from stockbook.core.permissions import require_permission
from stockbook.core.security_current import BusinessAccess
from stockbook.schemas.dashboard import CriticalProductOut, DashboardSummaryOut
from stockbook.schemas.inventory import movement_out
from stockbook.services.dashboard_service import get_summary

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get(
    "/summary",
    response_model=DashboardSummaryOut,
    summary="Get inventory KPI summary",
    responses={
        200: {
            "description": "Dashboard summary",
            "content": {
                "application/json": {
                    "example": {
                        "product_count": 12,
                        "variant_count": 30,
                        "warehouse_count": 1,
                        "total_units": 845,
                        "critical_products": [
                            {
                                "product_id": "product-id",
                                "name": "Ankara Tote",
                                "sku": "TOTE-01",
                                "total_stock": 2,
                                "total_safety_stock": 5,
                                "status": "low",
                            }
                        ],
                        "recent_movements": [],
                        "pending_order_count": 3,
                        "pending_order_value": 180.0,
                    }
                }
            },
        },
        **error_responses(401, 403, 500),
    },
)
def dashboard_summary(
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("dashboard.view")),
):
    summary = get_summary(db, access.business.id)
    return DashboardSummaryOut(
        product_count=summary["product_count"],
        variant_count=summary["variant_count"],
        warehouse_count=summary["warehouse_count"],
        total_units=summary["total_units"],
        critical_products=[CriticalProductOut(**item) for item in summary["critical_products"]],
        recent_movements=[movement_out(entry) for entry in summary["recent_movements"]],
        pending_order_count=summary["pending_order_count"],
        pending_order_value=summary["pending_order_value"],
    )
