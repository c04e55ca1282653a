import logging
from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from stockbook.core.api_docs import error_responses, file_download_responses
from stockbook.core.deps import get_db
from stockbook.core.observability import log_event
from stockbook.core.permissions import require_permission
from stockbook.core.security_current import BusinessAccess
from stockbook.services.report_service import EmptyReportError, ReportError, render_report, report_window

router = APIRouter(prefix="/reports", tags=["reports"])
reports_logger = logging.getLogger("stockbook.reports")


@router.get(
    "/stock-movements",
    response_class=Response,
    summary="Export stock movements for a date range",
    description=(
        "Both dates are inclusive: the window runs from the start of `start_date` "
        "to the end of `end_date` in UTC. Returns 404 when no movement falls inside it "
        "and 400 when it holds more movements than the export limit."
    ),
    responses={
        **file_download_responses("csv", "pdf"),
        **error_responses(400, 401, 403, 404, 422, 500),
    },
)
def export_stock_movements(
    start_date: date = Query(...),
    end_date: date = Query(...),
    format: Literal["csv", "pdf"] = Query(default="csv"),
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("reports.export")),
):
    business_id = access.business.id
    try:
        window = report_window(start_date, end_date)
        content, media_type, filename = render_report(db, business_id=business_id, window=window, fmt=format)
    except EmptyReportError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ReportError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    log_event(
        reports_logger,
        "report.exported",
        business_id=business_id,
        format=format,
        start_date=start_date.isoformat(),
        end_date=end_date.isoformat(),
        size_bytes=len(content),
    )
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
