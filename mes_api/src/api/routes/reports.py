from __future__ import annotations

import io
from datetime import datetime
from typing import Literal, Optional, Sequence
from uuid import UUID

import pandas as pd
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Table, TableStyle
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.deps import get_tenant_id, get_tenant_session, require_roles
from src.db.models.production import ProductionOrder, ProductionStep
from src.schemas.oee import Grain
from src.services.base import utcnow
from src.services.downtime import DowntimeService
from src.services.inventory import MESInventoryService
from src.services.oee import OEEService
from src.services.quality import QualityExecutionService

# PUBLIC_INTERFACE
router = APIRouter(
    prefix="/reports",
    tags=["Reports"],
)

FORMAT_QUERY = Query("csv", description="Export format: csv | xlsx | pdf (unknown values fall back to csv)")


# PUBLIC_INTERFACE
def export_dataframe(
    df: pd.DataFrame,
    filename_base: str,
    export_format: str,
) -> StreamingResponse:
    """
    Convert DataFrame to the requested format and return a StreamingResponse.

    Supported formats:
      - csv: text/csv
      - xlsx: application/vnd.openxmlformats-officedocument.spreadsheetml.sheet
      - pdf: application/pdf (simple tabular rendering)
    """
    export_format = (export_format or "csv").lower()
    if export_format in ("xlsx", "excel", "xls"):
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="Report")
        buffer.seek(0)
        headers = {
            "Content-Disposition": f'attachment; filename="{filename_base}.xlsx"'
        }
        return StreamingResponse(
            buffer,
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers=headers,
        )

    if export_format == "pdf":
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer, pagesize=landscape(letter), leftMargin=18, rightMargin=18, topMargin=18, bottomMargin=18
        )
        styles = getSampleStyleSheet()
        generated = utcnow().strftime("%Y-%m-%d %H:%M UTC")
        elements: list = [Paragraph(f"{filename_base.replace('_', ' ').title()} ({generated})", styles["Title"])]

        data = [list(df.columns)] + df.astype(str).values.tolist()
        table = Table(data, repeatRows=1)
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.black),
                    ("ALIGN", (0, 0), (-1, -1), "LEFT"),
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("FONTSIZE", (0, 0), (-1, -1), 8),
                    ("BOTTOMPADDING", (0, 0), (-1, 0), 6),
                    ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ]
            )
        )
        elements.append(table)
        doc.build(elements)
        buffer.seek(0)
        headers = {
            "Content-Disposition": f'attachment; filename="{filename_base}.pdf"'
        }
        return StreamingResponse(buffer, media_type="application/pdf", headers=headers)

    # Default: CSV
    text_buffer = io.StringIO()
    df.to_csv(text_buffer, index=False)
    text_buffer.seek(0)
    headers = {
        "Content-Disposition": f'attachment; filename="{filename_base}.csv"'
    }
    return StreamingResponse(text_buffer, media_type="text/csv", headers=headers)


async def _fetch_all(session: AsyncSession, stmt: Select) -> Sequence:
    """Execute a select and return list of row tuples."""
    res = await session.execute(stmt)
    return list(res.all())


PRODUCTION_ORDER_COLUMNS = [
    "order_number",
    "title",
    "status",
    "priority",
    "quantity_ordered",
    "quantity_completed",
    "progress_percent",
    "total_steps",
    "completed_steps",
    "scheduled_start",
    "scheduled_end",
    "actual_start",
    "actual_end",
    "hold_reason",
    "created_at",
]


# PUBLIC_INTERFACE
@router.get(
    "/production-orders",
    summary="Production order status report",
    description="Exports production orders with step counts and completion progress.",
    response_description="File stream (CSV/XLSX/PDF)",
    dependencies=[Depends(require_roles("admin", "reports:view", "production:view"))],
)
async def production_orders_report(
    session: AsyncSession = Depends(get_tenant_session),
    status: Optional[str] = Query(None, description="Filter by order status"),
    from_ts: Optional[datetime] = Query(None, alias="from", description="Created at or after"),
    to_ts: Optional[datetime] = Query(None, alias="to", description="Created before"),
    format: str = FORMAT_QUERY,
):
    """
    Generate a Production Order Status report.

    Includes:
      - order header fields
      - total and completed steps (status = 'complete')
      - completion percentage based on quantity_completed/quantity_ordered
    """
    total_steps_sub = (
        select(func.count(ProductionStep.id))
        .where(ProductionStep.production_order_id == ProductionOrder.id)
        .scalar_subquery()
    )
    completed_steps_sub = (
        select(func.count(ProductionStep.id))
        .where(
            (ProductionStep.production_order_id == ProductionOrder.id)
            & (ProductionStep.status == "complete")
        )
        .scalar_subquery()
    )

    stmt = select(
        ProductionOrder.order_number,
        ProductionOrder.title,
        ProductionOrder.status,
        ProductionOrder.priority,
        ProductionOrder.quantity_ordered,
        ProductionOrder.quantity_completed,
        ProductionOrder.scheduled_start,
        ProductionOrder.scheduled_end,
        ProductionOrder.actual_start,
        ProductionOrder.actual_end,
        ProductionOrder.hold_reason,
        ProductionOrder.created_at,
        total_steps_sub.label("total_steps"),
        completed_steps_sub.label("completed_steps"),
    ).order_by(ProductionOrder.created_at.desc())

    if status:
        stmt = stmt.where(ProductionOrder.status == status)
    if from_ts is not None:
        stmt = stmt.where(ProductionOrder.created_at >= from_ts)
    if to_ts is not None:
        stmt = stmt.where(ProductionOrder.created_at < to_ts)

    rows = await _fetch_all(session, stmt)
    data = []
    for (
        order_number,
        title,
        order_status,
        priority,
        qty_ordered,
        qty_completed,
        scheduled_start,
        scheduled_end,
        actual_start,
        actual_end,
        hold_reason,
        created_at,
        total_steps,
        completed_steps,
    ) in rows:
        qo = float(qty_ordered or 0)
        qc = float(qty_completed or 0)
        progress = (qc / qo * 100.0) if qo > 0 else None
        data.append(
            {
                "order_number": order_number,
                "title": title,
                "status": order_status,
                "priority": priority,
                "quantity_ordered": qo,
                "quantity_completed": qc,
                "progress_percent": round(progress, 2) if progress is not None else None,
                "total_steps": int(total_steps or 0),
                "completed_steps": int(completed_steps or 0),
                "scheduled_start": scheduled_start,
                "scheduled_end": scheduled_end,
                "actual_start": actual_start,
                "actual_end": actual_end,
                "hold_reason": hold_reason,
                "created_at": created_at,
            }
        )
    df = pd.DataFrame(data, columns=PRODUCTION_ORDER_COLUMNS)
    return export_dataframe(df, "production_orders", format)


# PUBLIC_INTERFACE
@router.get(
    "/downtime-pareto",
    summary="Downtime Pareto report",
    description="Exports downtime duration by reason, category or group with cumulative percentages.",
    response_description="File stream (CSV/XLSX/PDF)",
    dependencies=[Depends(require_roles("admin", "reports:view", "downtime:view"))],
)
async def downtime_pareto_report(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
    work_center_id: Optional[UUID] = Query(None),
    from_ts: Optional[datetime] = Query(None, alias="from"),
    to_ts: Optional[datetime] = Query(None, alias="to"),
    by: Literal["reason", "category", "group"] = Query("reason"),
    format: str = FORMAT_QUERY,
):
    service = DowntimeService(session, tenant_id)
    if by == "category":
        items = await service.get_pareto_by_category(work_center_id, from_ts, to_ts)
    elif by == "group":
        items = await service.get_pareto_by_group(work_center_id, from_ts, to_ts)
    else:
        items = await service.get_pareto_by_reason(work_center_id, from_ts, to_ts)
    df = pd.DataFrame(
        [i.model_dump() for i in items],
        columns=[
            "code",
            "name",
            "category",
            "reason_group",
            "count",
            "duration_minutes",
            "percentage_of_total",
            "cumulative_percentage",
        ],
    )
    return export_dataframe(df, f"downtime_pareto_by_{by}", format)


# PUBLIC_INTERFACE
@router.get(
    "/oee-trend",
    summary="OEE trend report",
    response_description="File stream (CSV/XLSX/PDF)",
    dependencies=[Depends(require_roles("admin", "reports:view", "oee:view"))],
)
async def oee_trend_report(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
    work_center_id: UUID = Query(...),
    from_ts: datetime = Query(..., alias="from"),
    to_ts: datetime = Query(..., alias="to"),
    granularity: Grain = Query("daily"),
    format: str = FORMAT_QUERY,
):
    points = await OEEService(session, tenant_id).get_oee_trend(work_center_id, from_ts, to_ts, granularity)
    df = pd.DataFrame(
        [p.model_dump() for p in points],
        columns=[
            "period_start",
            "period_end",
            "shift_name",
            "availability_pct",
            "performance_pct",
            "quality_pct",
            "oee_pct",
            "total_count",
            "good_count",
            "downtime_minutes",
        ],
    )
    return export_dataframe(df, "oee_trend", format)


# PUBLIC_INTERFACE
@router.get(
    "/ncr-summary",
    summary="NCR summary report",
    description="Exports nonconformances with defect counts and latest disposition.",
    response_description="File stream (CSV/XLSX/PDF)",
    dependencies=[Depends(require_roles("admin", "reports:view", "quality:view"))],
)
async def ncr_summary_report(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
    from_ts: Optional[datetime] = Query(None, alias="from"),
    to_ts: Optional[datetime] = Query(None, alias="to"),
    status: Optional[str] = Query(None, description="Filter by NC status"),
    format: str = FORMAT_QUERY,
):
    rows = await QualityExecutionService(session, tenant_id).get_ncr_summary(
        from_ts=from_ts, to_ts=to_ts, status=status
    )
    data = [r.model_dump(exclude={"nc_id"}) for r in rows]
    df = pd.DataFrame(
        data,
        columns=[
            "nc_number",
            "title",
            "severity",
            "status",
            "source",
            "reported_at",
            "order_number",
            "part_number",
            "part_name",
            "defect_count",
            "latest_disposition",
        ],
    )
    return export_dataframe(df, "ncr_summary", format)


# PUBLIC_INTERFACE
@router.get(
    "/material-consumption",
    summary="Material consumption report",
    description="Exports the consumption log of a production order, reversals included.",
    response_description="File stream (CSV/XLSX/PDF)",
    dependencies=[Depends(require_roles("admin", "reports:view", "inventory:view"))],
)
async def material_consumption_report(
    session: AsyncSession = Depends(get_tenant_session),
    tenant_id: UUID = Depends(get_tenant_id),
    production_order_id: UUID = Query(..., description="Production order"),
    format: str = FORMAT_QUERY,
):
    entries = await MESInventoryService(session, tenant_id).get_consumption_log(production_order_id)
    data = []
    for e in entries:
        cost = float(e.qty) * float(e.unit_cost) if e.unit_cost is not None else None
        data.append(
            {
                "consumed_at": e.consumed_at,
                "part_number": e.part_number,
                "part_name": e.part_name,
                "location": e.location_name,
                "qty": e.qty,
                "unit_cost": e.unit_cost,
                "extended_cost": cost,
                "method": e.method,
                "lot_number": e.lot_number,
                "is_reversal": e.is_reversal,
                "reversal_reason": e.reversal_reason,
            }
        )
    df = pd.DataFrame(
        data,
        columns=[
            "consumed_at",
            "part_number",
            "part_name",
            "location",
            "qty",
            "unit_cost",
            "extended_cost",
            "method",
            "lot_number",
            "is_reversal",
            "reversal_reason",
        ],
    )
    return export_dataframe(df, "material_consumption", format)
