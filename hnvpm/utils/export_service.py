"""Export utilities - CSV and Excel exports of properties, tenants and payments."""
import io
import csv
import logging
from typing import Optional, Callable

from fastapi import APIRouter, Depends, Query, HTTPException
from fastapi.responses import StreamingResponse
from openpyxl import Workbook
from sqlalchemy.orm import Session

from hnvpm.database import get_db
from hnvpm.auth.dependencies import get_current_user, require_active_access
from hnvpm.auth.models import UserAccount
from hnvpm.modules.properties.models import Property
from hnvpm.modules.tenants.models import Tenant
from hnvpm.modules.payments.models import Payment
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.utils.scoping import org_scoped, require_org

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/export",
    tags=["Export"],
    dependencies=[Depends(require_active_access)],
)

EXPORT_COLUMNS = {
    "properties": [
        "id", "name", "property_type", "address_line1", "city", "state", "postal_code",
        "country", "number_of_units", "status", "created_at",
    ],
    "tenants": [
        "id", "first_name", "last_name", "email", "phone", "property_id", "unit_id",
        "rent_amount", "status", "move_in_date", "move_out_date",
    ],
    "payments": [
        "id", "tenant_id", "property_id", "amount", "payment_date", "payment_method",
        "status", "reference",
    ],
}


def _to_row(obj, columns: list[str]) -> dict:
    out = {}
    for name in columns:
        value = getattr(obj, name)
        out[name] = str(value) if value is not None else ""
    return out


def _query_rows(
    db: Session,
    user: UserAccount,
    model,
    columns: list[str],
    filter_fn: Optional[Callable] = None,
) -> list[dict]:
    q = org_scoped(db.query(model), model, user)
    if filter_fn:
        q = filter_fn(q)
    return [_to_row(item, columns) for item in q.order_by(model.id).all()]


def rows_to_csv(rows: list[dict]) -> io.BytesIO:
    text_buf = io.StringIO()
    if not rows:
        text_buf.write("No data\n")
    else:
        writer = csv.DictWriter(text_buf, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)
    out = io.BytesIO(text_buf.getvalue().encode("utf-8"))
    out.seek(0)
    return out


def rows_to_excel(title: str, rows: list[dict]) -> io.BytesIO:
    wb = Workbook()
    ws = wb.active
    ws.title = title[:31] or "Data"
    if not rows:
        ws.append(["No data"])
    else:
        headers = list(rows[0].keys())
        ws.append(headers)
        for row in rows:
            ws.append([row.get(key, "") for key in headers])
    out = io.BytesIO()
    wb.save(out)
    out.seek(0)
    return out


def _stream_file(rows: list[dict], filename_base: str, fmt: str, sheet_name: str) -> StreamingResponse:
    if fmt == "xlsx":
        return StreamingResponse(
            rows_to_excel(sheet_name, rows),
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers={"Content-Disposition": f"attachment; filename={filename_base}.xlsx"},
        )
    if fmt == "csv":
        return StreamingResponse(
            rows_to_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename_base}.csv"},
        )
    raise HTTPException(status_code=400, detail="Invalid format. Use csv or xlsx")


def _export(db: Session, user: UserAccount, resource: str, fmt: str, model, filter_fn=None) -> StreamingResponse:
    org_id = require_org(user)
    subscription_service.ensure_within_limit(db, org_id, "exports")
    rows = _query_rows(db, user, model, EXPORT_COLUMNS[resource], filter_fn)
    response = _stream_file(rows, resource, fmt, resource.capitalize())
    subscription_service.update_usage(db, org_id, "exports", 1)
    logger.info("Org %s exported %d %s as %s", org_id, len(rows), resource, fmt)
    return response


@router.get("/properties")
def export_properties(
    include_archived: bool = False,
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    def _filter(q):
        return q if include_archived else q.filter(Property.status != "Archived")
    return _export(db, user, "properties", format, Property, _filter)


@router.get("/tenants")
def export_tenants(
    include_archived: bool = False,
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    def _filter(q):
        return q if include_archived else q.filter(Tenant.status != "Archived")
    return _export(db, user, "tenants", format, Tenant, _filter)


@router.get("/payments")
def export_payments(
    status: Optional[str] = None,
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    def _filter(q):
        return q.filter(Payment.status == status) if status else q
    return _export(db, user, "payments", format, Payment, _filter)
