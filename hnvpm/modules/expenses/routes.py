"""Expense ledger routes."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from hnvpm.database import get_db
from hnvpm.auth.dependencies import get_current_user, require_active_access
from hnvpm.auth.models import UserAccount
from hnvpm.modules.expenses.models import Expense, EXPENSE_CATEGORIES
from hnvpm.modules.properties.models import Property
from hnvpm.utils.audit_service import record_audit
from hnvpm.utils.event_service import emit_outbox_event
from hnvpm.utils.payload import sanitize_payload, require_fields, to_dict
from hnvpm.utils.scoping import org_scoped, require_org, forbid_agents, scoped_get

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/expenses",
    tags=["Expenses"],
    dependencies=[Depends(require_active_access)],
)

EXPENSE_BLOCKED = {"status", "archived_at"}


def _get_expense(db: Session, user: UserAccount, expense_id: int) -> Expense:
    expense = org_scoped(db.query(Expense), Expense, user).filter(Expense.id == expense_id).first()
    if not expense:
        raise HTTPException(404, "Expense not found")
    return expense


def _validate(db: Session, user: UserAccount, clean: dict) -> None:
    if clean.get("amount") is not None and clean["amount"] <= 0:
        raise HTTPException(422, "amount must be greater than zero")
    if clean.get("category") is not None and clean["category"] not in EXPENSE_CATEGORIES:
        raise HTTPException(422, f"category must be one of: {', '.join(EXPENSE_CATEGORIES)}")
    if clean.get("property_id") is not None:
        scoped_get(db, user, Property, clean["property_id"], "Property")


@router.get("")
def list_expenses(
    category: Optional[str] = None,
    property_id: Optional[int] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    include_archived: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    q = org_scoped(db.query(Expense), Expense, user)
    if not include_archived:
        q = q.filter(Expense.status == "Active")
    if category:
        q = q.filter(Expense.category == category)
    if property_id:
        q = q.filter(Expense.property_id == property_id)
    if date_from:
        q = q.filter(Expense.expense_date >= date_from)
    if date_to:
        q = q.filter(Expense.expense_date <= date_to)
    if search:
        q = q.filter(or_(
            Expense.description.ilike(f"%{search}%"),
            Expense.vendor.ilike(f"%{search}%"),
            Expense.notes.ilike(f"%{search}%"),
        ))

    breakdown = {
        row.category: round(float(row.total or 0), 2)
        for row in q.with_entities(Expense.category, func.sum(Expense.amount).label("total"))
        .group_by(Expense.category)
        .all()
    }
    total = q.count()
    items = q.order_by(Expense.expense_date.desc(), Expense.id.desc()).offset(skip).limit(limit).all()
    return {
        "total": total,
        "items": [to_dict(e) for e in items],
        "summary": {
            "total_amount": round(sum(breakdown.values()), 2),
            "category_breakdown": breakdown,
        },
    }


@router.post("", status_code=201)
def create_expense(data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    org_id = require_org(user)
    clean = sanitize_payload(Expense, data, blocked_fields=EXPENSE_BLOCKED)
    require_fields(clean, "description", "amount", "category")
    _validate(db, user, clean)

    expense = Expense(**clean)
    expense.organization_id = org_id
    expense.expense_date = expense.expense_date or datetime.utcnow()
    expense.status = "Active"
    expense.created_by = user.id
    db.add(expense)
    db.flush()
    emit_outbox_event(db, org_id, "expense.recorded", "expense", expense.id,
                      {"category": expense.category, "amount": str(expense.amount)})
    db.commit()
    db.refresh(expense)
    return to_dict(expense)


@router.get("/{expense_id}")
def get_expense(expense_id: int, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    return to_dict(_get_expense(db, user, expense_id))


@router.put("/{expense_id}")
def update_expense(expense_id: int, data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    expense = _get_expense(db, user, expense_id)
    if expense.status == "Archived":
        raise HTTPException(400, "Archived expenses cannot be edited")
    clean = sanitize_payload(Expense, data, blocked_fields=EXPENSE_BLOCKED)
    for field in ("description", "amount", "category"):
        if field in clean and clean[field] in (None, ""):
            raise HTTPException(422, f"{field} cannot be empty")
    _validate(db, user, clean)
    for k, v in clean.items():
        setattr(expense, k, v)
    db.commit()
    db.refresh(expense)
    return to_dict(expense)


@router.delete("/{expense_id}")
def archive_expense(expense_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    forbid_agents(user, "delete expenses")
    expense = _get_expense(db, user, expense_id)
    if expense.status == "Archived":
        raise HTTPException(400, "Expense is already archived")
    expense.status = "Archived"
    expense.archived_at = datetime.utcnow()
    record_audit(db, user, "expense_archived", "expense", expense.id,
                 {"description": expense.description, "amount": str(expense.amount)}, request)
    db.commit()
    return {"message": "Expense archived successfully"}
