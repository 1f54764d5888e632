"""Dashboard API routes."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from hnvpm.database import get_db
from hnvpm.auth.dependencies import get_current_user, require_active_access
from hnvpm.auth.models import UserAccount
from hnvpm.dashboards import service

router = APIRouter(
    prefix="/api/dashboard",
    tags=["Dashboard"],
    dependencies=[Depends(require_active_access)],
)


@router.get("/stats")
def dashboard_stats(db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    return service.get_stats(db, user)


@router.get("/cash-flow")
def cash_flow(db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    return {"items": service.get_cash_flow(db, user)}
