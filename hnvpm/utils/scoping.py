"""Organization and agent visibility filters shared by the resource routers."""
from fastapi import HTTPException

from hnvpm.auth.models import AGENT


def is_agent(user) -> bool:
    return user.role == AGENT


def managed_ids(user) -> list[int]:
    return [int(i) for i in (user.managed_property_ids or [])]


def org_scoped(q, model, user):
    """Restrict a query to the user's organization and, for agents, their managed properties."""
    if user.organization_id:
        q = q.filter(model.organization_id == user.organization_id)
    elif not user.is_super_admin:
        # Nothing is visible without an organization.
        return q.filter(model.id == -1)
    if is_agent(user):
        column = model.id if model.__tablename__ == "properties" else getattr(model, "property_id", None)
        if column is not None:
            q = q.filter(column.in_(managed_ids(user) or [-1]))
    return q


def scoped_get(db, user, model, obj_id, label: str, *criteria):
    """Resolve an id the caller referenced; 404 unless it is visible to them."""
    obj = (
        org_scoped(db.query(model), model, user)
        .filter(model.id == obj_id, *criteria)
        .first()
    )
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


def require_org(user) -> int:
    if not user.organization_id:
        raise HTTPException(400, "Organization required")
    return user.organization_id


def forbid_agents(user, action: str) -> None:
    if is_agent(user):
        raise HTTPException(403, f"Agents cannot {action}")
