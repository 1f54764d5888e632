"""Organization profile and team membership: invitations and join codes."""
import hashlib
import logging
import secrets
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from hnvpm.database import get_db
from hnvpm.auth.dependencies import (
    hash_password,
    get_current_user,
    require_active_access,
    require_roles,
    settings,
)
from hnvpm.auth.models import UserAccount, SUPER_ADMIN, LANDLORD, MANAGER, AGENT
from hnvpm.auth.routes import token_response
from hnvpm.auth.schemas import TokenResponse
from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.organizations.schemas import InviteRequest, AcceptInvitationRequest, JoinRequest
from hnvpm.modules.properties.models import Property
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.utils.audit_service import record_audit
from hnvpm.utils.email_service import send_invitation_email
from hnvpm.utils.event_service import emit_outbox_event
from hnvpm.utils.payload import PHONE_RE, to_dict
from hnvpm.utils.scoping import require_org, scoped_get

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/organization", tags=["Organization"])

OWNER_ROLES = [LANDLORD, SUPER_ADMIN]
INVITABLE_ROLES = (LANDLORD, MANAGER, AGENT)
MEMBER_HIDDEN = {"password_hash", "email_verification_token", "invitation_token"}


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _member_dict(member: UserAccount) -> dict:
    return to_dict(member, exclude=MEMBER_HIDDEN)


def _own_org(db: Session, user: UserAccount) -> Organization:
    org = db.get(Organization, require_org(user))
    if not org:
        raise HTTPException(404, "Organization not found")
    return org


def _ensure_new_email(db: Session, email: str) -> None:
    if db.query(UserAccount).filter(UserAccount.email == email).first():
        raise HTTPException(400, "User with this email already exists")


@router.get("")
def get_organization(db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    org = _own_org(db, user)
    data = to_dict(org, exclude={"invite_code"})
    members = db.query(UserAccount).filter(UserAccount.organization_id == org.id).order_by(UserAccount.id).all()
    data["members"] = [_member_dict(m) for m in members]
    return data


@router.post("/members/invite", status_code=201, dependencies=[Depends(require_active_access)])
def invite_member(
    req: InviteRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: UserAccount = Depends(require_roles(OWNER_ROLES)),
):
    org = _own_org(db, user)
    email = req.email.lower()
    if req.role not in INVITABLE_ROLES:
        raise HTTPException(422, f"role must be one of: {', '.join(INVITABLE_ROLES)}")
    _ensure_new_email(db, email)
    for prop_id in req.managed_property_ids:
        scoped_get(db, user, Property, prop_id, "Property")
    subscription_service.ensure_within_limit(db, org.id, "users")

    token = secrets.token_hex(32)
    member = UserAccount(
        email=email,
        # Unusable until the invitation is accepted.
        password_hash=hash_password(secrets.token_hex(32)),
        first_name=req.first_name.strip(),
        last_name=req.last_name.strip(),
        role=req.role,
        status="pending",
        organization_id=org.id,
        managed_property_ids=req.managed_property_ids,
        invitation_token=_hash_token(token),
        invitation_expires_at=datetime.utcnow() + timedelta(days=settings.INVITATION_EXPIRE_DAYS),
    )
    db.add(member)
    db.flush()
    record_audit(db, user, "member_invited", "user", member.id, {"email": email, "role": member.role}, request)
    emit_outbox_event(db, org.id, "member.invited", "user", member.id, {"role": member.role})
    db.commit()
    db.refresh(member)
    subscription_service.update_usage(db, org.id, "users", 1)

    send_invitation_email(member.email, member.first_name, user.full_name, org.name, token)
    logger.info("User %s invited %s to organization %s", user.id, email, org.id)
    return _member_dict(member)


@router.post("/accept-invitation", response_model=TokenResponse)
def accept_invitation(req: AcceptInvitationRequest, response: Response, db: Session = Depends(get_db)):
    member = (
        db.query(UserAccount)
        .filter(UserAccount.invitation_token == _hash_token(req.token), UserAccount.status == "pending")
        .first()
    )
    if not member or not member.invitation_expires_at or member.invitation_expires_at < datetime.utcnow():
        raise HTTPException(400, "Invalid or expired invitation")
    member.password_hash = hash_password(req.password)
    member.status = "active"
    member.is_email_verified = True
    member.invitation_token = None
    member.invitation_expires_at = None
    member.last_login_at = datetime.utcnow()
    db.commit()
    db.refresh(member)
    return token_response(member, response)


@router.get("/invite-code")
def get_invite_code(db: Session = Depends(get_db), user: UserAccount = Depends(require_roles(OWNER_ROLES))):
    org = _own_org(db, user)
    if not org.invite_code:
        org.invite_code = secrets.token_hex(4).upper()
        db.commit()
    return {"code": org.invite_code, "organization_name": org.name}


@router.post("/invite-code/regenerate", dependencies=[Depends(require_active_access)])
def regenerate_invite_code(
    request: Request,
    db: Session = Depends(get_db),
    user: UserAccount = Depends(require_roles(OWNER_ROLES)),
):
    org = _own_org(db, user)
    org.invite_code = secrets.token_hex(4).upper()
    record_audit(db, user, "invite_code_regenerated", "organization", org.id, None, request)
    db.commit()
    return {"code": org.invite_code, "organization_name": org.name}


@router.post("/join", response_model=TokenResponse, status_code=201)
def join_with_code(req: JoinRequest, response: Response, db: Session = Depends(get_db)):
    org = (
        db.query(Organization)
        .filter(Organization.invite_code == req.code.strip().upper(), Organization.status == "active")
        .first()
    )
    if not org:
        raise HTTPException(404, "Invalid organization code")
    if req.phone and not PHONE_RE.match(req.phone):
        raise HTTPException(422, "Please enter a valid phone number")
    email = req.email.lower()
    _ensure_new_email(db, email)
    subscription_service.ensure_within_limit(db, org.id, "users")

    member = UserAccount(
        email=email,
        password_hash=hash_password(req.password),
        first_name=req.first_name.strip(),
        last_name=req.last_name.strip(),
        phone=req.phone,
        role=AGENT,
        status="active",
        is_email_verified=True,
        organization_id=org.id,
        managed_property_ids=[],
        last_login_at=datetime.utcnow(),
    )
    db.add(member)
    db.flush()
    emit_outbox_event(db, org.id, "member.joined", "user", member.id, {"role": member.role})
    db.commit()
    db.refresh(member)
    subscription_service.update_usage(db, org.id, "users", 1)
    logger.info("User %s joined organization %s with its invite code", member.id, org.id)
    return token_response(member, response)


@router.delete("/members/{member_id}", dependencies=[Depends(require_active_access)])
def remove_member(
    member_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: UserAccount = Depends(require_roles(OWNER_ROLES)),
):
    org = _own_org(db, user)
    member = (
        db.query(UserAccount)
        .filter(UserAccount.id == member_id, UserAccount.organization_id == org.id)
        .first()
    )
    if not member:
        raise HTTPException(404, "Member not found")
    if member.id in (user.id, org.owner_id) or member.is_super_admin:
        raise HTTPException(400, "This member cannot be removed")
    name = member.full_name
    record_audit(db, user, "member_removed", "user", member.id, {"email": member.email}, request)
    db.delete(member)
    db.commit()
    subscription_service.update_usage(db, org.id, "users", -1)
    return {"message": f"{name} removed from the organization"}
