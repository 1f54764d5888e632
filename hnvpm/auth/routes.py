"""Auth API routes – register, login, email verification."""
import logging
import secrets
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from hnvpm.database import get_db
from hnvpm.auth.models import UserAccount, LANDLORD
from hnvpm.auth.schemas import LoginRequest, RegisterRequest, PasswordUpdate, TokenResponse, UserResponse
from hnvpm.auth.dependencies import (
    hash_password,
    verify_password,
    create_access_token,
    get_current_user,
    rate_limit_by_user,
    settings,
)
from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.subscriptions.models import Plan
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.utils.email_service import send_verification_email
from hnvpm.utils.event_service import emit_outbox_event

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def token_response(user: UserAccount, response: Response) -> TokenResponse:
    token = create_access_token({"sub": str(user.id), "role": user.role})
    response.set_cookie(
        "access_token", token, httponly=True,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60, samesite="lax",
    )
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


def _default_trial_plan(db: Session):
    return (
        db.query(Plan)
        .filter(Plan.is_active == True, Plan.is_public == True)
        .order_by(Plan.price.asc(), Plan.sort_order.asc(), Plan.id.asc())
        .first()
    )


@router.post("/register", response_model=TokenResponse, status_code=201)
def register(req: RegisterRequest, response: Response, db: Session = Depends(get_db)):
    email = req.email.lower()
    if db.query(UserAccount).filter(UserAccount.email == email).first():
        raise HTTPException(status_code=400, detail="User with this email already exists")

    org = Organization(
        name=(req.organization_name or f"{req.first_name} {req.last_name}'s Organization")[:100],
        email=email,
        phone=req.phone,
        status="active",
    )
    db.add(org)
    db.flush()

    user = UserAccount(
        email=email,
        password_hash=hash_password(req.password),
        first_name=req.first_name.strip(),
        last_name=req.last_name.strip(),
        phone=req.phone,
        role=LANDLORD,
        status="active",
        organization_id=org.id,
        email_verification_token=secrets.token_hex(32),
    )
    db.add(user)
    db.flush()
    org.owner_id = user.id
    emit_outbox_event(db, org.id, "organization.registered", "organization", org.id, {"owner_id": user.id})
    db.commit()
    db.refresh(user)

    plan = _default_trial_plan(db)
    if plan:
        subscription_service.create_trial_subscription(db, org.id, plan.id)
        subscription_service.update_usage(db, org.id, "users", 1)
    else:
        logger.warning("No public plan available; org %s registered without a trial", org.id)

    send_verification_email(user.email, user.first_name, user.email_verification_token)
    logger.info("Registered user %s with organization %s", user.id, org.id)
    return token_response(user, response)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, response: Response, db: Session = Depends(get_db)):
    user = db.query(UserAccount).filter(UserAccount.email == req.email.lower()).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Incorrect email or password")
    if user.status == "suspended":
        raise HTTPException(status_code=401, detail="Your account has been suspended. Please contact support.")
    if user.status == "pending":
        raise HTTPException(status_code=401, detail="Please accept your invitation before signing in.")
    user.last_login_at = datetime.utcnow()
    db.commit()
    db.refresh(user)
    return token_response(user, response)


@router.get("/me", response_model=UserResponse)
def me(user: UserAccount = Depends(get_current_user)):
    return user


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie("access_token")
    return {"message": "Logged out successfully"}


@router.get("/verify-email/{token}")
def verify_email(token: str, db: Session = Depends(get_db)):
    user = db.query(UserAccount).filter(UserAccount.email_verification_token == token).first()
    if not user:
        raise HTTPException(status_code=400, detail="Invalid verification token")
    user.is_email_verified = True
    user.email_verification_token = None
    db.commit()
    return {"message": "Email verified successfully"}


@router.post("/resend-verification")
def resend_verification(
    db: Session = Depends(get_db),
    user: UserAccount = Depends(rate_limit_by_user(max_requests=5, window_seconds=15 * 60)),
):
    if user.is_email_verified:
        raise HTTPException(status_code=400, detail="Email is already verified")
    user.email_verification_token = secrets.token_hex(32)
    db.commit()
    send_verification_email(user.email, user.first_name, user.email_verification_token)
    return {"message": "Verification email sent"}


@router.put("/password", response_model=TokenResponse)
def update_password(
    req: PasswordUpdate,
    response: Response,
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    if not verify_password(req.current_password, user.password_hash):
        raise HTTPException(status_code=401, detail="Your current password is wrong.")
    if req.password != req.password_confirm:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    user.password_hash = hash_password(req.password)
    db.commit()
    db.refresh(user)
    return token_response(user, response)
