"""View-only access rules for unverified or unsubscribed accounts."""
from datetime import datetime, timedelta
from typing import Optional

from hnvpm.errors import AccessRestricted

ORG_VIEW_ONLY_PREFIXES = (
    "/api/dashboard",
    "/api/properties",
    "/api/tenants",
    "/api/leases",
    "/api/payments",
    "/api/maintenance",
    "/api/expenses",
    "/api/organization",
)
NO_ORG_VIEW_ONLY_PREFIXES = ("/api/dashboard", "/api/auth")

VERIFY_EMAIL_MESSAGE = (
    "Please verify your email address to restore full functionality. "
    "You can view existing data but cannot add, edit, or delete items."
)
RENEW_MESSAGE = (
    "Your subscription has expired. You can view existing data but cannot add, edit, or delete items. "
    "Please reactivate your subscription to restore full functionality."
)


def email_verification_expired(user, grace_hours: int, now: Optional[datetime] = None) -> bool:
    if user.is_email_verified or not user.created_at:
        return False
    return (now or datetime.utcnow()) > user.created_at + timedelta(hours=grace_hours)


def _is_view_only_request(method: str, path: str, prefixes: tuple) -> bool:
    return method.upper() == "GET" and any(path.startswith(p) for p in prefixes)


def evaluate_access(
    user,
    method: str,
    path: str,
    subscription_active: Optional[bool],
    grace_hours: int,
    now: Optional[datetime] = None,
) -> Optional[AccessRestricted]:
    """Return the restriction that applies to this request, or None when it may proceed.

    ``subscription_active`` is None when the organization has no subscription
    record at all; such organizations are not restricted.
    """
    if user.is_super_admin:
        return None

    email_expired = email_verification_expired(user, grace_hours, now)

    if user.organization_id:
        subscription_inactive = subscription_active is False
        if not (email_expired or subscription_inactive):
            return None
        if _is_view_only_request(method, path, ORG_VIEW_ONLY_PREFIXES):
            return None
        if email_expired:
            return AccessRestricted(VERIFY_EMAIL_MESSAGE, "verify_email", "/dashboard/settings")
        return AccessRestricted(RENEW_MESSAGE, "renew_subscription", "/billing")

    if email_expired and not _is_view_only_request(method, path, NO_ORG_VIEW_ONLY_PREFIXES):
        return AccessRestricted(
            "Please verify your email address to restore full functionality.",
            "verify_email",
            "/dashboard/settings",
        )
    return None
