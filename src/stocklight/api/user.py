"""Current user and admin checks from proxy headers or environment."""

from dataclasses import dataclass

from fastapi import HTTPException, Request

from stocklight.config import get_settings

# created_by for tickets opened by hand without a known email
ANONYMOUS_AUTHOR = "anonymous"


@dataclass
class CurrentUser:
    """Current user information."""

    email: str | None
    name: str | None
    is_admin: bool = False
    # Home warehouse; non-admins only see stock held there
    warehouse_id: int | None = None

    @property
    def display_name(self) -> str:
        """Name, else the local part of the email, else 'Unknown'."""
        if self.name:
            return self.name
        if self.email:
            return self.email.split("@")[0]
        return "Unknown"

    @property
    def is_authenticated(self) -> bool:
        return bool(self.email)

    @property
    def ticket_author(self) -> str:
        """Value stored in ``created_by`` for tickets this user opens."""
        return self.email or ANONYMOUS_AUTHOR


def get_current_user(request: Request) -> CurrentUser:
    """Extract current user from request headers or environment.

    The auth proxy sets X-Forwarded-Email and X-Forwarded-Preferred-Username.
    Without them (local development) USER_EMAIL and USER_NAME are used.
    Admins are the emails listed in USER_ADMIN_EMAILS; an empty list makes
    every caller an admin. USER_WAREHOUSE_ASSIGNMENTS maps emails to their
    home warehouse.
    """
    settings = get_settings().user
    email = request.headers.get("X-Forwarded-Email")
    name = request.headers.get("X-Forwarded-Preferred-Username")

    if not email:
        email = settings.email or None
        name = name or settings.name or None

    admins = {e.lower() for e in settings.admin_emails}
    is_admin = not admins or (email is not None and email.lower() in admins)

    assignments = {k.lower(): v for k, v in settings.warehouse_assignments.items()}
    warehouse_id = assignments.get(email.lower()) if email else None
    return CurrentUser(email=email, name=name, is_admin=is_admin, warehouse_id=warehouse_id)


def require_admin(request: Request) -> CurrentUser:
    """FastAPI dependency rejecting non-admin callers with 403."""
    user = get_current_user(request)
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admins only")
    return user
