from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g

from app.wellness.errors import ApiError
from app.wellness.models import Permission, Role, User

# Seeded by scripts/init_db.py; the admin role gets all of them.
PERMISSIONS: dict[str, str] = {
    "company.portal": "Company: portal access",
    "tasks.manage": "Tasks: create/edit/delete",
    "proofs.review": "Proofs: view and review",
    "companies.manage": "Companies: manage accounts",
    "admins.manage": "Administrators: manage",
    "events.manage": "Events: manage events and registrations",
    "registrations.checkin": "Registrations: QR check-in",
    "polls.manage": "Polls: manage subjects and polls",
    "audit.view": "Audit trail: view",
}

COMPANY_PERMISSIONS = ("company.portal",)


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def current_user() -> User | None:
    return getattr(g, "current_user", None)


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user = current_user()
        if not user or not user.is_active:
            raise ApiError(401, "Authentication required")
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = current_user()
            # Unauthenticated → 401
            if not user or not user.is_active:
                raise ApiError(401, "Authentication required")
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403, description="Admin access required")
            return fn(*args, **kwargs)

        return wrapped

    return decorator


ROLE_NAMES = {"admin": "Administrator", "company": "Company"}


def role_permission_keys(role_key: str) -> tuple[str, ...]:
    if role_key == "admin":
        return tuple(PERMISSIONS)
    if role_key == "company":
        return COMPANY_PERMISSIONS
    return ()


def ensure_permission(s, key: str) -> Permission:
    perm = s.query(Permission).filter(Permission.key == key).one_or_none()
    if perm is None:
        perm = Permission(key=key, name=PERMISSIONS.get(key, key))
        s.add(perm)
        s.flush()
    return perm


def ensure_role(s, key: str) -> Role:
    """Fetch a seeded role, creating it (and its permission grants) on first use."""
    role = s.query(Role).filter(Role.key == key).one_or_none()
    if role is None:
        role = Role(key=key, name=ROLE_NAMES.get(key, key.title()))
        s.add(role)
        s.flush()
    for perm_key in role_permission_keys(key):
        perm = ensure_permission(s, perm_key)
        if perm not in role.permissions:
            role.permissions.append(perm)
    return role
