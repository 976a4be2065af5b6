from __future__ import annotations

from typing import Iterable

from incidentdesk.core.errors import ForbiddenError


ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"
ROLE_ONCALL = "oncall"
ROLES = (ROLE_ADMIN, ROLE_MEMBER, ROLE_ONCALL)

ACTION_INCIDENTS_READ = "incidents:read"
ACTION_INCIDENTS_WRITE = "incidents:write"
ACTION_ORG_MANAGE = "org:manage"
ACTION_USERS_MANAGE = "users:manage"
ACTION_BILLING_MANAGE = "billing:manage"
ACTION_AUDIT_READ = "audit:read"

# Closed action registry: every known action names the roles that may perform it.
ACTION_RULES: dict[str, frozenset[str]] = {
    ACTION_INCIDENTS_READ: frozenset({ROLE_MEMBER, ROLE_ONCALL}),
    ACTION_INCIDENTS_WRITE: frozenset({ROLE_MEMBER, ROLE_ONCALL}),
    ACTION_ORG_MANAGE: frozenset({ROLE_ADMIN}),
    ACTION_USERS_MANAGE: frozenset({ROLE_ADMIN}),
    ACTION_BILLING_MANAGE: frozenset({ROLE_ADMIN}),
    ACTION_AUDIT_READ: frozenset({ROLE_ADMIN}),
}


def normalize_roles(roles: Iterable[str]) -> list[str]:
    # Enforce a stable, lowercased role vocabulary before persisting role sets.
    normalized: list[str] = []
    for role in roles:
        value = str(role).strip().lower()
        if value not in ROLES:
            raise ValueError(f"Unsupported role: {role}")
        if value not in normalized:
            normalized.append(value)
    return normalized


def can_access(roles: Iterable[str], action: str) -> bool:
    # Admins pass every check, including actions this registry does not know.
    held = set(roles or ())
    if ROLE_ADMIN in held:
        return True
    required = ACTION_RULES.get(action)
    if required is None:
        return False
    return bool(held & required)


def require_access(roles: Iterable[str], action: str) -> None:
    if not can_access(roles, action):
        raise ForbiddenError(
            "Insufficient permissions",
            details={"action": action},
        )
