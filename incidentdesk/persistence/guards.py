from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class OrgPredicateError(RuntimeError):
    # Raised when a repository query is about to run without an organization scope.
    message: str


def require_org_id(org_id: str | None) -> str:
    if not org_id:
        raise OrgPredicateError("Organization predicate required but org_id is missing")
    return org_id


def org_predicate(model, org_id: str | None) -> object:
    # Build org predicates through a single helper so every scoped query goes through the guard.
    return model.org_id == require_org_id(org_id)
