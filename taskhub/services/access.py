from __future__ import annotations

from collections.abc import Callable
from typing import Any

from loguru import logger
from sqlalchemy.sql.elements import ColumnElement

from taskhub.domain.policy import (
    POLICY_TABLE,
    Actor,
    DenyReason,
    Operation,
    PolicyDecision,
    ResourceScope,
    ResourceType,
    ScopeRequirement,
    evaluate,
    required_scope,
)


class AccessDeniedError(Exception):
    def __init__(
        self,
        decision: PolicyDecision,
        *,
        operation: Operation | None = None,
        resource_type: ResourceType | None = None,
        message: str | None = None,
    ) -> None:
        self.decision = decision
        self.operation = operation
        self.resource_type = resource_type
        super().__init__(message or _default_message(decision, operation, resource_type))

    @property
    def reason(self) -> DenyReason:
        return self.decision.reason or DenyReason.INSUFFICIENT_PERMISSIONS


def _default_message(
    decision: PolicyDecision,
    operation: Operation | None,
    resource_type: ResourceType | None,
) -> str:
    if decision.reason == DenyReason.AUTHENTICATION_REQUIRED:
        return "Authentication required"
    if operation is None or resource_type is None:
        return "Access denied"
    return f"Access denied: cannot {operation.value} {resource_type.value}"


def authorize(
    actor: Actor | None,
    operation: Operation,
    resource_type: ResourceType,
    scope: ResourceScope,
) -> None:
    decision = evaluate(actor, operation, resource_type, scope)
    if decision.allowed:
        return
    logger.warning(
        "Denied {} {} for user={} role={} company={}: {}",
        operation.value,
        resource_type.value,
        None if actor is None else actor.user_id,
        None if actor is None else actor.role.value,
        None if actor is None else actor.company_id,
        decision.reason,
    )
    raise AccessDeniedError(decision, operation=operation, resource_type=resource_type)


def scope_conditions(
    actor: Actor,
    operation: Operation,
    resource_type: ResourceType,
    *,
    company_column: Any,
    department_column: Any | None = None,
    owner_column: Any | None = None,
    assigned_clause: Callable[[str], ColumnElement[bool]] | None = None,
) -> list[ColumnElement[bool]]:
    """Translate the actor's scope requirement into SQL where-clauses.

    List endpoints use this so out-of-scope rows are never fetched; forbidden
    cells raise ``AccessDeniedError`` with the same reason ``evaluate`` gives.
    """
    requirement = required_scope(actor, operation, resource_type)
    if requirement in {ScopeRequirement.FORBIDDEN, ScopeRequirement.SYSTEM_ONLY}:
        decision = PolicyDecision.deny(POLICY_TABLE[resource_type].forbidden_reason)
        logger.warning(
            "Denied {} {} listing for user={} role={}",
            operation.value,
            resource_type.value,
            actor.user_id,
            actor.role.value,
        )
        raise AccessDeniedError(decision, operation=operation, resource_type=resource_type)

    conditions: list[ColumnElement[bool]] = [company_column == actor.company_id]
    if requirement == ScopeRequirement.DEPARTMENT:
        if department_column is None:
            raise ValueError(f"{resource_type.value} listing needs a department column")
        conditions.append(department_column == actor.department_id)
    if requirement in {ScopeRequirement.SELF, ScopeRequirement.AUTHORED_ASSIGNED}:
        if owner_column is None:
            raise ValueError(f"{resource_type.value} listing needs an owner column")
        conditions.append(owner_column == actor.user_id)
    if requirement in {ScopeRequirement.ASSIGNED, ScopeRequirement.AUTHORED_ASSIGNED}:
        if assigned_clause is None:
            raise ValueError(f"{resource_type.value} listing needs an assignment clause")
        conditions.append(assigned_clause(actor.user_id))
    return conditions
