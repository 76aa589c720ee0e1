from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum


class Role(StrEnum):
    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    MANAGER = "Manager"
    USER = "User"

    @property
    def is_department_scoped(self) -> bool:
        return self in {Role.ADMIN, Role.MANAGER}


class ResourceType(StrEnum):
    COMPANY = "Company"
    DEPARTMENT = "Department"
    USER = "User"
    ASSIGNED_TASK = "AssignedTask"
    PROJECT_TASK = "ProjectTask"
    ROUTINE_TASK = "RoutineTask"
    TASK_ACTIVITY = "TaskActivity"
    NOTIFICATION = "Notification"


class Operation(StrEnum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class DenyReason(StrEnum):
    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    DEPARTMENT_ACCESS_DENIED = "DEPARTMENT_ACCESS_DENIED"
    USER_ACCESS_DENIED = "USER_ACCESS_DENIED"
    TASK_ACCESS_DENIED = "TASK_ACCESS_DENIED"
    TASK_ACTIVITY_ACCESS_DENIED = "TASK_ACTIVITY_ACCESS_DENIED"
    COMPANY_ACCESS_DENIED = "COMPANY_ACCESS_DENIED"
    NOTIFICATION_ACCESS_DENIED = "NOTIFICATION_ACCESS_DENIED"


class ScopeRequirement(StrEnum):
    COMPANY = "company"
    DEPARTMENT = "department"
    SELF = "self"
    ASSIGNED = "assigned"
    AUTHORED_ASSIGNED = "authored_assigned"
    FORBIDDEN = "forbidden"
    SYSTEM_ONLY = "system_only"


class PolicyContractError(Exception):
    """Raised when a caller hands the evaluator a scope that cannot be judged.

    This is an integration bug, not an access denial, and must never be
    translated into a user-facing 403.
    """


@dataclass(frozen=True)
class Actor:
    role: Role
    company_id: str
    department_id: str
    user_id: str

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN


@dataclass(frozen=True)
class SystemPrincipal:
    """Trusted in-process caller allowed to emit system notifications."""

    name: str = "system"


SYSTEM_PRINCIPAL = SystemPrincipal()


@dataclass(frozen=True)
class ResourceScope:
    company_id: str | None = None
    department_id: str | None = None
    owner_id: str | None = None
    assigned_user_ids: frozenset[str] | None = None

    @classmethod
    def build(
        cls,
        *,
        company_id: str | None = None,
        department_id: str | None = None,
        owner_id: str | None = None,
        assigned_user_ids: Iterable[str] | None = None,
    ) -> ResourceScope:
        return cls(
            company_id=company_id,
            department_id=department_id,
            owner_id=owner_id,
            assigned_user_ids=None if assigned_user_ids is None else frozenset(assigned_user_ids),
        )


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def allow(cls) -> PolicyDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> PolicyDecision:
        return cls(allowed=False, reason=reason)


@dataclass(frozen=True)
class ResourcePolicy:
    forbidden_reason: DenyReason
    scope_reason: DenyReason
    # operation -> (department-scoped role requirement, User requirement)
    rules: dict[Operation, tuple[ScopeRequirement, ScopeRequirement]] = field(default_factory=dict)


_C = ScopeRequirement.COMPANY
_D = ScopeRequirement.DEPARTMENT
_S = ScopeRequirement.SELF
_A = ScopeRequirement.ASSIGNED
_AA = ScopeRequirement.AUTHORED_ASSIGNED
_F = ScopeRequirement.FORBIDDEN
_SYS = ScopeRequirement.SYSTEM_ONLY

_TASK_MANAGED_BY_DEPARTMENT = {
    Operation.CREATE: (_D, _F),
    Operation.UPDATE: (_D, _F),
    Operation.DELETE: (_D, _F),
}

POLICY_TABLE: dict[ResourceType, ResourcePolicy] = {
    ResourceType.COMPANY: ResourcePolicy(
        forbidden_reason=DenyReason.INSUFFICIENT_PERMISSIONS,
        scope_reason=DenyReason.COMPANY_ACCESS_DENIED,
        rules={
            Operation.CREATE: (_F, _F),
            Operation.READ: (_C, _C),
            Operation.UPDATE: (_F, _F),
            Operation.DELETE: (_F, _F),
        },
    ),
    ResourceType.DEPARTMENT: ResourcePolicy(
        forbidden_reason=DenyReason.INSUFFICIENT_PERMISSIONS,
        scope_reason=DenyReason.DEPARTMENT_ACCESS_DENIED,
        rules={
            Operation.CREATE: (_F, _F),
            Operation.READ: (_D, _D),
            Operation.UPDATE: (_F, _F),
            Operation.DELETE: (_F, _F),
        },
    ),
    ResourceType.USER: ResourcePolicy(
        forbidden_reason=DenyReason.INSUFFICIENT_PERMISSIONS,
        scope_reason=DenyReason.USER_ACCESS_DENIED,
        rules={
            Operation.CREATE: (_F, _F),
            Operation.READ: (_D, _S),
            Operation.UPDATE: (_S, _S),
            Operation.DELETE: (_F, _F),
        },
    ),
    ResourceType.ASSIGNED_TASK: ResourcePolicy(
        forbidden_reason=DenyReason.TASK_ACCESS_DENIED,
        scope_reason=DenyReason.TASK_ACCESS_DENIED,
        rules={**_TASK_MANAGED_BY_DEPARTMENT, Operation.READ: (_D, _A)},
    ),
    ResourceType.PROJECT_TASK: ResourcePolicy(
        forbidden_reason=DenyReason.TASK_ACCESS_DENIED,
        scope_reason=DenyReason.TASK_ACCESS_DENIED,
        rules={**_TASK_MANAGED_BY_DEPARTMENT, Operation.READ: (_D, _F)},
    ),
    ResourceType.ROUTINE_TASK: ResourcePolicy(
        forbidden_reason=DenyReason.TASK_ACCESS_DENIED,
        scope_reason=DenyReason.TASK_ACCESS_DENIED,
        rules={operation: (_D, _D) for operation in Operation},
    ),
    ResourceType.TASK_ACTIVITY: ResourcePolicy(
        forbidden_reason=DenyReason.TASK_ACTIVITY_ACCESS_DENIED,
        scope_reason=DenyReason.TASK_ACTIVITY_ACCESS_DENIED,
        rules={
            Operation.CREATE: (_D, _A),
            Operation.READ: (_D, _A),
            Operation.UPDATE: (_D, _AA),
            Operation.DELETE: (_D, _AA),
        },
    ),
    ResourceType.NOTIFICATION: ResourcePolicy(
        forbidden_reason=DenyReason.NOTIFICATION_ACCESS_DENIED,
        scope_reason=DenyReason.NOTIFICATION_ACCESS_DENIED,
        rules={
            Operation.CREATE: (_SYS, _SYS),
            Operation.READ: (_S, _S),
            Operation.UPDATE: (_S, _S),
            Operation.DELETE: (_S, _S),
        },
    ),
}


def _lookup(resource_type: ResourceType, operation: Operation) -> tuple[ResourcePolicy, tuple[ScopeRequirement, ScopeRequirement]]:
    policy = POLICY_TABLE[resource_type]
    return policy, policy.rules[operation]


def required_scope(actor: Actor, operation: Operation, resource_type: ResourceType) -> ScopeRequirement:
    """Scope an actor is confined to for an operation, for building query filters.

    SuperAdmin resolves to COMPANY everywhere except system-only cells.
    """
    _, (department_rule, user_rule) = _lookup(resource_type, operation)
    if department_rule == ScopeRequirement.SYSTEM_ONLY:
        return ScopeRequirement.SYSTEM_ONLY
    if actor.is_super_admin:
        return ScopeRequirement.COMPANY
    return department_rule if actor.role.is_department_scoped else user_rule


def _require(value: object, field_name: str, resource_type: ResourceType, operation: Operation) -> None:
    if value is None:
        raise PolicyContractError(
            f"scope.{field_name} is required to evaluate {operation.value} on {resource_type.value}"
        )


def _scope_matches(
    requirement: ScopeRequirement,
    actor: Actor,
    scope: ResourceScope,
    resource_type: ResourceType,
    operation: Operation,
) -> bool:
    if requirement == ScopeRequirement.COMPANY:
        return True
    if requirement == ScopeRequirement.DEPARTMENT:
        _require(scope.department_id, "department_id", resource_type, operation)
        return scope.department_id == actor.department_id
    if requirement == ScopeRequirement.SELF:
        _require(scope.owner_id, "owner_id", resource_type, operation)
        return scope.owner_id == actor.user_id
    if requirement == ScopeRequirement.ASSIGNED:
        _require(scope.assigned_user_ids, "assigned_user_ids", resource_type, operation)
        return actor.user_id in (scope.assigned_user_ids or frozenset())
    if requirement == ScopeRequirement.AUTHORED_ASSIGNED:
        _require(scope.owner_id, "owner_id", resource_type, operation)
        _require(scope.assigned_user_ids, "assigned_user_ids", resource_type, operation)
        return scope.owner_id == actor.user_id and actor.user_id in (scope.assigned_user_ids or frozenset())
    return False


def evaluate(
    actor: Actor | None,
    operation: Operation,
    resource_type: ResourceType,
    scope: ResourceScope,
) -> PolicyDecision:
    if actor is None:
        return PolicyDecision.deny(DenyReason.AUTHENTICATION_REQUIRED)

    # Tenant boundary is absolute, SuperAdmin included.
    if scope.company_id is not None and scope.company_id != actor.company_id:
        return PolicyDecision.deny(DenyReason.COMPANY_ACCESS_DENIED)

    policy, (department_rule, user_rule) = _lookup(resource_type, operation)
    if department_rule == ScopeRequirement.SYSTEM_ONLY:
        return PolicyDecision.deny(policy.forbidden_reason)

    if actor.is_super_admin:
        return PolicyDecision.allow()

    requirement = department_rule if actor.role.is_department_scoped else user_rule
    if requirement == ScopeRequirement.FORBIDDEN:
        return PolicyDecision.deny(policy.forbidden_reason)
    if _scope_matches(requirement, actor, scope, resource_type, operation):
        return PolicyDecision.allow()
    return PolicyDecision.deny(policy.scope_reason)
