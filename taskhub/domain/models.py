from __future__ import annotations

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, EmailStr
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from taskhub.domain.policy import Role


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    company_id: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    company_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Company(SQLModel, table=True):
    __tablename__ = "companies"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    phone: str | None = None
    address: str | None = None
    industry: str | None = None
    size: str | None = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class Department(SQLModel, table=True):
    __tablename__ = "departments"
    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_departments_company_name"),
        UniqueConstraint("company_id", "id", name="uq_departments_company_id_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    company_id: str = Field(foreign_key="companies.id", index=True)
    name: str = Field(index=True)
    description: str | None = None
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class User(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("company_id", "id", name="uq_users_company_id_id"),
        ForeignKeyConstraint(
            ["company_id", "department_id"],
            ["departments.company_id", "departments.id"],
            ondelete="RESTRICT",
        ),
        Index("ix_users_company_department", "company_id", "department_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    company_id: str = Field(foreign_key="companies.id", index=True)
    department_id: str = Field(index=True)
    first_name: str
    last_name: str
    email: str = Field(index=True, unique=True)
    position: str | None = None
    role: Role = Field(default=Role.USER, index=True)
    password_hash: str
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class DepartmentManager(SQLModel, table=True):
    __tablename__ = "department_managers"
    __table_args__ = (
        ForeignKeyConstraint(
            ["company_id", "department_id"],
            ["departments.company_id", "departments.id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["company_id", "user_id"],
            ["users.company_id", "users.id"],
            ondelete="CASCADE",
        ),
    )

    company_id: str = Field(index=True)
    department_id: str = Field(primary_key=True)
    user_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc)


class TaskType(StrEnum):
    ASSIGNED = "AssignedTask"
    PROJECT = "ProjectTask"


class TaskStatus(StrEnum):
    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    PENDING = "Pending"


class TaskPriority(StrEnum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class Task(SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("company_id", "id", name="uq_tasks_company_id_id"),
        ForeignKeyConstraint(
            ["company_id", "department_id"],
            ["departments.company_id", "departments.id"],
            ondelete="RESTRICT",
        ),
        Index("ix_tasks_company_department_type", "company_id", "department_id", "task_type"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    company_id: str = Field(foreign_key="companies.id", index=True)
    department_id: str = Field(index=True)
    task_type: TaskType = Field(index=True)
    title: str
    description: str
    location: str
    due_date: date
    status: TaskStatus = Field(default=TaskStatus.TODO, index=True)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, index=True)
    client_name: str | None = Field(default=None, index=True)
    created_by: str = Field(index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class TaskAssignment(SQLModel, table=True):
    __tablename__ = "task_assignments"
    __table_args__ = (
        ForeignKeyConstraint(
            ["company_id", "task_id"],
            ["tasks.company_id", "tasks.id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["company_id", "user_id"],
            ["users.company_id", "users.id"],
            ondelete="CASCADE",
        ),
        Index("ix_task_assignments_company_user", "company_id", "user_id"),
    )

    company_id: str = Field(index=True)
    task_id: str = Field(primary_key=True)
    user_id: str = Field(primary_key=True)
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class RoutineTask(SQLModel, table=True):
    __tablename__ = "routine_tasks"
    __table_args__ = (
        ForeignKeyConstraint(
            ["company_id", "department_id"],
            ["departments.company_id", "departments.id"],
            ondelete="RESTRICT",
        ),
        Index("ix_routine_tasks_company_department", "company_id", "department_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    company_id: str = Field(foreign_key="companies.id", index=True)
    department_id: str = Field(index=True)
    performed_by: str = Field(index=True)
    performed_on: date
    performed_tasks: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    progress: int = Field(default=0)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class TaskActivity(SQLModel, table=True):
    __tablename__ = "task_activities"
    __table_args__ = (
        ForeignKeyConstraint(
            ["company_id", "task_id"],
            ["tasks.company_id", "tasks.id"],
            ondelete="CASCADE",
        ),
        Index("ix_task_activities_company_task", "company_id", "task_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    company_id: str = Field(index=True)
    task_id: str = Field(index=True)
    performed_by: str = Field(index=True)
    description: str
    status_change: TaskStatus | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class NotificationType(StrEnum):
    TASK_ASSIGNMENT = "TaskAssignment"
    STATUS_CHANGE = "StatusChange"
    TASK_UPDATE = "TaskUpdate"


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"
    __table_args__ = (
        ForeignKeyConstraint(
            ["company_id", "user_id"],
            ["users.company_id", "users.id"],
            ondelete="CASCADE",
        ),
        Index("ix_notifications_company_user_read", "company_id", "user_id", "is_read"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    company_id: str = Field(index=True)
    user_id: str = Field(index=True)
    department_id: str | None = Field(default=None, index=True)
    task_id: str | None = Field(default=None, index=True)
    type: NotificationType = Field(index=True)
    message: str
    is_read: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    company_id: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    payload: dict[str, Any] = PydanticField(default_factory=dict)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class RegisterRequest(BaseModel):
    company_name: str = PydanticField(min_length=2, max_length=100)
    company_email: EmailStr
    department_name: str = PydanticField(min_length=2, max_length=50)
    first_name: str = PydanticField(min_length=2, max_length=30)
    last_name: str = PydanticField(min_length=2, max_length=30)
    email: EmailStr
    password: str = PydanticField(min_length=6)


class RegisterRead(BaseModel):
    company_id: str
    department_id: str
    user_id: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: Role


class CompanyUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=2, max_length=100)
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    industry: str | None = None
    size: str | None = None


class CompanyRead(ORMReadModel):
    id: str
    name: str
    email: str
    phone: str | None = None
    address: str | None = None
    industry: str | None = None
    size: str | None = None
    is_active: bool
    created_at: datetime


class DepartmentCreate(BaseModel):
    name: str = PydanticField(min_length=2, max_length=50)
    description: str | None = PydanticField(default=None, max_length=500)


class DepartmentUpdate(BaseModel):
    name: str | None = PydanticField(default=None, min_length=2, max_length=50)
    description: str | None = PydanticField(default=None, max_length=500)
    is_active: bool | None = None


class DepartmentRead(ORMReadModel):
    id: str
    company_id: str
    name: str
    description: str | None = None
    is_active: bool
    created_at: datetime


class UserCreate(BaseModel):
    first_name: str = PydanticField(min_length=2, max_length=30)
    last_name: str = PydanticField(min_length=2, max_length=30)
    email: EmailStr
    password: str = PydanticField(min_length=6)
    position: str | None = PydanticField(default=None, max_length=50)
    role: Role = Role.USER
    department_id: str


class UserUpdate(BaseModel):
    first_name: str | None = PydanticField(default=None, min_length=2, max_length=30)
    last_name: str | None = PydanticField(default=None, min_length=2, max_length=30)
    position: str | None = PydanticField(default=None, max_length=50)
    password: str | None = PydanticField(default=None, min_length=6)
    role: Role | None = None
    department_id: str | None = None
    is_active: bool | None = None


class UserRead(ORMReadModel):
    id: str
    company_id: str
    department_id: str
    first_name: str
    last_name: str
    email: str
    position: str | None = None
    role: Role
    is_active: bool
    created_at: datetime


class AssignedTaskCreate(BaseModel):
    title: str = PydanticField(min_length=2, max_length=100)
    description: str = PydanticField(min_length=2, max_length=500)
    location: str = PydanticField(min_length=2, max_length=100)
    due_date: date
    priority: TaskPriority = TaskPriority.MEDIUM
    department_id: str
    assigned_to: list[str] = PydanticField(min_length=1)


class AssignedTaskUpdate(BaseModel):
    title: str | None = PydanticField(default=None, min_length=2, max_length=100)
    description: str | None = PydanticField(default=None, min_length=2, max_length=500)
    location: str | None = PydanticField(default=None, min_length=2, max_length=100)
    due_date: date | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    assigned_to: list[str] | None = PydanticField(default=None, min_length=1)


class ProjectTaskCreate(BaseModel):
    title: str = PydanticField(min_length=2, max_length=100)
    description: str = PydanticField(min_length=2, max_length=500)
    location: str = PydanticField(min_length=2, max_length=100)
    due_date: date
    priority: TaskPriority = TaskPriority.MEDIUM
    department_id: str
    client_name: str | None = PydanticField(default=None, max_length=100)


class ProjectTaskUpdate(BaseModel):
    title: str | None = PydanticField(default=None, min_length=2, max_length=100)
    description: str | None = PydanticField(default=None, min_length=2, max_length=500)
    location: str | None = PydanticField(default=None, min_length=2, max_length=100)
    due_date: date | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    client_name: str | None = PydanticField(default=None, max_length=100)


class TaskRead(ORMReadModel):
    id: str
    company_id: str
    department_id: str
    task_type: TaskType
    title: str
    description: str
    location: str
    due_date: date
    status: TaskStatus
    priority: TaskPriority
    client_name: str | None = None
    created_by: str
    created_at: datetime
    assigned_to: list[str] = PydanticField(default_factory=list)
    completed_by: list[str] = PydanticField(default_factory=list)


class PerformedTaskItem(BaseModel):
    description: str = PydanticField(min_length=1)
    is_completed: bool = False


class RoutineTaskCreate(BaseModel):
    performed_on: date
    department_id: str | None = None
    performed_tasks: list[PerformedTaskItem] = PydanticField(default_factory=list)


class RoutineTaskUpdate(BaseModel):
    performed_on: date | None = None
    performed_tasks: list[PerformedTaskItem] | None = None


class RoutineTaskRead(ORMReadModel):
    id: str
    company_id: str
    department_id: str
    performed_by: str
    performed_on: date
    performed_tasks: list[PerformedTaskItem]
    progress: int
    created_at: datetime


class TaskActivityCreate(BaseModel):
    task_id: str
    description: str = PydanticField(min_length=2, max_length=500)
    status_change: TaskStatus | None = None


class TaskActivityUpdate(BaseModel):
    description: str | None = PydanticField(default=None, min_length=2, max_length=500)


class TaskActivityRead(ORMReadModel):
    id: str
    company_id: str
    task_id: str
    performed_by: str
    description: str
    status_change: TaskStatus | None = None
    created_at: datetime


class NotificationRead(ORMReadModel):
    id: str
    company_id: str
    user_id: str
    department_id: str | None = None
    task_id: str | None = None
    type: NotificationType
    message: str
    is_read: bool
    created_at: datetime


class UnreadCountRead(BaseModel):
    unread: int


class MarkAllReadResult(BaseModel):
    updated: int


class DeleteAllResult(BaseModel):
    deleted: int


class DepartmentManagerAdd(BaseModel):
    manager_id: str


class DepartmentManagersRead(BaseModel):
    department_id: str
    manager_ids: list[str]


class UserCountsRead(BaseModel):
    total: int
    active: int
    by_role: dict[str, int]


class CompanyStatsRead(BaseModel):
    company_id: str
    name: str
    is_active: bool
    active_departments: int
    users: UserCountsRead


class DepartmentStatsRead(BaseModel):
    department_id: str
    name: str
    is_active: bool
    managers_count: int
    users: UserCountsRead


class UserStatsRead(UserCountsRead):
    by_department: dict[str, int]


class TaskStatsRead(BaseModel):
    total: int
    completed: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    monthly: dict[str, int]


class ClientTaskSummaryRead(BaseModel):
    client_name: str | None
    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    last_task_at: datetime


class RoutineTaskStatsRead(BaseModel):
    total: int
    completed: int
    avg_progress: int
    by_day: dict[str, int]
    by_user: dict[str, int]


class TaskActivityStatsRead(BaseModel):
    total: int
    by_status_change: dict[str, int]
    by_user: dict[str, int]


class NotificationStatsRead(BaseModel):
    total: int
    unread: int
    by_type: dict[str, int]
