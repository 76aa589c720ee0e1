from __future__ import annotations

import hashlib
import os
from collections import Counter

from loguru import logger
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from taskhub.domain.models import (
    Company,
    CompanyStatsRead,
    CompanyUpdate,
    Department,
    DepartmentCreate,
    DepartmentManager,
    DepartmentManagersRead,
    DepartmentStatsRead,
    DepartmentUpdate,
    RegisterRead,
    RegisterRequest,
    RoutineTask,
    Task,
    User,
    UserCountsRead,
    UserCreate,
    UserStatsRead,
    UserUpdate,
    now_utc,
)
from taskhub.domain.policy import (
    Actor,
    DenyReason,
    Operation,
    PolicyDecision,
    ResourceScope,
    ResourceType,
    Role,
)
from taskhub.infra.db import get_engine
from taskhub.services.access import AccessDeniedError, authorize, scope_conditions

# Fields a non-SuperAdmin may change on their own profile.
SELF_SERVICE_USER_FIELDS = {"first_name", "last_name", "position", "password"}


class IdentityError(Exception):
    pass


class NotFoundError(IdentityError):
    pass


class ConflictError(IdentityError):
    pass


class AuthError(IdentityError):
    pass


class ValidationError(IdentityError):
    pass


def department_scope(department: Department) -> ResourceScope:
    return ResourceScope.build(company_id=department.company_id, department_id=department.id)


def user_scope(user: User) -> ResourceScope:
    return ResourceScope.build(
        company_id=user.company_id,
        department_id=user.department_id,
        owner_id=user.id,
    )


class IdentityService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _hash_password(self, raw_password: str) -> str:
        salt = os.getenv("PASSWORD_SALT", "taskhub-dev-salt")
        return hashlib.sha256(f"{salt}:{raw_password}".encode()).hexdigest()

    def _get_scoped_department(self, session: Session, company_id: str, department_id: str) -> Department | None:
        statement = (
            select(Department)
            .where(Department.company_id == company_id)
            .where(Department.id == department_id)
        )
        return session.exec(statement).first()

    def _get_scoped_user(self, session: Session, company_id: str, user_id: str) -> User | None:
        statement = select(User).where(User.company_id == company_id).where(User.id == user_id)
        return session.exec(statement).first()

    def _normalize_email(self, email: str) -> str:
        return email.strip().lower()

    def register(self, payload: RegisterRequest) -> RegisterRead:
        with self._session() as session:
            company = Company(name=payload.company_name.strip(), email=self._normalize_email(payload.company_email))
            session.add(company)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("company with this name or email already exists") from exc

            department = Department(company_id=company.id, name=payload.department_name.strip())
            session.add(department)
            session.flush()

            user = User(
                company_id=company.id,
                department_id=department.id,
                first_name=payload.first_name.strip(),
                last_name=payload.last_name.strip(),
                email=self._normalize_email(payload.email),
                role=Role.SUPER_ADMIN,
                password_hash=self._hash_password(payload.password),
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("email already registered") from exc

        logger.info("Registered company {} with super admin {}", company.id, user.id)
        return RegisterRead(company_id=company.id, department_id=department.id, user_id=user.id)

    def login(self, email: str, password: str) -> User:
        with self._session() as session:
            user = session.exec(select(User).where(User.email == self._normalize_email(email))).first()
            if user is None or user.password_hash != self._hash_password(password):
                raise AuthError("invalid credentials")
            if not user.is_active:
                raise AuthError("user is inactive")
            company = session.get(Company, user.company_id)
            if company is None or not company.is_active:
                raise AuthError("company is inactive")
            return user

    def resolve_actor(self, user_id: str, company_id: str, *, require_active_company: bool = True) -> Actor:
        """Build the acting identity from the current user row.

        Role and department are read fresh on every request; token claims
        only name the user and the company.
        """
        with self._session() as session:
            user = self._get_scoped_user(session, company_id, user_id)
            if user is None or not user.is_active:
                raise AuthError("user is inactive or no longer exists")
            company = session.get(Company, company_id)
            if company is None or (require_active_company and not company.is_active):
                raise AuthError("company is inactive")
            return Actor(
                role=user.role,
                company_id=user.company_id,
                department_id=user.department_id,
                user_id=user.id,
            )

    def get_company(self, actor: Actor, company_id: str) -> Company:
        authorize(actor, Operation.READ, ResourceType.COMPANY, ResourceScope.build(company_id=company_id))
        with self._session() as session:
            company = session.get(Company, company_id)
            if company is None:
                raise NotFoundError("company not found")
            return company

    def update_company(self, actor: Actor, company_id: str, payload: CompanyUpdate) -> Company:
        with self._session() as session:
            authorize(actor, Operation.UPDATE, ResourceType.COMPANY, ResourceScope.build(company_id=company_id))
            company = session.get(Company, company_id)
            if company is None:
                raise NotFoundError("company not found")
            updates = payload.model_dump(exclude_unset=True)
            if "email" in updates and updates["email"] is not None:
                updates["email"] = self._normalize_email(updates["email"])
            for key, value in updates.items():
                if value is None and key in {"name", "email"}:
                    continue
                setattr(company, key, value)
            company.updated_at = now_utc()
            session.add(company)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("company with this name or email already exists") from exc
            session.refresh(company)
            return company

    def _set_company_active(self, actor: Actor, company_id: str, operation: Operation, is_active: bool) -> Company:
        with self._session() as session:
            authorize(actor, operation, ResourceType.COMPANY, ResourceScope.build(company_id=company_id))
            company = session.get(Company, company_id)
            if company is None:
                raise NotFoundError("company not found")
            company.is_active = is_active
            company.updated_at = now_utc()
            session.add(company)
            session.commit()
            session.refresh(company)
        logger.info("Company {} set active={} by {}", company_id, is_active, actor.user_id)
        return company

    def deactivate_company(self, actor: Actor, company_id: str) -> Company:
        return self._set_company_active(actor, company_id, Operation.DELETE, False)

    def activate_company(self, actor: Actor, company_id: str) -> Company:
        return self._set_company_active(actor, company_id, Operation.UPDATE, True)

    def _user_counts(self, session: Session, actor: Actor, *extra_conditions) -> UserCountsRead:
        conditions = scope_conditions(
            actor,
            Operation.READ,
            ResourceType.USER,
            company_column=User.company_id,
            department_column=User.department_id,
            owner_column=User.id,
        )
        users = session.exec(select(User).where(*conditions).where(*extra_conditions)).all()
        return UserCountsRead(
            total=len(users),
            active=sum(1 for user in users if user.is_active),
            by_role=dict(Counter(user.role.value for user in users)),
        )

    def company_stats(self, actor: Actor, company_id: str) -> CompanyStatsRead:
        authorize(actor, Operation.READ, ResourceType.COMPANY, ResourceScope.build(company_id=company_id))
        department_conditions = scope_conditions(
            actor,
            Operation.READ,
            ResourceType.DEPARTMENT,
            company_column=Department.company_id,
            department_column=Department.id,
        )
        with self._session() as session:
            company = session.get(Company, company_id)
            if company is None:
                raise NotFoundError("company not found")
            active_departments = session.exec(
                select(func.count())
                .select_from(Department)
                .where(*department_conditions)
                .where(Department.is_active == True)  # noqa: E712
            ).one()
            return CompanyStatsRead(
                company_id=company.id,
                name=company.name,
                is_active=company.is_active,
                active_departments=active_departments,
                users=self._user_counts(session, actor),
            )

    def list_departments(self, actor: Actor) -> list[Department]:
        conditions = scope_conditions(
            actor,
            Operation.READ,
            ResourceType.DEPARTMENT,
            company_column=Department.company_id,
            department_column=Department.id,
        )
        with self._session() as session:
            statement = select(Department).where(*conditions).order_by(Department.name)
            return list(session.exec(statement).all())

    def get_department(self, actor: Actor, department_id: str) -> Department:
        with self._session() as session:
            department = self._get_scoped_department(session, actor.company_id, department_id)
            if department is None:
                raise NotFoundError("department not found")
            authorize(actor, Operation.READ, ResourceType.DEPARTMENT, department_scope(department))
            return department

    def create_department(self, actor: Actor, payload: DepartmentCreate) -> Department:
        authorize(actor, Operation.CREATE, ResourceType.DEPARTMENT, ResourceScope.build(company_id=actor.company_id))
        with self._session() as session:
            department = Department(
                company_id=actor.company_id,
                name=payload.name.strip(),
                description=payload.description,
            )
            session.add(department)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("department name already exists in company") from exc
            session.refresh(department)
        logger.info("Department {} created in company {}", department.id, actor.company_id)
        return department

    def update_department(self, actor: Actor, department_id: str, payload: DepartmentUpdate) -> Department:
        with self._session() as session:
            department = self._get_scoped_department(session, actor.company_id, department_id)
            if department is None:
                raise NotFoundError("department not found")
            authorize(actor, Operation.UPDATE, ResourceType.DEPARTMENT, department_scope(department))
            for key, value in payload.model_dump(exclude_unset=True).items():
                if value is None and key != "description":
                    continue
                setattr(department, key, value)
            department.updated_at = now_utc()
            session.add(department)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("department name already exists in company") from exc
            session.refresh(department)
            return department

    def delete_department(self, actor: Actor, department_id: str) -> None:
        with self._session() as session:
            department = self._get_scoped_department(session, actor.company_id, department_id)
            if department is None:
                raise NotFoundError("department not found")
            authorize(actor, Operation.DELETE, ResourceType.DEPARTMENT, department_scope(department))
            for model in (User, Task, RoutineTask):
                count = session.exec(
                    select(func.count())
                    .select_from(model)
                    .where(model.company_id == actor.company_id)
                    .where(model.department_id == department_id)
                ).one()
                if count:
                    raise ConflictError("department still has users or tasks")
            for link in self._manager_links(session, department):
                session.delete(link)
            session.flush()
            session.delete(department)
            session.commit()
        logger.info("Department {} deleted by {}", department_id, actor.user_id)

    def list_department_members(self, actor: Actor, department_id: str) -> list[User]:
        with self._session() as session:
            department = self._get_scoped_department(session, actor.company_id, department_id)
            if department is None:
                raise NotFoundError("department not found")
            authorize(actor, Operation.READ, ResourceType.DEPARTMENT, department_scope(department))
            conditions = scope_conditions(
                actor,
                Operation.READ,
                ResourceType.USER,
                company_column=User.company_id,
                department_column=User.department_id,
                owner_column=User.id,
            )
            statement = (
                select(User)
                .where(*conditions)
                .where(User.department_id == department_id)
                .order_by(User.last_name, User.first_name)
            )
            return list(session.exec(statement).all())

    def _manager_links(self, session: Session, department: Department) -> list[DepartmentManager]:
        return list(
            session.exec(
                select(DepartmentManager)
                .where(DepartmentManager.company_id == department.company_id)
                .where(DepartmentManager.department_id == department.id)
                .order_by(DepartmentManager.created_at)
            ).all()
        )

    def _managers_read(self, session: Session, department: Department) -> DepartmentManagersRead:
        return DepartmentManagersRead(
            department_id=department.id,
            manager_ids=[link.user_id for link in self._manager_links(session, department)],
        )

    def list_department_managers(self, actor: Actor, department_id: str) -> DepartmentManagersRead:
        with self._session() as session:
            department = self._get_scoped_department(session, actor.company_id, department_id)
            if department is None:
                raise NotFoundError("department not found")
            authorize(actor, Operation.READ, ResourceType.DEPARTMENT, department_scope(department))
            return self._managers_read(session, department)

    def add_department_manager(self, actor: Actor, department_id: str, manager_id: str) -> DepartmentManagersRead:
        with self._session() as session:
            department = self._get_scoped_department(session, actor.company_id, department_id)
            if department is None:
                raise NotFoundError("department not found")
            authorize(actor, Operation.UPDATE, ResourceType.DEPARTMENT, department_scope(department))
            manager = self._get_scoped_user(session, actor.company_id, manager_id)
            if manager is None or manager.role not in {Role.ADMIN, Role.MANAGER}:
                raise ValidationError("manager must be an Admin or Manager of this company")
            if manager_id in {link.user_id for link in self._manager_links(session, department)}:
                raise ConflictError("user is already a manager of this department")
            session.add(DepartmentManager(company_id=actor.company_id, department_id=department.id, user_id=manager.id))
            session.commit()
            logger.info("User {} added as manager of department {}", manager_id, department_id)
            return self._managers_read(session, department)

    def remove_department_manager(self, actor: Actor, department_id: str, manager_id: str) -> DepartmentManagersRead:
        with self._session() as session:
            department = self._get_scoped_department(session, actor.company_id, department_id)
            if department is None:
                raise NotFoundError("department not found")
            authorize(actor, Operation.UPDATE, ResourceType.DEPARTMENT, department_scope(department))
            link = next(
                (item for item in self._manager_links(session, department) if item.user_id == manager_id),
                None,
            )
            if link is None:
                raise NotFoundError("manager not found in this department")
            session.delete(link)
            session.commit()
            logger.info("User {} removed as manager of department {}", manager_id, department_id)
            return self._managers_read(session, department)

    def department_stats(self, actor: Actor, department_id: str) -> DepartmentStatsRead:
        with self._session() as session:
            department = self._get_scoped_department(session, actor.company_id, department_id)
            if department is None:
                raise NotFoundError("department not found")
            authorize(actor, Operation.READ, ResourceType.DEPARTMENT, department_scope(department))
            return DepartmentStatsRead(
                department_id=department.id,
                name=department.name,
                is_active=department.is_active,
                managers_count=len(self._manager_links(session, department)),
                users=self._user_counts(session, actor, User.department_id == department.id),
            )

    def user_stats(self, actor: Actor) -> UserStatsRead:
        users = self.list_users(actor)
        return UserStatsRead(
            total=len(users),
            active=sum(1 for user in users if user.is_active),
            by_role=dict(Counter(user.role.value for user in users)),
            by_department=dict(Counter(user.department_id for user in users)),
        )

    def list_users(self, actor: Actor, *, department_id: str | None = None) -> list[User]:
        conditions = scope_conditions(
            actor,
            Operation.READ,
            ResourceType.USER,
            company_column=User.company_id,
            department_column=User.department_id,
            owner_column=User.id,
        )
        with self._session() as session:
            statement = select(User).where(*conditions)
            if department_id is not None:
                statement = statement.where(User.department_id == department_id)
            return list(session.exec(statement.order_by(User.last_name, User.first_name)).all())

    def get_user(self, actor: Actor, user_id: str) -> User:
        with self._session() as session:
            user = self._get_scoped_user(session, actor.company_id, user_id)
            if user is None:
                raise NotFoundError("user not found")
            authorize(actor, Operation.READ, ResourceType.USER, user_scope(user))
            return user

    def create_user(self, actor: Actor, payload: UserCreate) -> User:
        with self._session() as session:
            department = self._get_scoped_department(session, actor.company_id, payload.department_id)
            if department is None:
                raise NotFoundError("department not found")
            authorize(
                actor,
                Operation.CREATE,
                ResourceType.USER,
                ResourceScope.build(company_id=actor.company_id, department_id=department.id),
            )
            user = User(
                company_id=actor.company_id,
                department_id=department.id,
                first_name=payload.first_name.strip(),
                last_name=payload.last_name.strip(),
                email=self._normalize_email(payload.email),
                position=payload.position,
                role=payload.role,
                password_hash=self._hash_password(payload.password),
            )
            session.add(user)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError("email already registered") from exc
            session.refresh(user)
        logger.info("User {} created in department {} by {}", user.id, user.department_id, actor.user_id)
        return user

    def update_user(self, actor: Actor, user_id: str, payload: UserUpdate) -> User:
        with self._session() as session:
            user = self._get_scoped_user(session, actor.company_id, user_id)
            if user is None:
                raise NotFoundError("user not found")
            authorize(actor, Operation.UPDATE, ResourceType.USER, user_scope(user))

            updates = payload.model_dump(exclude_unset=True)
            privileged = set(updates) - SELF_SERVICE_USER_FIELDS
            if privileged and not actor.is_super_admin:
                raise AccessDeniedError(
                    PolicyDecision.deny(DenyReason.INSUFFICIENT_PERMISSIONS),
                    operation=Operation.UPDATE,
                    resource_type=ResourceType.USER,
                    message=f"Only SuperAdmins can change: {', '.join(sorted(privileged))}",
                )
            if "department_id" in updates and updates["department_id"] is not None:
                department = self._get_scoped_department(session, actor.company_id, updates["department_id"])
                if department is None:
                    raise NotFoundError("department not found")
            password = updates.pop("password", None)
            if password is not None:
                user.password_hash = self._hash_password(password)
            for key, value in updates.items():
                if value is not None:
                    setattr(user, key, value)
            user.updated_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    def delete_user(self, actor: Actor, user_id: str) -> None:
        with self._session() as session:
            user = self._get_scoped_user(session, actor.company_id, user_id)
            if user is None:
                raise NotFoundError("user not found")
            authorize(actor, Operation.DELETE, ResourceType.USER, user_scope(user))
            if user.id == actor.user_id:
                raise ConflictError("cannot delete your own account")
            links = session.exec(
                select(DepartmentManager)
                .where(DepartmentManager.company_id == user.company_id)
                .where(DepartmentManager.user_id == user.id)
            ).all()
            for link in links:
                session.delete(link)
            session.flush()
            session.delete(user)
            session.commit()
        logger.info("User {} deleted by {}", user_id, actor.user_id)

    def get_profile(self, actor: Actor) -> User:
        return self.get_user(actor, actor.user_id)

