from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from functools import wraps
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from auth import CredentialValidator, authenticate, hash_password, verify_password
from errors import (
    AlreadyExists,
    CategoryNotFound,
    ExpenseNotFound,
    InvalidCredential,
    NoExpensesInRange,
    PermissionDenied,
    ServiceError,
    StoreFailure,
    UserNotFound,
)
from models import Category, Expense, User
from periods import DateRange, Page, PageRequest
from results import Err, Ok, Result
from schemas import (
    CategoryIn,
    ExpenseIn,
    ExpenseUpdateIn,
    LoginIn,
    PasswordUpdateIn,
    RegisterIn,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def operation(name: str, action: str) -> Callable:
    """Run a service method as one operation and return its outcome as a Result.

    Domain errors come back unchanged inside ``Err``. Anything else is logged,
    the session is rolled back, and the caller receives a ``StoreFailure``
    whose message carries no internal detail.
    """

    def decorator(method: Callable) -> Callable:
        @wraps(method)
        def wrapper(self, *args, **kwargs) -> Result:
            try:
                return Ok(method(self, *args, **kwargs))
            except ServiceError as exc:
                logger.info(f"{name}_rejected: reason={type(exc).__name__}")
                return Err(exc)
            except Exception as exc:
                self.session.rollback()
                logger.exception(f"{name}_failed")
                failure = StoreFailure(f"Error occurred while {action}")
                failure.__cause__ = exc
                return Err(failure)

        return wrapper

    return decorator


@dataclass(frozen=True)
class ReportRow:
    category_id: int
    category_name: str
    total_amount: Decimal


class AuthService:
    def __init__(
        self, session: Session, validator: Optional[CredentialValidator] = None
    ) -> None:
        self.session = session
        self.validator = validator or CredentialValidator.from_settings()

    @operation("auth_register", "registering user")
    def register(self, data: RegisterIn) -> User:
        email = data.email.strip().lower()
        existing = self.session.scalar(select(User).where(User.email == email))
        if existing:
            raise AlreadyExists("Email already in use")
        user = User(email=email, password_hash=hash_password(data.password))
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_registered: id={user.id}")
        return user

    @operation("auth_login", "logging in")
    def login(self, data: LoginIn) -> str:
        email = data.email.strip().lower()
        user = self.session.scalar(
            select(User).where(User.email == email, User.deleted_at.is_(None))
        )
        if not user or not verify_password(data.password, user.password_hash):
            raise InvalidCredential("Invalid email or password")
        token = self.validator.issue(user.id, user.email)
        logger.info(f"user_logged_in: id={user.id}")
        return token

    @operation("auth_current_user", "fetching user")
    def current_user(self, credential: Optional[str]) -> User:
        return authenticate(self.session, self.validator, credential)


class UserService:
    def __init__(
        self, session: Session, validator: Optional[CredentialValidator] = None
    ) -> None:
        self.session = session
        self.validator = validator or CredentialValidator.from_settings()

    def _live(self, user_id: int) -> User:
        user = self.session.scalar(
            select(User).where(User.id == user_id, User.deleted_at.is_(None))
        )
        if not user:
            raise UserNotFound(f"User with ID {user_id} not found")
        return user

    def _owned(self, credential: Optional[str], user_id: int, verb: str) -> User:
        caller = authenticate(self.session, self.validator, credential)
        user = self._live(user_id)
        if user.id != caller.id:
            raise PermissionDenied(f"You are not allowed to {verb} this user")
        return user

    @operation("user_list", "fetching users")
    def list(self, page: Optional[int] = 1, limit: Optional[int] = 10) -> Page[User]:
        paging = PageRequest.clamped(page, limit)
        live = User.deleted_at.is_(None)
        total = self.session.execute(
            select(func.count(User.id)).where(live)
        ).scalar_one()
        users = self.session.scalars(
            select(User)
            .where(live)
            .order_by(User.created_at.asc(), User.id.asc())
            .offset(paging.offset)
            .limit(paging.limit)
        ).all()
        return Page(data=list(users), total=total, page=paging.page, limit=paging.limit)

    @operation("user_get", "fetching user")
    def get(self, user_id: int) -> User:
        return self._live(user_id)

    @operation("user_update_password", "updating user")
    def update_password(
        self, credential: Optional[str], user_id: int, data: PasswordUpdateIn
    ) -> User:
        user = self._owned(credential, user_id, "update")
        user.password_hash = hash_password(data.password)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_password_changed: id={user.id}")
        return user

    @operation("user_remove", "removing user")
    def remove(self, credential: Optional[str], user_id: int) -> dict[str, str]:
        user = self._owned(credential, user_id, "delete")
        user.deleted_at = datetime.utcnow()
        self.session.commit()
        logger.info(f"user_soft_deleted: id={user.id}")
        return {"message": f"User with ID {user_id} has been soft deleted"}


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _live(self, category_id: int) -> Category:
        category = self.session.scalar(
            select(Category).where(
                Category.id == category_id, Category.deleted_at.is_(None)
            )
        )
        if not category:
            raise CategoryNotFound(f"Category with ID {category_id} not found")
        return category

    @operation("category_create", "creating category")
    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip().lower()
        existing = self.session.scalar(select(Category).where(Category.name == name))
        if existing and existing.deleted_at is None:
            raise AlreadyExists("Category already in use")
        if existing:
            existing.deleted_at = None
            self.session.commit()
            self.session.refresh(existing)
            logger.info(f"category_restored: id={existing.id}")
            return existing
        category = Category(name=name)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_created: id={category.id}")
        return category

    @operation("category_list", "fetching categories")
    def list(
        self, page: Optional[int] = 1, limit: Optional[int] = 10
    ) -> Page[Category]:
        paging = PageRequest.clamped(page, limit)
        live = Category.deleted_at.is_(None)
        total = self.session.execute(
            select(func.count(Category.id)).where(live)
        ).scalar_one()
        categories = self.session.scalars(
            select(Category)
            .where(live)
            .order_by(Category.created_at.asc(), Category.id.asc())
            .offset(paging.offset)
            .limit(paging.limit)
        ).all()
        return Page(
            data=list(categories), total=total, page=paging.page, limit=paging.limit
        )

    @operation("category_get", "fetching category")
    def get(self, category_id: int) -> Category:
        return self._live(category_id)

    @operation("category_rename", "updating category")
    def rename(self, category_id: int, data: CategoryIn) -> Category:
        category = self._live(category_id)
        name = data.name.strip().lower()
        if name == category.name:
            return category
        clash = self.session.scalar(select(Category).where(Category.name == name))
        if clash and clash.id != category.id:
            raise AlreadyExists(f"Category with the name '{name}' already exists")
        category.name = name
        self.session.commit()
        self.session.refresh(category)
        return category

    @operation("category_remove", "removing category")
    def remove(self, category_id: int) -> dict[str, str]:
        category = self._live(category_id)
        category.deleted_at = datetime.utcnow()
        self.session.commit()
        logger.info(f"category_soft_deleted: id={category.id}")
        return {"message": f"Category with ID {category_id} has been soft deleted"}


class ExpenseService:
    """Expense CRUD confined to the caller's own records.

    Every public method takes the raw ``Authorization`` value, validates it,
    resolves the account and only then touches the ``expenses`` table, always
    filtering on the resolved user id. Expenses owned by someone else are
    reported exactly like missing ones.
    """

    def __init__(
        self, session: Session, validator: Optional[CredentialValidator] = None
    ) -> None:
        self.session = session
        self.validator = validator or CredentialValidator.from_settings()

    def _require_category(self, category_id: int) -> Category:
        category = self.session.scalar(
            select(Category).where(
                Category.id == category_id, Category.deleted_at.is_(None)
            )
        )
        if not category:
            raise CategoryNotFound(f"Category with ID {category_id} not found")
        return category

    def _scoped(self, user_id: int, expense_id: int) -> Expense:
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category), joinedload(Expense.user))
            .where(
                Expense.id == expense_id,
                Expense.user_id == user_id,
                Expense.deleted_at.is_(None),
            )
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise ExpenseNotFound(f"Expense with ID {expense_id} not found")
        return expense

    @operation("expense_create", "creating expense")
    def create(self, credential: Optional[str], data: ExpenseIn) -> Expense:
        user = authenticate(self.session, self.validator, credential)
        category = self._require_category(data.category_id)
        expense = Expense(
            title=data.title,
            amount=data.amount,
            date=data.date,
            user_id=user.id,
            category=category,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(f"expense_created: id={expense.id} user_id={user.id}")
        return expense

    @operation("expense_list", "fetching expenses")
    def list(
        self,
        credential: Optional[str],
        page: Optional[int] = 1,
        limit: Optional[int] = 10,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_id: Optional[int] = None,
    ) -> Page[Expense]:
        user = authenticate(self.session, self.validator, credential)
        paging = PageRequest.clamped(page, limit)
        date_range = DateRange(start=start_date, end=end_date)

        conditions = [Expense.user_id == user.id, Expense.deleted_at.is_(None)]
        date_clause = date_range.clause(Expense.date)
        if date_clause is not None:
            conditions.append(date_clause)
        if category_id is not None:
            conditions.append(Expense.category_id == category_id)

        total = self.session.execute(
            select(func.count(Expense.id)).where(*conditions)
        ).scalar_one()
        stmt = (
            select(Expense)
            .options(joinedload(Expense.category), joinedload(Expense.user))
            .where(*conditions)
            .order_by(Expense.date.asc(), Expense.id.asc())
            .offset(paging.offset)
            .limit(paging.limit)
        )
        expenses = self.session.scalars(stmt).all()
        logger.debug(
            f"expense_list: user_id={user.id} mode={date_range.mode} "
            f"category_id={category_id} total={total}"
        )
        return Page(
            data=list(expenses), total=total, page=paging.page, limit=paging.limit
        )

    @operation("expense_get", "fetching expense")
    def get_one(self, credential: Optional[str], expense_id: int) -> Expense:
        user = authenticate(self.session, self.validator, credential)
        return self._scoped(user.id, expense_id)

    @operation("expense_update", "updating expense")
    def update(
        self, credential: Optional[str], expense_id: int, data: ExpenseUpdateIn
    ) -> Expense:
        user = authenticate(self.session, self.validator, credential)
        expense = self._scoped(user.id, expense_id)

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        # Category is checked before any field is assigned.
        if "category_id" in changes:
            expense.category = self._require_category(changes.pop("category_id"))
        for field, value in changes.items():
            setattr(expense, field, value)

        self.session.commit()
        self.session.refresh(expense)
        logger.info(f"expense_updated: id={expense.id} user_id={user.id}")
        return expense

    @operation("expense_remove", "removing expense")
    def remove(self, credential: Optional[str], expense_id: int) -> dict[str, str]:
        user = authenticate(self.session, self.validator, credential)
        expense = self._scoped(user.id, expense_id)
        expense.deleted_at = datetime.utcnow()
        self.session.commit()
        logger.info(f"expense_soft_deleted: id={expense_id} user_id={user.id}")
        return {"message": f"Expense with ID {expense_id} has been soft deleted"}


class ReportService:
    def __init__(
        self, session: Session, validator: Optional[CredentialValidator] = None
    ) -> None:
        self.session = session
        self.validator = validator or CredentialValidator.from_settings()

    @operation("expense_report", "generating the report")
    def generate_report(
        self, credential: Optional[str], start_date: date, end_date: date
    ) -> list[ReportRow]:
        user = authenticate(self.session, self.validator, credential)
        stmt = (
            select(
                Category.id.label("category_id"),
                Category.name.label("category_name"),
                func.sum(Expense.amount).label("total_amount"),
            )
            .select_from(Expense)
            .join(Category, Category.id == Expense.category_id)
            .where(
                Expense.user_id == user.id,
                Expense.deleted_at.is_(None),
                Expense.date.between(start_date, end_date),
            )
            .group_by(Category.id, Category.name)
            .order_by(Category.id.asc())
        )
        rows = self.session.execute(stmt).all()
        if not rows:
            raise NoExpensesInRange("No expenses found for the given date range")
        return [
            ReportRow(
                category_id=row.category_id,
                category_name=row.category_name,
                total_amount=Decimal(str(row.total_amount)).quantize(CENT),
            )
            for row in rows
        ]
