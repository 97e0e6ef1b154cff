import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from sqlalchemy.orm import Session

from auth import CredentialValidator
from config import get_settings
from context import RequestContext
from database import SessionLocal
from errors import (
    AlreadyExists,
    CategoryNotFound,
    CredentialError,
    ExpenseNotFound,
    IdentityNotFound,
    InvalidCredential,
    MisconfiguredSigningSecret,
    MissingCredential,
    NoExpensesInRange,
    PermissionDenied,
    ServiceError,
    StoreFailure,
    UserNotFound,
)
from models import User
from results import Err, Result
from schemas import (
    CategoryIn,
    CategoryOut,
    CategoryPageOut,
    ExpenseIn,
    ExpenseOut,
    ExpensePageOut,
    ExpenseUpdateIn,
    LoginIn,
    MessageOut,
    PasswordUpdateIn,
    RegisterIn,
    ReportRowOut,
    TokenOut,
    UserOut,
    UserPageOut,
)
from services import (
    AuthService,
    CategoryService,
    ExpenseService,
    ReportService,
    UserService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(
    title="Expense Tracker API",
    description="API for managing personal expenses",
    version=APP_VERSION,
)

ERROR_STATUS: dict[type, int] = {
    MissingCredential: 401,
    InvalidCredential: 401,
    IdentityNotFound: 401,
    MisconfiguredSigningSecret: 500,
    PermissionDenied: 403,
    UserNotFound: 404,
    CategoryNotFound: 404,
    ExpenseNotFound: 404,
    NoExpensesInRange: 404,
    AlreadyExists: 409,
    StoreFailure: 500,
}


def status_for(error: ServiceError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def unwrap(result: Result):
    if isinstance(result, Err):
        error = result.error
        status_code = status_for(error)
        if status_code >= 500:
            logger.error(f"request_failed: error={type(error).__name__}")
        headers = None
        if isinstance(error, (CredentialError, IdentityNotFound)):
            headers = {"WWW-Authenticate": "Bearer"}
        raise HTTPException(
            status_code=status_code, detail=str(error), headers=headers
        ) from error
    return result.value


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_validator() -> CredentialValidator:
    return CredentialValidator.from_settings()


def request_context(request: Request) -> RequestContext:
    return RequestContext.extract(request.headers)


def require_user(
    ctx: RequestContext = Depends(request_context),
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
) -> User:
    return unwrap(AuthService(db, validator).current_user(ctx.credential))


@app.get("/")
def root():
    return {"name": app.title, "version": APP_VERSION, "ok": True}


@app.post("/auth/register", response_model=UserOut, status_code=201)
def register(
    data: RegisterIn,
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    user = unwrap(AuthService(db, validator).register(data))
    return UserOut.model_validate(user)


@app.post("/auth/login", response_model=TokenOut)
def login(
    data: LoginIn,
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    token = unwrap(AuthService(db, validator).login(data))
    return TokenOut(access_token=token)


@app.post("/category", response_model=CategoryOut, status_code=201)
def create_category(
    data: CategoryIn,
    _user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return CategoryOut.model_validate(unwrap(CategoryService(db).create(data)))


@app.get("/category", response_model=CategoryPageOut)
def list_categories(
    page: int = 1,
    limit: int = 10,
    _user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return CategoryPageOut.model_validate(unwrap(CategoryService(db).list(page, limit)))


@app.get("/category/{category_id}", response_model=CategoryOut)
def get_category(
    category_id: int,
    _user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return CategoryOut.model_validate(unwrap(CategoryService(db).get(category_id)))


@app.patch("/category/{category_id}", response_model=CategoryOut)
def rename_category(
    category_id: int,
    data: CategoryIn,
    _user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    category = unwrap(CategoryService(db).rename(category_id, data))
    return CategoryOut.model_validate(category)


@app.delete("/category/{category_id}", response_model=MessageOut)
def remove_category(
    category_id: int,
    _user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    return unwrap(CategoryService(db).remove(category_id))


@app.get("/users", response_model=UserPageOut)
def list_users(
    page: int = 1,
    limit: int = 10,
    _user: User = Depends(require_user),
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    users = unwrap(UserService(db, validator).list(page, limit))
    return UserPageOut.model_validate(users)


@app.get("/users/{user_id}", response_model=UserOut)
def get_user(
    user_id: int,
    _user: User = Depends(require_user),
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    return UserOut.model_validate(unwrap(UserService(db, validator).get(user_id)))


@app.patch("/users/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    data: PasswordUpdateIn,
    ctx: RequestContext = Depends(request_context),
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    user = unwrap(
        UserService(db, validator).update_password(ctx.credential, user_id, data)
    )
    return UserOut.model_validate(user)


@app.delete("/users/{user_id}", response_model=MessageOut)
def remove_user(
    user_id: int,
    ctx: RequestContext = Depends(request_context),
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    return unwrap(UserService(db, validator).remove(ctx.credential, user_id))


@app.get("/expense/report", response_model=list[ReportRowOut])
def expense_report(
    start_date: date,
    end_date: date,
    ctx: RequestContext = Depends(request_context),
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    rows = unwrap(
        ReportService(db, validator).generate_report(
            ctx.credential, start_date, end_date
        )
    )
    return [ReportRowOut.model_validate(row) for row in rows]


@app.post("/expense", response_model=ExpenseOut, status_code=201)
def create_expense(
    data: ExpenseIn,
    ctx: RequestContext = Depends(request_context),
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    expense = unwrap(ExpenseService(db, validator).create(ctx.credential, data))
    return ExpenseOut.model_validate(expense)


@app.get("/expense", response_model=ExpensePageOut)
def list_expenses(
    page: int = 1,
    limit: int = 10,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category_id: Optional[int] = None,
    ctx: RequestContext = Depends(request_context),
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    result = ExpenseService(db, validator).list(
        ctx.credential,
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
        category_id=category_id,
    )
    return ExpensePageOut.model_validate(unwrap(result))


@app.get("/expense/{expense_id}", response_model=ExpenseOut)
def get_expense(
    expense_id: int,
    ctx: RequestContext = Depends(request_context),
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    expense = unwrap(ExpenseService(db, validator).get_one(ctx.credential, expense_id))
    return ExpenseOut.model_validate(expense)


@app.patch("/expense/{expense_id}", response_model=ExpenseOut)
def update_expense(
    expense_id: int,
    data: ExpenseUpdateIn,
    ctx: RequestContext = Depends(request_context),
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    expense = unwrap(
        ExpenseService(db, validator).update(ctx.credential, expense_id, data)
    )
    return ExpenseOut.model_validate(expense)


@app.delete("/expense/{expense_id}", response_model=MessageOut)
def remove_expense(
    expense_id: int,
    ctx: RequestContext = Depends(request_context),
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
):
    return unwrap(ExpenseService(db, validator).remove(ctx.credential, expense_id))


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
