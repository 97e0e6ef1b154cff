import datetime as dt
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class RegisterIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)


class LoginIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class PasswordUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    password: str = Field(..., min_length=6, max_length=128)


class CategoryIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)


class ExpenseIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    date: dt.date
    category_id: int


class ExpenseUpdateIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=10, decimal_places=2
    )
    date: Optional[dt.date] = None
    category_id: Optional[int] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    created_at: datetime
    updated_at: datetime


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    created_at: datetime
    updated_at: datetime


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    amount: Decimal
    date: dt.date
    category: CategoryOut
    user: UserOut
    created_at: datetime
    updated_at: datetime


class ExpensePageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    data: list[ExpenseOut]
    total: int
    page: int
    limit: int
    total_pages: int


class CategoryPageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    data: list[CategoryOut]
    total: int
    page: int
    limit: int
    total_pages: int


class UserPageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    data: list[UserOut]
    total: int
    page: int
    limit: int
    total_pages: int


class ReportRowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category_id: int
    category_name: str
    total_amount: Decimal


class MessageOut(BaseModel):
    message: str
