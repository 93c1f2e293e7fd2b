import datetime as dt
import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import TransactionType

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
SORT_FIELDS = ("date", "amount", "type", "description")


def _strip_text(value):
    return value.strip() if isinstance(value, str) else value


def _check_password_strength(value: str) -> str:
    if not re.search(r"[a-z]", value) or not re.search(r"[A-Z]", value):
        raise ValueError("Password needs at least one lowercase and one uppercase letter")
    if not re.search(r"\d", value):
        raise ValueError("Password needs at least one digit")
    return value


class RegisterIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=100)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return _strip_text(value)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("password")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginIn(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class UserUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    password: Optional[str] = Field(default=None, min_length=6, max_length=100)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return _strip_text(value)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().lower() if value is not None else None

    @field_validator("password")
    @classmethod
    def _strong_password(cls, value: Optional[str]) -> Optional[str]:
        return _check_password_strength(value) if value is not None else None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    created_at: datetime


class TokenOut(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    type: TransactionType
    color: str = Field(..., pattern=HEX_COLOR_PATTERN)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return _strip_text(value)


class CategoryUpdate(BaseModel):
    # is_default and user_id are not accepted here
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    type: Optional[TransactionType] = None
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return _strip_text(value)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    color: Optional[str]
    user_id: Optional[int]
    is_default: bool
    created_at: datetime


class DefaultCategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    type: TransactionType
    color: str
    is_default: bool = True


class CategoryPageOut(BaseModel):
    page: int
    limit: int
    categories: list[CategoryOut]


class TransactionIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)
    type: TransactionType
    category_id: int
    description: str = Field(default="", max_length=500)
    date: Optional[datetime] = None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        return value.strip()


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[datetime] = None


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: float
    description: str
    type: TransactionType
    category_id: int
    user_id: Optional[int]
    date: datetime
    created_at: datetime
    updated_at: datetime


class TransactionQuery(BaseModel):
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    start_date: Optional[dt.date] = None
    end_date: Optional[dt.date] = None
    min_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_amount: Optional[Decimal] = Field(default=None, ge=0)
    description: Optional[str] = Field(default=None, max_length=500)
    sort_by: str = "date"
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)


class TransactionPageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    items: list[TransactionOut]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool
    filters: dict[str, Any]


class SummaryReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_income: float
    total_expense: float
    net_amount: float
    transaction_count: int
    month: str


class CategoryLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category_id: int
    category_name: str
    color: Optional[str]
    total_amount: float
    transaction_count: int
    percentage: float


class CategoryGroupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    categories: list[CategoryLineOut]
    total: float
    total_transactions: int


class CategoryReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    income: CategoryGroupOut
    expense: CategoryGroupOut
    month: Optional[str]
    report_date: datetime
    net: float


class BalanceReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current_balance: float
    monthly_income: float
    monthly_expense: float
    monthly_net: float
    yearly_income: float
    yearly_expense: float
    yearly_net: float
    all_time_income: float
    all_time_expense: float
    all_time_net: float
    current_month: str
    current_year: int
    report_date: datetime
