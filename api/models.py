"""
API request and response models for the reimbursement REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
expenses/models.py, which own the internal domain representation. Route
handlers map between the two.

Field names follow the wire contract (camelCase such as confirmPassword,
lastActivity), so request models use aliases where the Python name differs.

Password fields are never transformed: what the client sends is exactly what
gets checked and hashed. Only names, departments and emails are trimmed.
"""

import datetime as dt
from typing import Annotated, Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints, field_validator

from auth.models import AuditAction, AuditStatus, Role
from expenses.models import ExpenseCategory, ExpenseStatus

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class FieldError(BaseModel):
    """One violated rule, addressed to a request field."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorResponse(BaseModel):
    """Error envelope returned on 4xx/5xx responses.

    errors is present only for validation failures and lists every violation.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    errors: Optional[list[FieldError]] = None
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
    audit_write_failures: int = 0


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


# Free-text identity fields are trimmed; secrets are not.
TrimmedName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


def _strip_email(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register.

    Password strength is not checked here: the password policy reports every
    violation at once, while field constraints would stop at the first.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: TrimmedName
    email: EmailStr
    password: str = Field(max_length=128)
    confirm_password: str = Field(alias="confirmPassword", max_length=128)
    department: TrimmedName
    role: Role = Role.employee

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v: Any) -> Any:
        return _strip_email(v)


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v: Any) -> Any:
        return _strip_email(v)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/auth/change-password."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias="currentPassword", min_length=1, max_length=128)
    new_password: str = Field(alias="newPassword", max_length=128)
    confirm_password: str = Field(alias="confirmPassword", max_length=128)


class UserPatch(BaseModel):
    """Request body for PATCH /api/auth/users/{id}. All fields optional."""

    role: Optional[Role] = None
    department: Optional[TrimmedName] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserPublic(BaseModel):
    """User fields safe to return to clients. Never includes the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: Role
    department: str


class UserAdminView(UserPublic):
    is_active: bool
    last_password_change: str
    created_at: str


class AuthResponse(BaseModel):
    """Response for register and login."""

    model_config = ConfigDict(frozen=True)

    token: str
    user: UserPublic


class SessionInfo(BaseModel):
    """One row of GET /api/auth/sessions."""

    model_config = ConfigDict(frozen=True)

    token: str
    lastActivity: str
    ipAddress: str
    userAgent: str
    current: bool = False


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: Optional[int]
    action: AuditAction
    status: AuditStatus
    ip_address: str
    user_agent: str
    details: Optional[dict[str, Any]] = None
    timestamp: str


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


class ExpenseCreate(BaseModel):
    """Request body for POST /api/expenses."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=5, max_length=500)
    amount: float = Field(gt=0)
    category: ExpenseCategory
    date: dt.date
    receipt: Optional[str] = Field(default=None, max_length=500)


class ExpenseStatusUpdate(BaseModel):
    """Request body for PATCH /api/expenses/{id}/status."""

    status: ExpenseStatus


class ExpenseResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    title: str
    description: str
    amount: float
    category: ExpenseCategory
    date: str
    status: ExpenseStatus
    receipt: Optional[str] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[str] = None
    created_at: str


class CategoryStat(BaseModel):
    category: ExpenseCategory
    total: float
    count: int


class MonthlyStat(BaseModel):
    month: str  # YYYY-MM
    total: float


class ExpenseStatsResponse(BaseModel):
    """Response for GET /api/expenses/stats. Approved expenses only."""

    model_config = ConfigDict(frozen=True)

    categoryStats: list[CategoryStat]
    monthlyStats: list[MonthlyStat]
