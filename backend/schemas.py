"""Pydantic request/response schemas for type safety."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Literal, Union


# =============================================================================
# Auth & User Schemas
# =============================================================================

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=6, max_length=128)


class LoginRequest(BaseModel):
    email: str
    password: str


class UserUpdateRequest(BaseModel):
    current_password: str
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[str] = Field(None, min_length=1, max_length=255)
    password: Optional[str] = Field(None, min_length=6, max_length=128)


class UserOut(BaseModel):
    """User without the password hash."""
    id: str
    name: str
    email: str
    role: Literal["admin", "user"]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


# =============================================================================
# Transaction Schemas
# =============================================================================

class TransactionIn(BaseModel):
    type: Literal["income", "expense"]
    amount: float = Field(gt=0, description="Positive amount in dollars")
    description: str = Field(..., min_length=1, max_length=500)
    category: str = Field(..., min_length=1, max_length=100)
    date: Optional[datetime] = Field(None, description="Defaults to now")


class TransactionOut(BaseModel):
    id: str
    user_id: str
    type: Literal["income", "expense"]
    amount: float
    description: str
    category: str
    date: datetime
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TransactionStatsOut(BaseModel):
    total_income: float
    total_expenses: float
    savings: float


class ImportResponse(BaseModel):
    imported: int


class CategoriesResponse(BaseModel):
    income: list[str]
    expense: list[str]


# =============================================================================
# Admin Schemas
# =============================================================================

class UserTransactionsResponse(BaseModel):
    """A user's history plus the totals shown on the admin page."""
    user: UserOut
    transactions: list[TransactionOut]
    total_transactions: int
    total_income: float
    total_expenses: float
    balance: float
    income_categories: dict[str, float]
    expense_categories: dict[str, float]


# =============================================================================
# Chat Schemas
# =============================================================================

class ChatRequest(BaseModel):
    """Request schema for chat endpoint."""
    message: str = Field(..., min_length=1, max_length=2000, description="User's message")


class DeletedTransactionRef(BaseModel):
    id: str


class ChatResponse(BaseModel):
    """Assistant reply; action/data are present only for add/delete."""
    text: str
    action: Optional[Literal["add", "delete"]] = None
    data: Optional[Union[TransactionOut, DeletedTransactionRef]] = None


class SuggestedPromptsResponse(BaseModel):
    prompts: list[str]


# =============================================================================
# System Schemas
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    database: str
