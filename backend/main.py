"""
Module: main.py
Description: FastAPI application entry point for the Finance Tracker.

Route groups:
    /auth, /me            accounts and bearer tokens
    /transactions        per-user ledger, stats and CSV transfer
    /chat                rule-based assistant (rate limited per user)
    /admin               user management for the single admin account
    /health, /metrics    operational checks

Run locally with:
    uvicorn main:app --reload --port 8000

Author: Finance Tracker Team
"""

from auth import create_access_token, require_admin, require_existing_user
from services.observability import logger, metrics, log_chat_request
from services import (
    ChatService, ChatReply, TransactionAdded, TransactionDeleted,
    CSVProcessor, CSVValidationError,
    TransactionStore, TransactionNotFoundError, summarize, totals_by_category,
    UserService, EmailAlreadyExistsError, InvalidPasswordError,
    UserNotFoundError, UserDeletionError,
    EXPENSE_CATEGORY_KEYWORDS, INCOME_CATEGORY_KEYWORDS,
)
from schemas import (
    RegisterRequest, LoginRequest, UserUpdateRequest, UserOut, TokenResponse,
    TransactionIn, TransactionOut, TransactionStatsOut, ImportResponse,
    CategoriesResponse, UserTransactionsResponse,
    ChatRequest, ChatResponse, DeletedTransactionRef,
    SuggestedPromptsResponse, HealthResponse,
)
import os
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Deque, Dict

from fastapi import FastAPI, UploadFile, File, Depends, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from database import get_db, init_db


# =============================================================================
# Rate Limiting
# =============================================================================

class SlidingWindowRateLimiter:
    """
    Per-key sliding window kept in process memory.

    Each key may make `limit` calls in any `window_seconds` span. State is
    lost on restart and is not shared between workers.
    """

    def __init__(self, limit: int, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self.hits: Dict[str, Deque[float]] = defaultdict(deque)

    def _live_hits(self, key: str) -> Deque[float]:
        hits = self.hits[key]
        cutoff = self.clock() - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def hit(self, key: str) -> bool:
        """Count a call for `key`; False (and not counted) once over the limit."""
        hits = self._live_hits(key)
        if len(hits) >= self.limit:
            return False
        hits.append(self.clock())
        return True

    def remaining(self, key: str) -> int:
        return max(0, self.limit - len(self._live_hits(key)))

    def retry_after(self, key: str) -> float:
        """Seconds until the oldest counted call leaves the window."""
        hits = self._live_hits(key)
        if not hits:
            return 0.0
        return max(0.0, hits[0] + self.window_seconds - self.clock())


chat_rate_limiter = SlidingWindowRateLimiter(limit=30, window_seconds=60)


# =============================================================================
# Application Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and the admin account on startup."""
    logger.info("Starting Finance Tracker API")
    init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down Finance Tracker API")


# =============================================================================
# FastAPI Application Configuration
# =============================================================================

app = FastAPI(
    title="Finance Tracker API",
    description="""
    Personal finance tracking with a rule-based assistant.

    ## Features
    - 💰 Income & expense tracking
    - 📤 CSV import and export
    - 🤖 Chat assistant for balances, summaries and quick entry
    - 🛡️ Admin user management
    """,
    version="1.0.0",
    lifespan=lifespan,
)

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:3000"
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Dependency Injection
# =============================================================================

def get_transaction_store(db: DBSession = Depends(get_db)) -> TransactionStore:
    return TransactionStore(db)


def get_user_service(db: DBSession = Depends(get_db)) -> UserService:
    return UserService(db)


async def get_owned_transaction(
    transaction_id: str,
    store: TransactionStore,
    user_id: str,
):
    """
    Load a transaction that belongs to the given user.

    Raises:
        HTTPException: 404 if missing or owned by someone else.
    """
    transaction = await store.get_transaction(transaction_id)
    if not transaction or transaction.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Transaction not found."
        )
    return transaction


# =============================================================================
# System Endpoints
# =============================================================================

@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Liveness and database check",
)
async def health_check(db: DBSession = Depends(get_db)) -> HealthResponse:
    """Report "degraded" when the database cannot answer `SELECT 1`."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Database ping failed", error=str(e))
        return HealthResponse(status="degraded", database=f"error: {e}")

    return HealthResponse(status="healthy", database="connected")


@app.get(
    "/metrics",
    tags=["System"],
    summary="In-process counters and timings",
)
async def get_metrics():
    """Counters, gauges and timing statistics collected since startup."""
    return metrics.get_summary()


# =============================================================================
# Auth & Account Endpoints
# =============================================================================

@app.post(
    "/auth/register",
    response_model=UserOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Auth"],
    summary="Register a new user",
)
async def register(
    request: RegisterRequest,
    users: UserService = Depends(get_user_service),
) -> UserOut:
    """
    Create a regular user account.

    Raises:
        HTTPException: 409 if the email is already registered.
    """
    try:
        user = users.create_user(request.name, request.email, request.password)
    except EmailAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return UserOut.model_validate(user)


@app.post(
    "/auth/login",
    response_model=TokenResponse,
    tags=["Auth"],
    summary="Log in and receive a bearer token",
)
async def login(
    request: LoginRequest,
    users: UserService = Depends(get_user_service),
) -> TokenResponse:
    """
    Verify credentials and issue an access token.

    Raises:
        HTTPException: 401 on bad credentials.
    """
    user = users.verify_user(request.email, request.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password.",
        )

    logger.info("User logged in", user_id=user.id[:8], role=user.role)
    return TokenResponse(
        access_token=create_access_token(user.id, user.role),
        user=UserOut.model_validate(user),
    )


@app.get(
    "/me",
    response_model=UserOut,
    tags=["User"],
    summary="Get current user",
)
async def get_me(
    users: UserService = Depends(get_user_service),
    user_id: str = Depends(require_existing_user),
) -> UserOut:
    user = users.get_user(user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserOut.model_validate(user)


@app.put(
    "/me",
    response_model=UserOut,
    tags=["User"],
    summary="Update current user",
)
async def update_me(
    request: UserUpdateRequest,
    users: UserService = Depends(get_user_service),
    user_id: str = Depends(require_existing_user),
) -> UserOut:
    """
    Update name, email or password. The current password is always required.
    """
    try:
        user = users.update_user(
            user_id,
            request.current_password,
            name=request.name,
            email=request.email,
            password=request.password,
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidPasswordError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except EmailAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return UserOut.model_validate(user)


# =============================================================================
# Transaction Endpoints
# =============================================================================

@app.get(
    "/transactions",
    response_model=list[TransactionOut],
    tags=["Transactions"],
    summary="List the current user's transactions",
)
async def list_transactions(
    store: TransactionStore = Depends(get_transaction_store),
    user_id: str = Depends(require_existing_user),
) -> list[TransactionOut]:
    """All transactions, newest economic date first."""
    transactions = await store.list_transactions(user_id)
    transactions.sort(key=lambda t: t.date, reverse=True)
    return [TransactionOut.model_validate(t) for t in transactions]


@app.post(
    "/transactions",
    response_model=TransactionOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Transactions"],
    summary="Add a transaction",
)
async def create_transaction(
    request: TransactionIn,
    store: TransactionStore = Depends(get_transaction_store),
    user_id: str = Depends(require_existing_user),
) -> TransactionOut:
    transaction = await store.create_transaction(
        user_id,
        request.type,
        request.amount,
        request.description,
        request.category,
        request.date or datetime.now(),
    )
    return TransactionOut.model_validate(transaction)


@app.get(
    "/transactions/stats",
    response_model=TransactionStatsOut,
    tags=["Transactions"],
    summary="Totals for the current user",
)
async def get_transaction_stats(
    store: TransactionStore = Depends(get_transaction_store),
    user_id: str = Depends(require_existing_user),
) -> TransactionStatsOut:
    stats = await store.get_stats(user_id)
    return TransactionStatsOut(
        total_income=stats.total_income,
        total_expenses=stats.total_expenses,
        savings=stats.savings,
    )


@app.get(
    "/transactions/export",
    tags=["Transactions"],
    summary="Download transactions as CSV",
)
async def export_transactions(
    store: TransactionStore = Depends(get_transaction_store),
    user_id: str = Depends(require_existing_user),
) -> Response:
    transactions = await store.list_transactions(user_id)
    filename = CSVProcessor.export_filename(datetime.now())

    return Response(
        content=CSVProcessor.export_csv(transactions),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post(
    "/transactions/import",
    response_model=ImportResponse,
    tags=["Transactions"],
    summary="Import transactions from CSV",
)
async def import_transactions(
    file: UploadFile = File(..., description="CSV with columns: type, amount, description, category, date"),
    store: TransactionStore = Depends(get_transaction_store),
    user_id: str = Depends(require_existing_user),
) -> ImportResponse:
    """
    Import every row of a CSV file. Nothing is imported if any row is invalid.

    Raises:
        HTTPException: 400 if the file is not a CSV or fails validation.
    """
    if not file.filename or not file.filename.lower().endswith('.csv'):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV files are supported. Please upload a .csv file."
        )

    content = await file.read()
    try:
        imported = await CSVProcessor(store).import_csv(user_id, content)
    except CSVValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return ImportResponse(imported=imported)


@app.put(
    "/transactions/{transaction_id}",
    response_model=TransactionOut,
    tags=["Transactions"],
    summary="Update a transaction",
)
async def update_transaction(
    transaction_id: str,
    request: TransactionIn,
    store: TransactionStore = Depends(get_transaction_store),
    user_id: str = Depends(require_existing_user),
) -> TransactionOut:
    existing = await get_owned_transaction(transaction_id, store, user_id)

    try:
        transaction = await store.update_transaction(
            transaction_id,
            request.type,
            request.amount,
            request.description,
            request.category,
            request.date or existing.date,
        )
    except TransactionNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found.")

    return TransactionOut.model_validate(transaction)


@app.delete(
    "/transactions/{transaction_id}",
    tags=["Transactions"],
    summary="Delete a transaction",
)
async def delete_transaction(
    transaction_id: str,
    store: TransactionStore = Depends(get_transaction_store),
    user_id: str = Depends(require_existing_user),
):
    await get_owned_transaction(transaction_id, store, user_id)
    await store.delete_transaction(transaction_id)
    return {"message": "Transaction deleted successfully"}


@app.get(
    "/categories",
    response_model=CategoriesResponse,
    tags=["Transactions"],
    summary="Suggested categories per transaction type",
)
async def get_categories() -> CategoriesResponse:
    return CategoriesResponse(
        income=[name for name, _ in INCOME_CATEGORY_KEYWORDS],
        expense=[name for name, _ in EXPENSE_CATEGORY_KEYWORDS],
    )


# =============================================================================
# Chat Endpoints
# =============================================================================

@app.post(
    "/chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    tags=["Chat"],
    summary="Ask the finance assistant",
)
async def chat(
    request: ChatRequest,
    db: DBSession = Depends(get_db),
    user_id: str = Depends(require_existing_user),
) -> ChatResponse:
    """
    Interpret a prompt and return the assistant's reply.

    When the prompt added or deleted a transaction the reply carries
    `action` ("add"/"delete") and `data` (the new transaction or `{id}`).

    Raises:
        HTTPException: 429 if rate limit exceeded.
    """
    if not chat_rate_limiter.hit(user_id):
        retry_after = chat_rate_limiter.retry_after(user_id)
        metrics.increment("chat.rate_limited")
        logger.warning("Chat rate limited", user_id=user_id[:8])
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many chat messages. Wait {retry_after:.0f}s and try again.",
            headers={
                "Retry-After": str(int(retry_after) + 1),
                "X-RateLimit-Remaining": str(chat_rate_limiter.remaining(user_id)),
            },
        )

    log_chat_request(user_id, len(request.message))

    chat_service = ChatService(TransactionStore(db, source="chat"))
    reply = await chat_service.interpret(request.message, user_id)

    return _to_chat_response(reply)


def _to_chat_response(reply: ChatReply) -> ChatResponse:
    """Convert the assistant's reply into the API schema."""
    if isinstance(reply.outcome, TransactionAdded):
        data = TransactionOut.model_validate(reply.outcome.transaction)
    elif isinstance(reply.outcome, TransactionDeleted):
        data = DeletedTransactionRef(id=reply.outcome.transaction_id)
    else:
        data = None

    return ChatResponse(text=reply.text, action=reply.action, data=data)


@app.get(
    "/chat/prompts",
    response_model=SuggestedPromptsResponse,
    tags=["Chat"],
    summary="Get suggested prompts",
)
async def get_suggested_prompts(
    db: DBSession = Depends(get_db),
    user_id: str = Depends(require_existing_user),
) -> SuggestedPromptsResponse:
    chat_service = ChatService(TransactionStore(db, source="chat"))
    return SuggestedPromptsResponse(prompts=chat_service.get_suggested_prompts())


# =============================================================================
# Admin Endpoints
# =============================================================================

@app.get(
    "/admin/users",
    response_model=list[UserOut],
    tags=["Admin"],
    summary="List all non-admin users",
)
async def admin_list_users(
    users: UserService = Depends(get_user_service),
    admin_id: str = Depends(require_admin),
) -> list[UserOut]:
    return [UserOut.model_validate(u) for u in users.list_users()]


@app.delete(
    "/admin/users/{user_id}",
    tags=["Admin"],
    summary="Delete a user and their transactions",
)
async def admin_delete_user(
    user_id: str,
    users: UserService = Depends(get_user_service),
    admin_id: str = Depends(require_admin),
):
    """
    Raises:
        HTTPException: 400 if the user is missing or is the admin.
    """
    try:
        users.delete_user(user_id)
    except UserDeletionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {"message": "User deleted successfully"}


@app.get(
    "/admin/users/{user_id}/transactions",
    response_model=UserTransactionsResponse,
    tags=["Admin"],
    summary="Inspect a user's transactions",
)
async def admin_user_transactions(
    user_id: str,
    users: UserService = Depends(get_user_service),
    store: TransactionStore = Depends(get_transaction_store),
    admin_id: str = Depends(require_admin),
) -> UserTransactionsResponse:
    user = users.get_user(user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    transactions = await store.list_transactions(user_id)
    stats = summarize(transactions)

    return UserTransactionsResponse(
        user=UserOut.model_validate(user),
        transactions=[TransactionOut.model_validate(t) for t in transactions],
        total_transactions=len(transactions),
        total_income=stats.total_income,
        total_expenses=stats.total_expenses,
        balance=stats.savings,
        income_categories=totals_by_category([t for t in transactions if t.type == "income"]),
        expense_categories=totals_by_category([t for t in transactions if t.type == "expense"]),
    )
