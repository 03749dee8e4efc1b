"""
Expense Engine service exposes chat-based expense capture and the analytics
dashboard over HTTP.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

SRC_DIR = Path(__file__).resolve().parent
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

SERVICES_ROOT = SRC_DIR.parents[1]
if str(SERVICES_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICES_ROOT))

from dialogue_manager import DialogueReply  # noqa: E402
from errors import InvalidTransaction, NotFound  # noqa: E402
from expense_engine import Dashboard, ExpenseEngine  # noqa: E402
from persistence.database import get_session_factory, init_db  # noqa: E402
from persistence.repository import SqlTransactionRepository  # noqa: E402
from query_analyzer import resolve_named_range  # noqa: E402
from query_engine import AggregateBucket, BucketSize, DashboardStats, SeriesPoint  # noqa: E402
from question_generator import QuestionSpec  # noqa: E402
from taxonomy import CATEGORIES, PAYMENT_METHODS  # noqa: E402
from transaction_model import DateRange, Transaction, TransactionFilter, local_date  # noqa: E402

from shared.engine_settings import EngineSettings, EngineSettingsError, load_engine_settings  # noqa: E402
from shared.observability import (  # noqa: E402
    bind_request_context,
    ensure_request_id,
    redact_fields,
    reset_request_context,
    setup_telemetry,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Engine")
setup_telemetry(app, service_name="expense-engine")

try:
    ENGINE_SETTINGS: EngineSettings = load_engine_settings()
except EngineSettingsError as exc:
    logger.error({"event": "engine_settings_invalid", "error": str(exc)})
    raise

DEFAULT_CORS_ORIGINS: List[str] = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

CORS_ENV_KEYS = (
    "EXPENSE_CORS_ORIGINS",
    "CORS_ALLOWED_ORIGINS",
    "CORS_ORIGINS",
)

# Patch keys that are safe to log verbatim; notes are free text.
LOGGABLE_PATCH_FIELDS = ("amount", "currency", "category", "payment_method", "occurred_at")

expense_engine: ExpenseEngine | None = None


def _resolve_cors_origins() -> List[str]:
    """
    Determine which origins may call the engine; any env var in `CORS_ENV_KEYS`
    can hold a comma-separated list.
    """
    for key in CORS_ENV_KEYS:
        raw_value = os.getenv(key)
        if not raw_value:
            continue
        origins = [origin.strip() for origin in raw_value.split(",") if origin.strip()]
        if origins:
            if any(origin == "*" for origin in origins):
                return ["*"]
            return origins
    return DEFAULT_CORS_ORIGINS


app.add_middleware(
    CORSMiddleware,
    allow_origins=_resolve_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, error_code: str, details: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error_code, "details": details},
    )


def _log_event(event: str, request: Request, **extra: Any) -> None:
    logger.info(
        {
            "event": event,
            "request_id": getattr(request.state, "request_id", None),
            **extra,
        }
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = ensure_request_id(request)
    token = bind_request_context(request_id)
    try:
        response = await call_next(request)
        response.headers.setdefault("x-request-id", request_id)
        return response
    finally:
        reset_request_context(token)


def _build_engine() -> ExpenseEngine:
    init_db()
    repository = SqlTransactionRepository(get_session_factory())
    return ExpenseEngine(ENGINE_SETTINGS, repository=repository)


@app.on_event("startup")
def on_startup() -> None:
    """Initialize persistence and hydrate the ledger before serving requests."""
    global expense_engine
    if expense_engine is None:
        expense_engine = _build_engine()


def get_expense_engine() -> ExpenseEngine:
    global expense_engine
    if expense_engine is None:
        expense_engine = _build_engine()
    return expense_engine


class QuestionSpecModel(BaseModel):
    question_id: str
    slot: str
    prompt: str
    components: List[Dict[str, Any]]

    @classmethod
    def from_dataclass(cls, spec: QuestionSpec) -> "QuestionSpecModel":
        return cls(
            question_id=spec.question_id,
            slot=spec.slot,
            prompt=spec.prompt,
            components=[component.copy() for component in spec.components],
        )


class TransactionModel(BaseModel):
    id: str
    amount: Decimal
    currency: str
    category: str
    category_display_name: str
    payment_method: str
    payment_method_display_name: str
    occurred_at: date
    created_at: datetime
    note: Optional[str] = None
    source: str

    @classmethod
    def from_dataclass(cls, transaction: Transaction) -> "TransactionModel":
        return cls(
            id=transaction.id,
            amount=transaction.amount,
            currency=transaction.currency,
            category=transaction.category.value,
            category_display_name=CATEGORIES.display_name(transaction.category),
            payment_method=transaction.payment_method.value,
            payment_method_display_name=PAYMENT_METHODS.display_name(transaction.payment_method),
            occurred_at=transaction.occurred_at,
            created_at=transaction.created_at,
            note=transaction.note,
            source=transaction.source.value,
        )


class TransactionListModel(BaseModel):
    transactions: List[TransactionModel]
    count: int


class DialogueReplyModel(BaseModel):
    kind: str
    message: str
    state: str
    question: Optional[QuestionSpecModel] = None
    transaction: Optional[TransactionModel] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_dataclass(cls, reply: DialogueReply) -> "DialogueReplyModel":
        payload = dict(reply.payload)
        transaction = payload.pop("transaction", None)
        question_payload = payload.pop("question", None)
        question = None
        if question_payload is not None:
            question = QuestionSpecModel(
                question_id=question_payload["question_id"],
                slot=question_payload["slot"],
                prompt=question_payload["prompt"],
                components=question_payload["components"],
            )
            payload["options"] = question_payload.get("options", [])
        return cls(
            kind=reply.kind.value,
            message=reply.message,
            state=reply.state.value,
            question=question,
            transaction=TransactionModel.from_dataclass(transaction) if transaction is not None else None,
            payload=jsonable_encoder(payload, custom_encoder={Decimal: str}),
        )


class AggregateBucketModel(BaseModel):
    key: str
    display_name: str
    total: Decimal
    count: int
    percent_of_total: Decimal

    @classmethod
    def from_dataclass(cls, bucket: AggregateBucket) -> "AggregateBucketModel":
        return cls(
            key=bucket.key.value,
            display_name=bucket.display_name,
            total=bucket.total,
            count=bucket.count,
            percent_of_total=bucket.percent_of_total,
        )


class SeriesPointModel(BaseModel):
    bucket_label: str
    bucket_start: date
    total: Decimal
    count: int

    @classmethod
    def from_dataclass(cls, point: SeriesPoint) -> "SeriesPointModel":
        return cls(
            bucket_label=point.bucket_label,
            bucket_start=point.bucket_start,
            total=point.total,
            count=point.count,
        )


class DashboardStatsModel(BaseModel):
    total: Decimal
    transaction_count: int
    average_per_transaction: Decimal
    currency: str

    @classmethod
    def from_dataclass(cls, stats: DashboardStats) -> "DashboardStatsModel":
        return cls(
            total=stats.total,
            transaction_count=stats.transaction_count,
            average_per_transaction=stats.average_per_transaction,
            currency=stats.currency,
        )


class DashboardResponseModel(BaseModel):
    start: date
    end: date
    bucket: str
    totals: List[AggregateBucketModel]
    series: List[SeriesPointModel]
    rows: List[TransactionModel]
    stats: DashboardStatsModel

    @classmethod
    def from_dataclass(cls, dashboard: Dashboard) -> "DashboardResponseModel":
        return cls(
            start=dashboard.date_range.start,
            end=dashboard.date_range.end,
            bucket=dashboard.bucket_size.value,
            totals=[AggregateBucketModel.from_dataclass(bucket) for bucket in dashboard.totals],
            series=[SeriesPointModel.from_dataclass(point) for point in dashboard.series],
            rows=[TransactionModel.from_dataclass(row) for row in dashboard.rows],
            stats=DashboardStatsModel.from_dataclass(dashboard.stats),
        )


class UtterancePayload(BaseModel):
    text: str = Field(..., min_length=1, max_length=1000)
    now: Optional[datetime] = None


class ManualTransactionPayload(BaseModel):
    amount: Decimal
    category: str
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    occurred_at: Optional[date] = None
    note: Optional[str] = Field(default=None, max_length=500)


class _InvalidQuery(ValueError):
    def __init__(self, error_code: str, details: str) -> None:
        super().__init__(details)
        self.error_code = error_code


def _parse_range(start: Optional[str], end: Optional[str], engine: ExpenseEngine) -> DateRange:
    today = local_date(None, engine.settings.tzinfo)
    if start is None and end is None:
        return resolve_named_range(engine.settings.default_query_range, today)
    try:
        start_date = date.fromisoformat(start) if start else None
        end_date = date.fromisoformat(end) if end else today
    except ValueError as exc:
        raise _InvalidQuery("invalid_range", "Dates must use the YYYY-MM-DD format.") from exc
    if start_date is None:
        start_date = end_date.replace(day=1)
    if start_date > end_date:
        raise _InvalidQuery("invalid_range", "The range start must not be after its end.")
    return DateRange(start_date, end_date)


def _parse_filter(categories: Optional[List[str]], payment_methods: Optional[List[str]]) -> TransactionFilter:
    category_keys = set()
    for raw in categories or []:
        key = CATEGORIES.coerce_key(raw)
        if key is None:
            raise _InvalidQuery("invalid_filter", f"Unknown category '{raw}'.")
        category_keys.add(key)
    payment_keys = set()
    for raw in payment_methods or []:
        key = PAYMENT_METHODS.coerce_key(raw)
        if key is None:
            raise _InvalidQuery("invalid_filter", f"Unknown payment method '{raw}'.")
        payment_keys.add(key)
    return TransactionFilter(categories=frozenset(category_keys), payment_methods=frozenset(payment_keys))


@app.get("/health")
def health_check() -> dict:
    """Reports Expense Engine uptime so orchestrators can confirm the service is available."""
    return {"status": "ok", "service": "expense-engine"}


@app.get("/taxonomy")
def taxonomy(engine: ExpenseEngine = Depends(get_expense_engine)) -> dict:
    """List categories and payment methods for the dashboard filters."""
    return engine.taxonomy()


@app.post("/conversations/{conversation_id}/utterances", response_model=DialogueReplyModel)
def send_utterance(
    conversation_id: str,
    request: Request,
    payload: UtterancePayload,
    engine: ExpenseEngine = Depends(get_expense_engine),
) -> DialogueReplyModel:
    """
    Feed one chat message into the conversation and return the engine's reply:
    a clarifying question, a confirmation, an analytics answer or a cancellation.
    """

    reply = engine.send_utterance(conversation_id, payload.text, payload.now)
    _log_event(
        "utterance_handled",
        request,
        conversation_id=conversation_id,
        reply_kind=reply.kind.value,
        state=reply.state.value,
    )
    return DialogueReplyModel.from_dataclass(reply)


@app.delete("/conversations/{conversation_id}/pending", response_model=DialogueReplyModel)
def cancel_pending(
    conversation_id: str,
    request: Request,
    engine: ExpenseEngine = Depends(get_expense_engine),
) -> DialogueReplyModel:
    reply = engine.cancel_pending(conversation_id)
    _log_event("pending_cancel_requested", request, conversation_id=conversation_id, state=reply.state.value)
    return DialogueReplyModel.from_dataclass(reply)


@app.get("/dashboard", response_model=None)
def dashboard(
    request: Request,
    start: Optional[str] = None,
    end: Optional[str] = None,
    bucket: str = "day",
    category: Optional[List[str]] = Query(default=None),
    payment_method: Optional[List[str]] = Query(default=None),
    engine: ExpenseEngine = Depends(get_expense_engine),
) -> Any:
    """
    Return category totals, the bucketed series, matching rows and summary
    stats for one range. Without `start`/`end` the default query range applies.
    """

    try:
        date_range = _parse_range(start, end, engine)
        transaction_filter = _parse_filter(category, payment_method)
        bucket_size = BucketSize(bucket)
    except _InvalidQuery as exc:
        return error_response(400, exc.error_code, str(exc))
    except ValueError:
        return error_response(400, "invalid_bucket", "Bucket must be one of: day, week, month.")

    result = engine.get_dashboard(date_range, transaction_filter, bucket_size)
    _log_event(
        "dashboard_served",
        request,
        start=date_range.start.isoformat(),
        end=date_range.end.isoformat(),
        bucket=bucket_size.value,
        rows=len(result.rows),
    )
    return DashboardResponseModel.from_dataclass(result)


@app.get("/transactions", response_model=None)
def list_transactions(
    start: Optional[str] = None,
    end: Optional[str] = None,
    category: Optional[List[str]] = Query(default=None),
    payment_method: Optional[List[str]] = Query(default=None),
    engine: ExpenseEngine = Depends(get_expense_engine),
) -> Any:
    try:
        transaction_filter = _parse_filter(category, payment_method)
        if start is not None or end is not None:
            transaction_filter = transaction_filter.with_range(_parse_range(start, end, engine))
    except _InvalidQuery as exc:
        return error_response(400, exc.error_code, str(exc))

    rows = engine.list_transactions(transaction_filter)
    return TransactionListModel(
        transactions=[TransactionModel.from_dataclass(row) for row in rows],
        count=len(rows),
    )


@app.post("/transactions", response_model=None, status_code=201)
def create_transaction(
    request: Request,
    payload: ManualTransactionPayload,
    engine: ExpenseEngine = Depends(get_expense_engine),
) -> Any:
    """Record an expense entered through the dashboard form (source=manual)."""
    try:
        transaction = engine.create_manual_transaction(payload.model_dump(exclude_none=True))
    except InvalidTransaction as exc:
        return error_response(422, exc.error_code, str(exc))

    _log_event("manual_transaction_created", request, transaction_id=transaction.id)
    return TransactionModel.from_dataclass(transaction)


@app.patch("/transactions/{transaction_id}", response_model=None)
def edit_transaction(
    transaction_id: str,
    request: Request,
    patch: Dict[str, Any] = Body(...),
    engine: ExpenseEngine = Depends(get_expense_engine),
) -> Any:
    try:
        transaction = engine.edit_transaction(transaction_id, patch)
    except NotFound as exc:
        return error_response(404, exc.error_code, str(exc))
    except InvalidTransaction as exc:
        return error_response(422, exc.error_code, str(exc))

    _log_event(
        "transaction_edited",
        request,
        transaction_id=transaction_id,
        patch=redact_fields(patch, LOGGABLE_PATCH_FIELDS),
    )
    return TransactionModel.from_dataclass(transaction)


@app.delete("/transactions/{transaction_id}", response_model=None)
def delete_transaction(
    transaction_id: str,
    request: Request,
    engine: ExpenseEngine = Depends(get_expense_engine),
) -> Any:
    try:
        engine.delete_transaction(transaction_id)
    except NotFound as exc:
        return error_response(404, exc.error_code, str(exc))

    _log_event("transaction_deleted", request, transaction_id=transaction_id)
    return {"status": "deleted", "transaction_id": transaction_id}
