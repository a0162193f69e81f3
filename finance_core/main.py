from datetime import date, datetime
from decimal import Decimal

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from finance_core.billing_cycle import anticipation_target, classify_occurrence, is_future_installment
from finance_core.categories import category_usage
from finance_core.config import Settings
from finance_core.logging_setup import configure_logging, get_logger
from finance_core.recurrence import generate_series
from finance_core.records import Card, RecurrenceSpec, TransactionDraft, TransactionOccurrence
from finance_core.series_mutator import (
    anticipate_installment,
    delete_occurrence,
    delete_series,
    edit_occurrence,
    move_series_month,
)
from finance_core.sql_store import SqlPatternStore, SqlTransactionStore, create_engine_from_url, create_tables
from finance_core.stores import StoreError, TransactionStore
from finance_core.suggestions import SuggestionStore, remember_draft

settings = Settings.from_env()
configure_logging(settings.log_level)
_logger = get_logger("finance_core.main")

app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

engine = create_engine_from_url(settings.database_url)
transaction_store = SqlTransactionStore(engine)
suggestion_store = SuggestionStore(
    SqlPatternStore(engine),
    prefix_limit=settings.suggestion_prefix_limit,
    cache_size=settings.suggestion_cache_size,
)


@app.on_event("startup")
async def init_db() -> None:
    await create_tables(engine)


def get_transaction_store() -> TransactionStore:
    return transaction_store


def get_suggestion_store() -> SuggestionStore:
    return suggestion_store


def get_user_id(x_user_id: str | None = Header(None, alias="x-user-id")) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        return int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc


class RecurrencePayload(BaseModel):
    kind: str = "none"
    mode: str = "fixed"
    occurrences: int = 1


class TransactionPayload(BaseModel):
    type: str
    amount: Decimal
    date: date
    description: str = ""
    category_id: int | None = None
    account_id: int | None = None
    to_account_id: int | None = None
    credit_card_id: int | None = None
    recurrence: RecurrencePayload = RecurrencePayload()

    def to_draft(self) -> TransactionDraft:
        return TransactionDraft(
            type=self.type,
            amount=self.amount,
            date=self.date,
            description=self.description,
            category_id=self.category_id,
            account_id=self.account_id,
            to_account_id=self.to_account_id,
            credit_card_id=self.credit_card_id,
            recurrence=RecurrenceSpec(
                kind=self.recurrence.kind,
                mode=self.recurrence.mode,
                occurrences=self.recurrence.occurrences,
            ),
        )


class OccurrenceFailureResponse(BaseModel):
    index: int
    error: str


class GenerationResponse(BaseModel):
    requested: int
    created_count: int
    complete: bool
    series_id: str | None = None
    created_ids: list[int]
    failures: list[OccurrenceFailureResponse]


class AnticipatedFromResponse(BaseModel):
    month: int
    year: int
    captured_at: datetime


class OccurrenceResponse(BaseModel):
    id: int
    user_id: int
    type: str
    amount: Decimal
    date: date
    month: int
    year: int
    status: str
    description: str
    category_id: int | None = None
    account_id: int | None = None
    to_account_id: int | None = None
    credit_card_id: int | None = None
    recurrence: str
    recurrence_mode: str | None = None
    series_id: str | None = None
    installment_current: int | None = None
    installment_total: int | None = None
    anticipated_from: AnticipatedFromResponse | None = None
    anticipation_discount: Decimal | None = None
    related_transaction_id: int | None = None


class MoveSeriesPayload(BaseModel):
    months: int


class MoveSeriesResponse(BaseModel):
    success: bool
    updated: int
    total: int


class AnticipatePayload(BaseModel):
    closing_day: int
    discount: Decimal | None = None


class AnticipateResponse(BaseModel):
    success: bool
    target_month: int
    target_year: int
    discount_transaction_id: int | None = None


class OccurrenceStateResponse(BaseModel):
    id: int
    state: str
    is_future_installment: bool


class SuggestionResponse(BaseModel):
    category_id: int
    count: int
    account_id: int | None = None
    credit_card_id: int | None = None
    payment_method: str | None = None
    normalized_description: str | None = None


class CategoryUsageResponse(BaseModel):
    category_id: int
    transaction_count: int
    deletable: bool


def occurrence_response(occurrence: TransactionOccurrence) -> OccurrenceResponse:
    anticipated = occurrence.anticipated_from
    return OccurrenceResponse(
        id=occurrence.id,
        user_id=occurrence.user_id,
        type=occurrence.type,
        amount=occurrence.amount,
        date=occurrence.date,
        month=occurrence.month,
        year=occurrence.year,
        status=occurrence.status,
        description=occurrence.description,
        category_id=occurrence.category_id,
        account_id=occurrence.account_id,
        to_account_id=occurrence.to_account_id,
        credit_card_id=occurrence.credit_card_id,
        recurrence=occurrence.recurrence,
        recurrence_mode=occurrence.recurrence_mode,
        series_id=occurrence.series_id,
        installment_current=occurrence.installment_current,
        installment_total=occurrence.installment_total,
        anticipated_from=(
            AnticipatedFromResponse(
                month=anticipated.month, year=anticipated.year, captured_at=anticipated.captured_at
            )
            if anticipated
            else None
        ),
        anticipation_discount=occurrence.anticipation_discount,
        related_transaction_id=occurrence.related_transaction_id,
    )


async def load_owned(store: TransactionStore, transaction_id: int, user_id: int) -> TransactionOccurrence:
    try:
        occurrence = await store.get(transaction_id)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail="Transaction store unavailable.") from exc
    if occurrence is None or occurrence.user_id != user_id:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return occurrence


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/transactions", response_model=GenerationResponse)
async def create_transaction(
    payload: TransactionPayload,
    background_tasks: BackgroundTasks,
    user_id: int = Depends(get_user_id),
    store: TransactionStore = Depends(get_transaction_store),
    suggestions: SuggestionStore = Depends(get_suggestion_store),
) -> GenerationResponse:
    draft = payload.to_draft()
    try:
        result = await generate_series(store, user_id, draft)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if result.created_count == 0:
        raise HTTPException(status_code=503, detail="Failed to create transaction.")
    if result.complete:
        background_tasks.add_task(remember_draft, suggestions, user_id, draft)
    else:
        _logger.info(
            "transactions:partial user_id=%s created=%d requested=%d",
            user_id,
            result.created_count,
            result.requested,
        )
    return GenerationResponse(
        requested=result.requested,
        created_count=result.created_count,
        complete=result.complete,
        series_id=result.series_id,
        created_ids=result.created_ids,
        failures=[OccurrenceFailureResponse(index=f.index, error=f.error) for f in result.failures],
    )


@app.get("/transactions/{transaction_id}", response_model=OccurrenceResponse)
async def read_transaction(
    transaction_id: int,
    user_id: int = Depends(get_user_id),
    store: TransactionStore = Depends(get_transaction_store),
) -> OccurrenceResponse:
    return occurrence_response(await load_owned(store, transaction_id, user_id))


@app.put("/transactions/{transaction_id}", response_model=OccurrenceResponse)
async def update_transaction(
    transaction_id: int,
    payload: TransactionPayload,
    user_id: int = Depends(get_user_id),
    store: TransactionStore = Depends(get_transaction_store),
) -> OccurrenceResponse:
    await load_owned(store, transaction_id, user_id)
    try:
        updated = await edit_occurrence(store, transaction_id, payload.to_draft())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=503, detail="Failed to update transaction.") from exc
    if not updated:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return occurrence_response(await load_owned(store, transaction_id, user_id))


@app.delete("/transactions/{transaction_id}")
async def remove_transaction(
    transaction_id: int,
    user_id: int = Depends(get_user_id),
    store: TransactionStore = Depends(get_transaction_store),
) -> dict:
    await load_owned(store, transaction_id, user_id)
    try:
        deleted = await delete_occurrence(store, transaction_id)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail="Failed to delete transaction.") from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return {"status": "deleted"}


@app.get("/series/{series_id}", response_model=list[OccurrenceResponse])
async def list_series(
    series_id: str,
    user_id: int = Depends(get_user_id),
    store: TransactionStore = Depends(get_transaction_store),
) -> list[OccurrenceResponse]:
    try:
        occurrences = await store.query_by_series(user_id, series_id)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail="Transaction store unavailable.") from exc
    return [occurrence_response(occurrence) for occurrence in occurrences]


@app.post("/series/{series_id}/move", response_model=MoveSeriesResponse)
async def move_series(
    series_id: str,
    payload: MoveSeriesPayload,
    user_id: int = Depends(get_user_id),
    store: TransactionStore = Depends(get_transaction_store),
) -> MoveSeriesResponse:
    try:
        result = await move_series_month(store, user_id, series_id, payload.months)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if result.total == 0 and not result.success:
        raise HTTPException(status_code=404, detail="Series not found.")
    return MoveSeriesResponse(success=result.success, updated=result.updated, total=result.total)


@app.delete("/series/{series_id}")
async def remove_series(
    series_id: str,
    from_installment: int | None = Query(None, ge=1),
    user_id: int = Depends(get_user_id),
    store: TransactionStore = Depends(get_transaction_store),
) -> dict:
    try:
        deleted = await delete_series(store, user_id, series_id, from_installment=from_installment)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail="Transaction store unavailable.") from exc
    return {"status": "deleted", "deleted": deleted}


@app.post("/transactions/{transaction_id}/anticipate", response_model=AnticipateResponse)
async def anticipate_transaction(
    transaction_id: int,
    payload: AnticipatePayload,
    user_id: int = Depends(get_user_id),
    store: TransactionStore = Depends(get_transaction_store),
) -> AnticipateResponse:
    occurrence = await load_owned(store, transaction_id, user_id)
    if occurrence.credit_card_id is None:
        raise HTTPException(status_code=400, detail="Only credit card installments can be anticipated.")
    try:
        target = anticipation_target(Card(id=occurrence.credit_card_id, closing_day=payload.closing_day))
        result = await anticipate_installment(
            store, transaction_id, target.month, target.year, discount=payload.discount
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return AnticipateResponse(
        success=result.success,
        target_month=target.month,
        target_year=target.year,
        discount_transaction_id=result.discount_transaction_id,
    )


@app.get("/transactions/{transaction_id}/state", response_model=OccurrenceStateResponse)
async def transaction_state(
    transaction_id: int,
    closing_day: int | None = Query(None, ge=1, le=31),
    user_id: int = Depends(get_user_id),
    store: TransactionStore = Depends(get_transaction_store),
) -> OccurrenceStateResponse:
    occurrence = await load_owned(store, transaction_id, user_id)
    card = None
    if occurrence.credit_card_id is not None:
        if closing_day is None:
            raise HTTPException(status_code=400, detail="closing_day is required for credit card transactions.")
        card = Card(id=occurrence.credit_card_id, closing_day=closing_day)
    return OccurrenceStateResponse(
        id=transaction_id,
        state=classify_occurrence(occurrence, card),
        is_future_installment=is_future_installment(occurrence, card),
    )


@app.get("/suggestions", response_model=SuggestionResponse | None)
async def suggest(
    description: str = Query(""),
    user_id: int = Depends(get_user_id),
    suggestions: SuggestionStore = Depends(get_suggestion_store),
) -> SuggestionResponse | None:
    suggestion = await suggestions.lookup_description(user_id, description)
    if suggestion is None:
        return None
    return SuggestionResponse(
        category_id=suggestion.category_id,
        count=suggestion.count,
        account_id=suggestion.account_id,
        credit_card_id=suggestion.credit_card_id,
        payment_method=suggestion.payment_method,
        normalized_description=suggestion.normalized_description,
    )


@app.get("/categories/{category_id}/usage", response_model=CategoryUsageResponse)
async def read_category_usage(
    category_id: int,
    user_id: int = Depends(get_user_id),
    store: TransactionStore = Depends(get_transaction_store),
) -> CategoryUsageResponse:
    try:
        usage = await category_usage(store, user_id, category_id)
    except StoreError as exc:
        raise HTTPException(status_code=503, detail="Transaction store unavailable.") from exc
    return CategoryUsageResponse(
        category_id=usage.category_id,
        transaction_count=usage.transaction_count,
        deletable=usage.deletable,
    )
