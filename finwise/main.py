"""FastAPI application for FinWise."""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date as date_type
from functools import lru_cache
from uuid import UUID

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from finwise.config import Settings, settings
from finwise.db.sqlite import Database
from finwise.models import (
    BatchIngestSummary,
    DateRange,
    ExchangeRateCacheEntry,
    IncomingMessage,
    IngestRequest,
    IngestResult,
    ManualTransactionCreate,
    ParseRequest,
    ParsingResult,
    RecurringStatistics,
    RecurringTransaction,
    StatementUploadResponse,
    Transaction,
    TransactionType,
    TransactionUpdate,
)
from finwise.parsers.hybrid import HybridExtractionPipeline
from finwise.parsers.llm_client import LLMClient
from finwise.parsers.vision import VisionStatementExtractor
from finwise.services.categorizer import CategoryClassifier
from finwise.services.dedup import DeduplicationEngine, compute_file_hash
from finwise.services.exchange_rates import ExchangeRateCache, HttpExchangeRateSource
from finwise.services.insights import InsightsService
from finwise.services.ingestion import IngestionService, SyncInProgressError
from finwise.services.progress import get_progress, update_progress
from finwise.services.recurring import RecurringService

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Wired pipeline components sharing one configuration."""

    config: Settings
    db: Database
    classifier: CategoryClassifier
    rate_cache: ExchangeRateCache
    pipeline: HybridExtractionPipeline
    vision: VisionStatementExtractor
    dedup: DeduplicationEngine
    ingestion: IngestionService
    recurring: RecurringService
    insights: InsightsService


def build_services(config: Settings) -> Services:
    """Construct every component from an explicit configuration."""
    config.ensure_directories()
    db = Database(config.db_path)
    classifier = CategoryClassifier.from_provider(
        db,
        fuzzy_threshold=config.fuzzy_category_threshold,
        use_fuzzy=config.fuzzy_category_matching,
    )
    rate_cache = ExchangeRateCache(
        db,
        HttpExchangeRateSource(config.exchange_rate_api_url, timeout=config.rate_fetch_timeout),
        config,
    )
    llm = LLMClient(config)
    pipeline = HybridExtractionPipeline(config, llm, rate_cache, classifier)
    dedup = DeduplicationEngine(db)
    return Services(
        config=config,
        db=db,
        classifier=classifier,
        rate_cache=rate_cache,
        pipeline=pipeline,
        vision=VisionStatementExtractor(config, llm, classifier, rate_cache),
        dedup=dedup,
        ingestion=IngestionService(config, pipeline, dedup, db),
        recurring=RecurringService(db),
        insights=InsightsService(db),
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(settings)


app = FastAPI(
    title="FinWise",
    description="Bank notification parsing with LLM extraction and pattern fallback",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CategoryCreate(BaseModel):
    name: str


@app.on_event("startup")
async def startup():
    """Initialize on startup."""
    settings.log_config()
    get_services()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    services = get_services()
    return {
        "status": "healthy",
        "transaction_count": services.db.get_transaction_count(),
        "llm_enabled": services.pipeline.primary_enabled,
        "vision_enabled": services.vision.enabled,
    }


@app.post("/parse", response_model=ParsingResult)
async def parse_message(request: ParseRequest):
    """Parse a notification without storing it."""
    return await get_services().pipeline.extract(request.text, subject=request.subject)


@app.post("/parse/quick", response_model=Transaction)
async def quick_parse_message(request: ParseRequest):
    """Pattern-only parse, no model calls."""
    return get_services().pipeline.quick_parse(request.text)


@app.post("/ingest", response_model=IngestResult)
async def ingest_message(message: IncomingMessage):
    """Parse and store one message."""
    try:
        return await get_services().ingestion.ingest(message)
    except sqlite3.Error as e:
        raise HTTPException(status_code=500, detail=f"Storage error: {str(e)}")


@app.post("/ingest/batch", response_model=BatchIngestSummary)
async def ingest_batch(request: IngestRequest):
    """Parse and store a batch of messages (one sync at a time)."""
    try:
        return await get_services().ingestion.ingest_batch(request.messages, job_id=request.job_id)
    except SyncInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except sqlite3.Error as e:
        raise HTTPException(status_code=500, detail=f"Storage error: {str(e)}")


@app.post("/statements/upload", response_model=StatementUploadResponse)
async def upload_statement(file: UploadFile = File(...)):
    """Upload a statement PDF and extract transactions page by page."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")
    if not file.filename.lower().endswith(".pdf"):
        raise HTTPException(status_code=400, detail="Only PDF statements are supported")

    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Empty file")

    services = get_services()
    if not services.vision.enabled:
        raise HTTPException(status_code=400, detail="Vision extraction is disabled")

    job_id = compute_file_hash(contents)[:16]
    update_progress(job_id, "processing", 0, 1, f"Reading {file.filename}")
    try:
        pages = await services.vision.parse_statement(contents)
    except Exception as e:
        update_progress(job_id, "error", 0, 1, f"Could not read PDF: {e}")
        raise HTTPException(status_code=400, detail=f"Could not read PDF: {str(e)}")

    found = [txn for page in pages for txn in page.transactions]
    try:
        added, skipped = services.dedup.insert_many(found)
    except sqlite3.Error as e:
        update_progress(job_id, "error", 0, 1, f"Storage error: {e}")
        raise HTTPException(status_code=500, detail=f"Storage error: {str(e)}")

    update_progress(job_id, "complete", 1, 1, f"Added {added} transactions from {len(pages)} pages")
    return StatementUploadResponse(
        filename=file.filename,
        job_id=job_id,
        pages=len(pages),
        transactions_found=len(found),
        transactions_added=added,
        duplicates_skipped=skipped,
        errors=[f"Page {p.page_number}: {p.error}" for p in pages if p.error],
    )


@app.get("/transactions", response_model=list[Transaction])
async def get_transactions(
    start_date: str | None = None,
    end_date: str | None = None,
    merchant: str | None = None,
    category: str | None = None,
    type: str | None = None,
    limit: int = 100,
):
    """Get transactions with optional filters."""
    try:
        start = date_type.fromisoformat(start_date) if start_date else None
        end = date_type.fromisoformat(end_date) if end_date else None
        txn_type = TransactionType(type) if type else None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return get_services().db.get_all_transactions(
        start_date=start, end_date=end, merchant=merchant, category=category, txn_type=txn_type, limit=limit
    )


@app.post("/transactions", response_model=ParsingResult)
async def add_manual_transaction(entry: ManualTransactionCreate):
    """Record a transaction entered by hand."""
    services = get_services()
    if entry.category is not None and entry.category not in services.classifier.categories:
        raise HTTPException(status_code=400, detail=f"Unknown category: {entry.category}")

    merchant = entry.merchant.strip()
    raw_text = entry.note or (
        f"Manual entry: {entry.type.value} {entry.amount:.2f} at {merchant} on {entry.timestamp:%Y-%m-%d %H:%M}"
    )
    transaction = Transaction(
        raw_text=raw_text,
        amount=entry.amount,
        type=entry.type,
        merchant=merchant,
        category=entry.category or services.classifier.classify(merchant),
        account_suffix=entry.account_suffix,
        timestamp=entry.timestamp,
        is_parsed=True,
        is_manually_edited=True,
        extraction_method="manual",
        confidence=1.0,
    )
    try:
        stored = services.dedup.insert(transaction)
    except sqlite3.Error as e:
        raise HTTPException(status_code=500, detail=f"Storage error: {str(e)}")
    return ParsingResult.manual(stored)


@app.get("/transactions/{transaction_id}", response_model=Transaction)
async def get_transaction(transaction_id: UUID):
    txn = get_services().db.get_transaction_by_id(transaction_id)
    if txn is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return txn


@app.patch("/transactions/{transaction_id}", response_model=Transaction)
async def update_transaction(transaction_id: UUID, update: TransactionUpdate):
    """Edit a transaction's category or merchant."""
    services = get_services()
    if update.category is None and update.merchant is None:
        raise HTTPException(status_code=400, detail="Nothing to update")
    if update.category is not None and update.category not in services.classifier.categories:
        raise HTTPException(status_code=400, detail=f"Unknown category: {update.category}")

    txn = services.db.update_transaction(transaction_id, category=update.category, merchant=update.merchant)
    if txn is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return txn


@app.delete("/transactions/{transaction_id}")
async def delete_transaction(transaction_id: UUID):
    if not get_services().db.delete_transaction(transaction_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    return {"deleted": 1}


@app.post("/transactions/delete-range")
async def delete_transactions_in_range(date_range: DateRange):
    """Bulk delete all transactions in an inclusive date range."""
    if date_range.end_date < date_range.start_date:
        raise HTTPException(status_code=400, detail="end_date is before start_date")
    deleted = get_services().db.delete_transactions_in_range(date_range.start_date, date_range.end_date)
    return {"deleted": deleted}


@app.get("/insights/summary")
async def get_spending_summary(year: int | None = None, month: int | None = None):
    """
    Spending and income for a calendar month.

    Without year and month the last 30 days are summarized.
    """
    try:
        summary = get_services().insights.summary(year, month)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "period_start": summary.period_start.isoformat(),
        "period_end": summary.period_end.isoformat(),
        "total_spending": round(summary.total_spending, 2),
        "total_income": round(summary.total_income, 2),
        "categories": [
            {"category": category, "amount": round(amount, 2)}
            for category, amount in summary.category_totals.items()
        ],
        "latest_balance": summary.latest_balance,
        "last_month_spending": round(get_services().insights.last_month_spending(), 2),
    }


@app.get("/insights/accounts")
async def get_accounts():
    """Card and account suffixes seen in transactions, with usage counts."""
    accounts = get_services().insights.unique_accounts()
    return [{"account_suffix": suffix, "transaction_count": count} for suffix, count in accounts.items()]


@app.get("/insights/merchants")
async def get_top_merchants(limit: int = 10):
    return {"merchants": get_services().insights.top_merchants(limit)}


@app.get("/insights/months")
async def get_available_months():
    return {"months": [month.strftime("%Y-%m") for month in get_services().insights.available_months()]}


@app.get("/recurring", response_model=list[RecurringTransaction])
async def get_recurring():
    return get_services().recurring.get_active()


@app.post("/recurring/refresh", response_model=list[RecurringTransaction])
async def refresh_recurring():
    """Re-run recurring detection over all stored transactions."""
    return get_services().recurring.refresh()


@app.get("/recurring/upcoming", response_model=list[RecurringTransaction])
async def get_upcoming_recurring(days: int = 7):
    return get_services().recurring.get_upcoming(days=days)


@app.get("/recurring/overdue", response_model=list[RecurringTransaction])
async def get_overdue_recurring():
    return get_services().recurring.get_overdue()


@app.get("/recurring/statistics", response_model=RecurringStatistics)
async def get_recurring_statistics():
    return get_services().recurring.statistics()


@app.get("/recurring/{recurring_id}", response_model=RecurringTransaction)
async def get_recurring_pattern(recurring_id: UUID):
    recurring = get_services().db.get_recurring_by_id(recurring_id)
    if recurring is None:
        raise HTTPException(status_code=404, detail="Recurring transaction not found")
    return recurring


@app.post("/recurring/{recurring_id}/inactive")
async def mark_recurring_inactive(recurring_id: UUID):
    if not get_services().recurring.mark_inactive(recurring_id):
        raise HTTPException(status_code=404, detail="Recurring transaction not found")
    return {"status": "inactive"}


@app.delete("/recurring/{recurring_id}")
async def delete_recurring(recurring_id: UUID):
    if not get_services().recurring.delete(recurring_id):
        raise HTTPException(status_code=404, detail="Recurring transaction not found")
    return {"deleted": 1}


@app.get("/rates", response_model=list[ExchangeRateCacheEntry])
async def get_rates():
    return get_services().rate_cache.all_rates()


@app.post("/rates/refresh")
async def refresh_rates():
    """Force a live exchange rate refresh."""
    rate_cache = get_services().rate_cache
    refreshed = await rate_cache.refresh(force=True)
    last = rate_cache.last_updated()
    return {"refreshed": refreshed, "last_updated": last.isoformat() if last else None}


@app.get("/categories")
async def get_categories():
    return {"categories": get_services().classifier.categories}


@app.post("/categories")
async def add_category(category: CategoryCreate):
    name = category.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Category name is empty")
    services = get_services()
    services.db.add_category(name)
    services.classifier.set_categories(services.db.get_active_categories())
    return {"categories": services.classifier.categories}


@app.delete("/categories/{name}")
async def deactivate_category(name: str):
    """Hide a category from classification; stored transactions keep it."""
    services = get_services()
    if not services.db.set_category_active(name, False):
        raise HTTPException(status_code=404, detail="Category not found")
    services.classifier.set_categories(services.db.get_active_categories())
    return {"categories": services.classifier.categories}


@app.get("/progress/{job_id}")
async def get_job_progress(job_id: str):
    progress = get_progress(job_id)
    if progress is None:
        raise HTTPException(status_code=404, detail="No progress for this job")
    return progress


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
