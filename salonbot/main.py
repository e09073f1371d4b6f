import asyncio
import os

from fastapi import Depends, FastAPI
from sqlalchemy.orm import Session

from salonbot.config import settings
from salonbot.database import SessionLocal, get_db
from salonbot.dependencies import build_services
from salonbot.logging_config import get_logger, setup_logging
from salonbot.models import Appointment, ConversationContext, Message, ScheduledMessage
from salonbot.routers import appointments, contexts, scheduled_messages, webhook
from salonbot.services.context_service import ContextStore

setup_logging(settings.log_level)

app = FastAPI(
    title="Salonbot API",
    description="WhatsApp assistant for salons: intents, booking flows and scheduled reminders",
    version="0.1.0",
)

app.include_router(webhook.router)
app.include_router(appointments.router)
app.include_router(contexts.router)
app.include_router(scheduled_messages.router)

worker_logger = get_logger("workers")
_worker_tasks: list[asyncio.Task] = []


def _workers_enabled() -> bool:
    return not os.environ.get("PYTEST_CURRENT_TEST")


def run_delivery_sweep() -> dict:
    db = SessionLocal()
    try:
        scheduler = build_services(db).scheduler
        scheduler.release_stale_claims(settings.scheduler_stale_claim_minutes)
        return scheduler.process_due(limit=settings.scheduler_batch_limit).__dict__
    finally:
        db.close()


def run_context_sweep() -> int:
    db = SessionLocal()
    try:
        return ContextStore(db).close_inactive_all(settings.context_idle_hours)
    finally:
        db.close()


async def _periodic(name: str, interval_seconds: float, job) -> None:
    interval_seconds = max(interval_seconds, 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            # Blocking DB/HTTP work stays off the event loop
            result = await asyncio.to_thread(job)
            worker_logger.debug(f"{name} tick finished", extra={"context": {"result": result}})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            worker_logger.error(f"{name} loop failed", extra={"context": {"error": str(exc)}})


@app.on_event("startup")
async def start_workers() -> None:
    if not _workers_enabled() or _worker_tasks:
        return
    if settings.scheduler_enabled:
        _worker_tasks.append(
            asyncio.create_task(_periodic("delivery_sweep", settings.scheduler_interval_seconds, run_delivery_sweep))
        )
        worker_logger.info("Delivery sweep started")
    if settings.context_sweep_enabled:
        _worker_tasks.append(
            asyncio.create_task(
                _periodic("context_sweep", settings.context_sweep_interval_seconds, run_context_sweep)
            )
        )
        worker_logger.info("Context sweep started")


@app.on_event("shutdown")
async def stop_workers() -> None:
    # Pending rows stay pending and are picked up by the next process
    for task in _worker_tasks:
        task.cancel()
    for task in _worker_tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    _worker_tasks.clear()


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "contexts": db.query(ConversationContext).count(),
        "appointments": db.query(Appointment).count(),
        "scheduled_messages": db.query(ScheduledMessage).count(),
        "messages": db.query(Message).count(),
    }
