import os

# Must be set before salonbot.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("OPENAI_API_KEY", None)

from dataclasses import dataclass
from datetime import date, time, timedelta
from decimal import Decimal
from typing import Optional
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from salonbot.database import Base
from salonbot.models import Appointment, Business, Customer, Professional, Service
from salonbot.services.clock import utcnow
from salonbot.services.llm import LLMProvider, LLMResponse
from salonbot.services.result import Result


@dataclass
class SentMessage:
    phone: str
    text: str
    idempotency_key: Optional[str] = None


class FakeSender:
    """Records outbound texts; fails the first `fail_times` sends (or all with fail=True)."""

    def __init__(self, fail: bool = False, fail_times: int = 0):
        self.fail = fail
        self.fail_times = fail_times
        self.sent: list[SentMessage] = []

    def send_text(self, phone, text, idempotency_key=None):
        self.sent.append(SentMessage(phone, text, idempotency_key))
        if self.fail:
            return Result.failure("gateway down", "send_error")
        if self.fail_times > 0:
            self.fail_times -= 1
            return Result.failure("gateway timeout", "send_error")
        return Result.success(f"wamid-{len(self.sent)}")

    @property
    def texts(self) -> list[str]:
        return [message.text for message in self.sent]


class FakeLLM(LLMProvider):
    """Answers JSON-mode calls with `analysis` and chat calls with `reply`."""

    def __init__(self, analysis: str = "{}", reply: str = "Olá! Como posso ajudar?", error: Exception = None):
        self.analysis = analysis
        self.reply = reply
        self.error = error
        self.calls: list[dict] = []

    def generate(self, messages, model=None, temperature=0.7, max_tokens=1000, timeout_seconds=None, json_mode=False):
        self.calls.append({"messages": messages, "model": model, "json_mode": json_mode})
        if self.error is not None:
            raise self.error
        content = self.analysis if json_mode else self.reply
        return LLMResponse(content=content, model=model or "fake-model")


@dataclass
class Salon:
    business: Business
    ana: Professional
    bruno: Professional
    carla: Professional
    corte: Service
    escova: Service
    maria: Customer


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def salon(db) -> Salon:
    business = Business(name="Salão Centro", instance_name="salao-centro", ai_enabled=True, config={})
    db.add(business)
    db.flush()

    ana = Professional(business_id=business.id, name="Ana", active=True)
    bruno = Professional(business_id=business.id, name="Bruno", active=True)
    carla = Professional(business_id=business.id, name="Carla", active=False)
    corte = Service(business_id=business.id, name="Corte", price=Decimal("50.00"), duration_minutes=30)
    escova = Service(business_id=business.id, name="Escova", price=Decimal("40.00"), duration_minutes=30)
    maria = Customer(business_id=business.id, name="Maria", phone="5511999990000")
    db.add_all([ana, bruno, carla, corte, escova, maria])
    db.commit()
    return Salon(business, ana, bruno, carla, corte, escova, maria)


@pytest.fixture
def make_appointment(db, salon):
    def _make(
        day: Optional[date] = None,
        at: time = time(10, 0),
        professional: Optional[Professional] = None,
        service: Optional[Service] = None,
        customer: Optional[Customer] = None,
        status: str = "scheduled",
    ) -> Appointment:
        service = service or salon.corte
        appointment = Appointment(
            business_id=salon.business.id,
            professional_id=(professional or salon.ana).id,
            customer_id=(customer or salon.maria).id,
            service_id=service.id,
            appointment_date=day or (date.today() + timedelta(days=10)),
            appointment_time=at,
            status=status,
            total_price=service.price,
            created_at=utcnow(),
            updated_at=utcnow(),
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def no_sleep():
    return Mock()
