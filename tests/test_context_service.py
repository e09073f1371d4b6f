from datetime import date, time, timedelta
from uuid import uuid4

from salonbot.schemas.context import (
    AwaitingCancellationChoice,
    CancellationCandidate,
    ContextMemory,
    ContextUpdate,
    IdleFlow,
)
from salonbot.services.clock import utcnow
from salonbot.services.context_service import ContextStore

PHONE = "5511988887777"


def _candidate() -> CancellationCandidate:
    return CancellationCandidate(
        appointment_id=uuid4(),
        service_name="Corte",
        professional_name="Ana",
        appointment_date=date(2030, 3, 5),
        appointment_time=time(10, 0),
    )


class TestGetOrCreate:
    def test_creates_fresh_context(self, db, salon):
        result = ContextStore(db).get_or_create(salon.business.id, PHONE, "João")
        assert result.ok is True
        context = result.value
        assert context.conversation_state == "active"
        assert context.intent == "greeting"
        assert context.sentiment == "neutral"
        assert context.client_name == "João"
        memory = ContextStore(db).memory(context)
        assert memory.message_count == 0
        assert memory.history == []
        assert isinstance(memory.pending_flow, IdleFlow)

    def test_returns_existing_context(self, db, salon):
        store = ContextStore(db)
        first = store.get_or_create(salon.business.id, PHONE).value
        second = store.get_or_create(salon.business.id, PHONE).value
        assert first.id == second.id

    def test_contexts_are_per_business(self, db, salon):
        from salonbot.models import Business

        other = Business(name="Outro", instance_name="outro", config={})
        db.add(other)
        db.commit()
        store = ContextStore(db)
        a = store.get_or_create(salon.business.id, PHONE).value
        b = store.get_or_create(other.id, PHONE).value
        assert a.id != b.id


class TestUpdate:
    def test_exchange_increments_count_and_history(self, db, salon):
        store = ContextStore(db)
        store.get_or_create(salon.business.id, PHONE)
        result = store.update(
            salon.business.id,
            PHONE,
            ContextUpdate(last_message="Oi", last_response="Olá!", intent="greeting"),
        )
        assert result.ok is True
        memory = store.memory(result.value)
        assert memory.message_count == 1
        assert memory.history[0].message == "Oi"
        assert memory.history[0].response == "Olá!"
        assert memory.history[0].intent == "greeting"

    def test_scalar_update_does_not_increment(self, db, salon):
        store = ContextStore(db)
        store.get_or_create(salon.business.id, PHONE)
        result = store.update(salon.business.id, PHONE, ContextUpdate(intent="scheduling", sentiment="positive"))
        assert result.value.intent == "scheduling"
        assert result.value.sentiment == "positive"
        assert store.memory(result.value).message_count == 0

    def test_history_keeps_last_ten(self, db, salon):
        store = ContextStore(db)
        store.get_or_create(salon.business.id, PHONE)
        for i in range(12):
            store.update(salon.business.id, PHONE, ContextUpdate(last_message=f"msg {i}", last_response="ok"))
        memory = store.memory(store.get(salon.business.id, PHONE).value)
        assert memory.message_count == 12
        assert len(memory.history) == 10
        assert memory.history[0].message == "msg 2"
        assert memory.history[-1].message == "msg 11"

    def test_count_never_decreases(self, db, salon):
        store = ContextStore(db)
        store.get_or_create(salon.business.id, PHONE)
        counts = []
        for patch in (
            ContextUpdate(last_message="a"),
            ContextUpdate(intent="help"),
            ContextUpdate(pending_flow=IdleFlow()),
            ContextUpdate(last_message="b"),
        ):
            counts.append(store.memory(store.update(salon.business.id, PHONE, patch).value).message_count)
        assert counts == sorted(counts)
        assert counts[-1] == 2

    def test_pending_flow_set_and_cleared(self, db, salon):
        store = ContextStore(db)
        store.get_or_create(salon.business.id, PHONE)
        flow = AwaitingCancellationChoice(candidates=[_candidate()], started_at=utcnow())
        context = store.update(salon.business.id, PHONE, ContextUpdate(pending_flow=flow)).value
        memory = store.memory(context)
        assert memory.awaiting_cancellation is True
        assert memory.pending_flow.candidates[0].service_name == "Corte"

        context = store.update(salon.business.id, PHONE, ContextUpdate(pending_flow=IdleFlow())).value
        assert store.memory(context).pending_flow.kind == "idle"

    def test_extensions_are_merged(self, db, salon):
        store = ContextStore(db)
        store.get_or_create(salon.business.id, PHONE)
        store.update(salon.business.id, PHONE, ContextUpdate(extensions={"preferred_service": "Corte"}))
        context = store.update(salon.business.id, PHONE, ContextUpdate(extensions={"requires_human": True})).value
        assert store.memory(context).extensions == {"preferred_service": "Corte", "requires_human": True}

    def test_closed_context_reactivated_by_exchange(self, db, salon):
        store = ContextStore(db)
        store.get_or_create(salon.business.id, PHONE)
        store.update(salon.business.id, PHONE, ContextUpdate(conversation_state="closed"))
        context = store.update(salon.business.id, PHONE, ContextUpdate(last_message="voltei")).value
        assert context.conversation_state == "active"

    def test_unknown_context_is_not_found(self, db, salon):
        result = ContextStore(db).update(salon.business.id, "000", ContextUpdate(intent="help"))
        assert result.ok is False
        assert result.error_code == "not_found"


class TestIdleSweep:
    def test_close_inactive(self, db, salon):
        store = ContextStore(db)
        idle = store.get_or_create(salon.business.id, PHONE).value
        fresh = store.get_or_create(salon.business.id, "5511977776666").value
        idle.last_interaction = utcnow() - timedelta(hours=30)
        db.commit()

        assert store.close_inactive(salon.business.id, idle_hours=24) == 1
        db.refresh(idle)
        db.refresh(fresh)
        assert idle.conversation_state == "closed"
        assert fresh.conversation_state == "active"

    def test_close_inactive_all(self, db, salon):
        store = ContextStore(db)
        idle = store.get_or_create(salon.business.id, PHONE).value
        idle.last_interaction = utcnow() - timedelta(hours=48)
        db.commit()
        assert store.close_inactive_all(idle_hours=24) == 1

    def test_list_active_excludes_closed(self, db, salon):
        store = ContextStore(db)
        store.get_or_create(salon.business.id, PHONE)
        store.get_or_create(salon.business.id, "5511977776666")
        store.update(salon.business.id, "5511977776666", ContextUpdate(conversation_state="closed"))
        assert [c.client_phone for c in store.list_active(salon.business.id)] == [PHONE]


class TestStats:
    def test_counts_and_average(self, db, salon):
        store = ContextStore(db)
        store.get_or_create(salon.business.id, PHONE)
        store.get_or_create(salon.business.id, "5511977776666")
        store.update(salon.business.id, PHONE, ContextUpdate(last_message="a"))
        store.update(salon.business.id, PHONE, ContextUpdate(last_message="b"))
        store.update(salon.business.id, "5511977776666", ContextUpdate(conversation_state="waiting"))

        stats = store.get_stats(salon.business.id)
        assert stats.total == 2
        assert stats.active == 1
        assert stats.waiting == 1
        assert stats.closed == 0
        assert stats.average_message_count == 1.0


class TestMemoryParsing:
    def test_legacy_camel_case_keys(self):
        memory = ContextMemory.from_stored(
            {
                "messageCount": 4,
                "firstInteraction": "2025-01-01T10:00:00+00:00",
                "lastTopics": [
                    {"message": "oi", "response": "olá", "timestamp": "2025-01-01T10:00:00+00:00", "intent": "greeting"}
                ],
                "awaitingCancellation": False,
            }
        )
        assert memory.message_count == 4
        assert memory.history[0].message == "oi"
        assert memory.extensions == {"awaitingCancellation": False}

    def test_empty_payload(self):
        memory = ContextMemory.from_stored(None)
        assert memory.version == 1
        assert memory.message_count == 0

    def test_append_history_fifo(self):
        memory = ContextMemory()
        from salonbot.schemas.context import HistoryEntry

        for i in range(4):
            memory.append_history(HistoryEntry(message=str(i), timestamp=utcnow()), limit=3)
        assert [e.message for e in memory.history] == ["1", "2", "3"]
