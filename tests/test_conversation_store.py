import pytest

from spoon_pay.approval import GateState, SessionRegistry
from spoon_pay.memory import InMemoryConversationStore
from spoon_pay.payments import PaymentPrompt, PaymentTerms
from spoon_pay.schema import ConversationMessage, Role


@pytest.mark.asyncio
async def test_store_returns_most_recent_messages_in_order():
    store = InMemoryConversationStore(max_messages=5)
    for i in range(8):
        await store.add("room-1", ConversationMessage.user(f"message {i}"))

    recent = await store.get_recent("room-1", 3)

    assert [m.text for m in recent] == ["message 5", "message 6", "message 7"]
    assert len(await store.get_recent("room-1", 100)) == 5
    assert await store.get_recent("room-2", 3) == []
    assert await store.get_recent("room-1", 0) == []


@pytest.mark.asyncio
async def test_store_clear():
    store = InMemoryConversationStore()
    await store.add("room-1", ConversationMessage.assistant("Do you approve?", ["PAID_RESOURCE_REQUEST"]))

    await store.clear("room-1")

    assert await store.get_recent("room-1", 10) == []


def test_store_requires_positive_capacity():
    with pytest.raises(ValueError):
        InMemoryConversationStore(max_messages=0)


def test_assistant_message_carries_actions():
    message = ConversationMessage.assistant("hello", ["PAID_RESOURCE_REQUEST"])

    assert message.role is Role.ASSISTANT
    assert message.actions == ["PAID_RESOURCE_REQUEST"]


def test_session_prompt_lifecycle():
    registry = SessionRegistry()
    session = registry.get("room-1")
    terms = PaymentTerms(
        amount_atomic=1000,
        pay_to="0x903918bB1903714E0518Ea2122aCeBfa27f11b6F",
        asset="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        network="base-sepolia",
        resource="https://paid.example/weather",
    )
    first = PaymentPrompt(terms=terms, text="first", created_at=100.0)
    second = PaymentPrompt(terms=terms, text="second", created_at=200.0)

    assert not session.has_history
    assert session.await_approval(first, 100.0) is None
    assert session.await_approval(second, 200.0) is first
    assert session.state is GateState.AWAITING_APPROVAL

    assert session.consume_prompt(300.0) is second
    assert session.pending_prompt is None
    assert session.state is GateState.IDLE
    assert session.has_history
    assert registry.get("room-1") is session
    assert "room-1" in registry and len(registry) == 1


def test_prompt_staleness():
    terms = PaymentTerms(
        amount_atomic=1000,
        pay_to="0x903918bB1903714E0518Ea2122aCeBfa27f11b6F",
        asset="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        network="base-sepolia",
        resource="https://paid.example/weather",
    )
    prompt = PaymentPrompt(terms=terms, text="pay?", created_at=1000.0)

    assert not prompt.is_stale(1900.0, 900)
    assert prompt.is_stale(1900.5, 900)
    assert not prompt.is_stale(10**9, None)


@pytest.mark.asyncio
async def test_registry_evicts_idle_sessions_but_not_busy_ones():
    registry = SessionRegistry()
    registry.get("quiet", now=100.0)
    busy = registry.get("busy", now=100.0)
    registry.get("recent", now=900.0)

    async with busy.lock:
        evicted = registry.evict_idle(1001.0, 900)

    assert evicted == ["quiet"]
    assert "busy" in registry and "recent" in registry
    assert registry.evict_idle(1001.0, 900) == ["busy"]
    assert len(registry) == 1
