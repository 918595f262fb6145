"""
Tests for the service lifecycle
"""
import pytest
from errors import ModelLoadError
from event_bus import EventBus
from model_port import PortStatus
from reference_store import InMemoryReferenceStore
from service import NlpService

from conftest import RuleBasedModelPort


@pytest.mark.asyncio
async def test_load_failure_registers_no_topics():
    bus = EventBus()
    service = NlpService(bus, RuleBasedModelPort({"fail_load": "ner-person"}))

    with pytest.raises(ModelLoadError):
        await service.start()

    assert not service.started
    assert bus.addresses() == []

    health = await service.health()
    assert health["status"] == "unhealthy"
    assert health["models"] == PortStatus.UNAVAILABLE.value
    assert health["topics"] == []
    await service.stop()


@pytest.mark.asyncio
async def test_health_when_started(service):
    health = await service.health()

    assert health["status"] == "healthy"
    assert health["models"] == "available"
    assert "nlp.analyze" in health["topics"]
    assert health["reference_store"] == "InMemoryReferenceStore"
    assert health["reference_store_available"] is True


@pytest.mark.asyncio
async def test_start_is_idempotent(service):
    router = service.router
    await service.start()

    assert service.router is router
    assert len(service.bus.addresses()) == 5


@pytest.mark.asyncio
async def test_stop_unregisters_topics():
    bus = EventBus()
    port = RuleBasedModelPort()

    async with NlpService(bus, port, store=InMemoryReferenceStore()) as service:
        assert service.started
        assert port.loaded

    assert bus.addresses() == []
    assert not port.loaded


@pytest.mark.asyncio
async def test_topic_prefix_and_default_mode():
    bus = EventBus()
    store = InMemoryReferenceStore()
    store.seed("x1", message="Kurt left.")

    async with NlpService(bus, RuleBasedModelPort(), store=store,
                          analyze_mode="reference", topic_prefix="nlp.v2") as service:
        assert "nlp.v2.analyze" in bus.addresses()

        reply = await bus.request("nlp.v2.analyze", "x1")
        assert reply.body == "x1"
        assert "nlp" in await store.get("x1")


class UnreachableStore(InMemoryReferenceStore):

    async def ping(self) -> bool:
        return False


@pytest.mark.asyncio
async def test_health_degraded_when_store_unreachable():
    async with NlpService(EventBus(), RuleBasedModelPort(), store=UnreachableStore()) as service:
        health = await service.health()

    assert health["status"] == "degraded"
    assert health["reference_store_available"] is False
    assert health["models"] == "available"
