"""
Tests for the in-process event bus
"""
import asyncio
import pytest
from errors import CodecError, ReplyError
from event_bus import CODEC_HEADER, DeliveryOptions, EventBus
from logger import current_address
from models import PersonName


async def _echo(message):
    message.reply(message.body)


@pytest.mark.asyncio
async def test_request_reply_with_string_body(bus):
    bus.consumer("test.echo", _echo)

    reply = await bus.request("test.echo", "hello")

    assert reply.body == "hello"
    assert CODEC_HEADER not in reply.headers


@pytest.mark.asyncio
async def test_structured_bodies_travel_as_frames(bus):
    seen = {}

    async def handler(message):
        seen["raw"] = message.raw
        seen["codec"] = message.headers[CODEC_HEADER]
        message.reply([PersonName(name="John", tokens=("John",), probability=0.9)])

    bus.consumer("test.frames", handler)
    reply = await bus.request("test.frames", ["John", "left"])

    assert isinstance(seen["raw"], bytes)
    assert seen["codec"] == "StringArrayCodec"
    assert reply.headers[CODEC_HEADER] == "PersonNameListCodec"
    assert reply.body[0].name == "John"


@pytest.mark.asyncio
async def test_headers_are_delivered(bus):
    async def handler(message):
        message.reply(message.headers.get("mode", "none"))

    bus.consumer("test.headers", handler)
    reply = await bus.request("test.headers", "x", DeliveryOptions(headers={"mode": "reference"}))

    assert reply.body == "reference"


@pytest.mark.asyncio
async def test_no_handlers(bus):
    with pytest.raises(ReplyError) as exc_info:
        await bus.request("test.nobody", "hello")

    assert exc_info.value.kind == "NoHandlers"
    assert exc_info.value.address == "test.nobody"


@pytest.mark.asyncio
async def test_timeout(bus):
    async def silent(message):
        await asyncio.sleep(1)

    bus.consumer("test.silent", silent)

    with pytest.raises(ReplyError) as exc_info:
        await bus.request("test.silent", "hello", DeliveryOptions(timeout=0.05))
    assert exc_info.value.kind == "Timeout"


@pytest.mark.asyncio
async def test_explicit_failure_reply(bus):
    async def failing(message):
        message.fail("NotFoundError", "nothing here")

    bus.consumer("test.fail", failing)

    with pytest.raises(ReplyError) as exc_info:
        await bus.request("test.fail", "x")
    assert exc_info.value.kind == "NotFoundError"
    assert exc_info.value.message == "nothing here"


@pytest.mark.asyncio
async def test_unhandled_handler_error_becomes_internal_error(bus):
    async def broken(message):
        raise RuntimeError("boom")

    bus.consumer("test.broken", broken)

    with pytest.raises(ReplyError) as exc_info:
        await bus.request("test.broken", "x")
    assert exc_info.value.kind == "InternalError"
    assert "boom" in exc_info.value.message


@pytest.mark.asyncio
async def test_second_reply_is_rejected(bus):
    errors = []

    async def twice(message):
        message.reply("first")
        try:
            message.reply("second")
        except RuntimeError as e:
            errors.append(e)

    bus.consumer("test.twice", twice)
    reply = await bus.request("test.twice", "x")

    assert reply.body == "first"
    assert len(errors) == 1


@pytest.mark.asyncio
async def test_send_does_not_expect_reply(bus):
    received = asyncio.Event()

    async def handler(message):
        assert not message.expects_reply
        received.set()

    bus.consumer("test.send", handler)
    bus.send("test.send", "fire")

    await asyncio.wait_for(received.wait(), 1)


@pytest.mark.asyncio
async def test_handlers_start_in_delivery_order(bus):
    started = []

    async def handler(message):
        started.append(message.body)
        await asyncio.sleep(0)
        message.reply(message.body)

    bus.consumer("test.order", handler)
    replies = await asyncio.gather(*(bus.request("test.order", str(i)) for i in range(5)))

    assert started == ["0", "1", "2", "3", "4"]
    assert [r.body for r in replies] == ["0", "1", "2", "3", "4"]


@pytest.mark.asyncio
async def test_slow_handler_does_not_block_later_messages(bus):
    release = asyncio.Event()

    async def handler(message):
        if message.body == "slow":
            await release.wait()
        message.reply(message.body)

    bus.consumer("test.concurrent", handler)
    slow = asyncio.ensure_future(bus.request("test.concurrent", "slow"))

    fast = await asyncio.wait_for(bus.request("test.concurrent", "fast"), 1)
    assert fast.body == "fast"

    release.set()
    assert (await slow).body == "slow"


@pytest.mark.asyncio
async def test_round_robin_between_consumers(bus):
    async def first(message):
        message.reply("first")

    async def second(message):
        message.reply("second")

    bus.consumer("test.rr", first)
    bus.consumer("test.rr", second)

    bodies = [(await bus.request("test.rr", "x")).body for _ in range(4)]
    assert bodies == ["first", "second", "first", "second"]


@pytest.mark.asyncio
async def test_unregister_removes_address(bus):
    consumer = bus.consumer("test.gone", _echo)
    assert "test.gone" in bus.addresses()

    await consumer.unregister()

    assert "test.gone" not in bus.addresses()
    with pytest.raises(ReplyError):
        await bus.request("test.gone", "x")


@pytest.mark.asyncio
async def test_close_unregisters_everything():
    bus = EventBus()
    bus.consumer("a.one", _echo)
    bus.consumer("a.two", _echo)

    await bus.close()

    assert bus.addresses() == []


@pytest.mark.asyncio
async def test_handler_runs_with_address_context(bus):
    async def handler(message):
        message.reply(current_address.get())

    bus.consumer("test.context", handler)

    assert (await bus.request("test.context", "x")).body == "test.context"
    assert current_address.get() == "-"


@pytest.mark.asyncio
async def test_unencodable_reply_becomes_failure_reply(bus):
    async def handler(message):
        message.reply({"a": 1})

    bus.consumer("test.unencodable", handler)

    with pytest.raises(ReplyError) as exc_info:
        await bus.request("test.unencodable", "x", DeliveryOptions(timeout=1))
    assert exc_info.value.kind == "CodecError"


@pytest.mark.asyncio
async def test_message_stays_open_after_encoding_error(bus):
    async def handler(message):
        try:
            message.reply({"a": 1})
        except CodecError:
            assert not message.replied
            message.reply("fallback")

    bus.consumer("test.fallback", handler)

    reply = await bus.request("test.fallback", "x", DeliveryOptions(timeout=1))
    assert reply.body == "fallback"
