"""
event_bus.py - In-process asyncio message bus with request/reply semantics

Non-string bodies never travel as Python objects: they are framed by the wire
codec on send and decoded on receipt, with the codec name carried in the
delivery headers.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union
from errors import NlpServiceError, ReplyError
from wire_codec import CodecRegistry, default_registry
from logger import current_address, get_logger

logger = get_logger(__name__)

CODEC_HEADER = "codec"

Handler = Callable[["Message"], Awaitable[None]]


@dataclass
class DeliveryOptions:
    """Per-message delivery options"""
    headers: Dict[str, str] = field(default_factory=dict)
    codec_name: Optional[str] = None
    timeout: Optional[float] = None  # seconds; None waits forever


class Message:
    """A delivered message; ``body`` is decoded lazily"""

    def __init__(
        self,
        bus: "EventBus",
        address: str,
        raw: Union[str, bytes, None],
        headers: Dict[str, str],
        reply_future: Optional[asyncio.Future] = None
    ):
        self._bus = bus
        self.address = address
        self.raw = raw
        self.headers = headers
        self._reply_future = reply_future
        self._replied = False
        self._decoded = False
        self._body = None

    @property
    def body(self) -> Any:
        if not self._decoded:
            codec_name = self.headers.get(CODEC_HEADER)
            if codec_name:
                self._body = self._bus.codecs.lookup(codec_name).decode_from_wire(self.raw)
            else:
                self._body = self.raw
            self._decoded = True
        return self._body

    @property
    def expects_reply(self) -> bool:
        return self._reply_future is not None

    @property
    def replied(self) -> bool:
        return self._replied

    def reply(self, body: Any, options: Optional[DeliveryOptions] = None):
        """
        Send the single reply for this message.

        The body is encoded before the reply is claimed, so a CodecError
        leaves the message open for a failure reply.
        """
        raw, headers = self._bus._encode(body, options)
        future = self._claim_reply()
        if future is None:
            return
        future.set_result(Message(self._bus, self.address, raw, headers))

    def fail(self, kind: str, message: str):
        """Send an explicit failure reply carrying the error kind"""
        future = self._claim_reply()
        if future is None:
            return
        future.set_exception(ReplyError(kind, message, self.address))

    def _claim_reply(self) -> Optional[asyncio.Future]:
        if self._reply_future is None:
            raise RuntimeError(f"Message on {self.address} does not expect a reply")
        if self._replied:
            raise RuntimeError(f"Message on {self.address} was already replied to")
        self._replied = True
        if self._reply_future.done():
            # Requester gave up (timeout or cancellation)
            logger.debug(f"Dropping late reply on {self.address}")
            return None
        return self._reply_future


class MessageConsumer:
    """
    Handler registration for one address.

    Messages are taken off the queue in delivery order and each one is handled
    in its own task, so a slow handler does not hold up the dispatcher.
    """

    def __init__(self, bus: "EventBus", address: str, handler: Handler):
        self._bus = bus
        self.address = address
        self.handler = handler
        self._queue: asyncio.Queue = asyncio.Queue()
        self._inflight: Set[asyncio.Task] = set()
        self._dispatcher: Optional[asyncio.Task] = None

    def _start(self):
        loop = asyncio.get_running_loop()
        self._dispatcher = loop.create_task(self._dispatch_loop(), name=f"bus-consumer:{self.address}")

    def _enqueue(self, message: Message):
        self._queue.put_nowait(message)

    async def _dispatch_loop(self):
        while True:
            message = await self._queue.get()
            task = asyncio.create_task(self._handle(message))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _handle(self, message: Message):
        # Each handler task runs in its own context copy
        current_address.set(self.address)
        try:
            await self.handler(message)
        except Exception as e:
            logger.error(f"Unhandled error in consumer for {self.address}: {e}", exc_info=True)
            if message.expects_reply and not message.replied:
                if isinstance(e, NlpServiceError):
                    message.fail(*e.to_reply())
                else:
                    message.fail("InternalError", str(e))

    async def unregister(self):
        """Stop receiving; queued messages are failed, in-flight ones finish"""
        self._bus._remove(self)

        if self._dispatcher:
            self._dispatcher.cancel()
            await asyncio.gather(self._dispatcher, return_exceptions=True)
            self._dispatcher = None

        while not self._queue.empty():
            message = self._queue.get_nowait()
            if message.expects_reply and not message.replied:
                message.fail("NoHandlers", f"Consumer for {self.address} was unregistered")

        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

        logger.debug(f"Unregistered consumer: {self.address}")


class EventBus:
    """
    Point-to-point request/reply bus.

    Usage:
        bus = EventBus()
        bus.consumer("nlp.tokens", handler)
        reply = await bus.request("nlp.tokens", "Hello world.")
        tokens = reply.body
    """

    def __init__(self, codecs: Optional[CodecRegistry] = None):
        self.codecs = codecs or default_registry()
        self._consumers: Dict[str, List[MessageConsumer]] = {}
        self._next_consumer: Dict[str, int] = {}

    def consumer(self, address: str, handler: Handler) -> MessageConsumer:
        """Register an async handler; must be called from a running loop"""
        consumer = MessageConsumer(self, address, handler)
        consumer._start()
        self._consumers.setdefault(address, []).append(consumer)
        logger.info(f"Registered consumer: {address}")
        return consumer

    def addresses(self) -> List[str]:
        return sorted(self._consumers)

    def send(self, address: str, body: Any, options: Optional[DeliveryOptions] = None):
        """Fire-and-forget delivery"""
        raw, headers = self._encode(body, options)
        self._deliver(address, raw, headers, None)

    async def request(self, address: str, body: Any, options: Optional[DeliveryOptions] = None) -> Message:
        """
        Deliver ``body`` and wait for exactly one reply.

        Raises:
            ReplyError: failure reply, no consumer, or timeout
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        raw, headers = self._encode(body, options)
        self._deliver(address, raw, headers, future)

        timeout = options.timeout if options else None
        if timeout is None:
            return await future

        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise ReplyError("Timeout", f"No reply within {timeout}s", address)

    async def close(self):
        for consumers in list(self._consumers.values()):
            for consumer in list(consumers):
                await consumer.unregister()

    def _encode(self, body: Any, options: Optional[DeliveryOptions]) -> Tuple[Union[str, bytes, None], Dict[str, str]]:
        headers = dict(options.headers) if options else {}
        if body is None or isinstance(body, (str, bytes)):
            return body, headers

        if options and options.codec_name:
            codec = self.codecs.lookup(options.codec_name)
        else:
            codec = self.codecs.codec_for(body)
        headers[CODEC_HEADER] = codec.name
        return codec.encode_to_wire(body), headers

    def _deliver(self, address: str, raw, headers: Dict[str, str], future: Optional[asyncio.Future]):
        consumers = self._consumers.get(address)
        if not consumers:
            raise ReplyError("NoHandlers", f"No consumer registered for {address}", address)

        index = self._next_consumer.get(address, 0) % len(consumers)
        self._next_consumer[address] = index + 1
        consumers[index]._enqueue(Message(self, address, raw, headers, future))

    def _remove(self, consumer: MessageConsumer):
        consumers = self._consumers.get(consumer.address, [])
        if consumer in consumers:
            consumers.remove(consumer)
        if not consumers:
            self._consumers.pop(consumer.address, None)
            self._next_consumer.pop(consumer.address, None)
