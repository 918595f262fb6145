"""
router.py - Binds analysis capabilities to bus topics
"""
import asyncio
from concurrent.futures import Executor
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from analysis_pipeline import analyze_text, find_person_names
from errors import CodecError, NlpServiceError
from event_bus import DeliveryOptions, EventBus, Message, MessageConsumer
from metrics import track_request
from model_port import ModelPort
from models import AnalyzedText
from reference_store import ReferenceStore, ReferenceWorkflow
from logger import get_logger
from config import settings

logger = get_logger(__name__)

MODE_HEADER = "mode"
INLINE_MODE = "inline"
REFERENCE_MODE = "reference"


class NlpAddress(Enum):
    """Bus topics; the literal address is ``<prefix>.<value>``"""
    TOKENS = "tokens"
    POSTAGGING = "postagging"
    SENTENCES = "sentences"
    PERSONNAME = "personname"
    ANALYZE = "analyze"

    def address(self, prefix: Optional[str] = None) -> str:
        return f"{prefix or settings.get('topic_prefix', 'nlp')}.{self.value}"


def _expect_text(body: Any) -> str:
    if not isinstance(body, str):
        raise CodecError(f"Expected a string payload, got {type(body).__name__}")
    return body


def _expect_tokens(body: Any) -> List[str]:
    if not isinstance(body, list) or not all(isinstance(token, str) for token in body):
        raise CodecError(f"Expected a string array payload, got {type(body).__name__}")
    return body


class RequestRouter:
    """
    Topic -> handler table over a loaded Model Port.

    Model calls run in ``executor`` so the event loop keeps dispatching while
    inference is in progress. The only state shared between requests is the
    read-only port (and the reference store, see reference_store.py).
    """

    def __init__(
        self,
        port: ModelPort,
        executor: Optional[Executor] = None,
        store: Optional[ReferenceStore] = None,
        analyze_mode: Optional[str] = None,
        topic_prefix: Optional[str] = None
    ):
        self.port = port
        self._executor = executor
        self.analyze_mode = analyze_mode or settings.get('analyze_mode', INLINE_MODE)
        self.topic_prefix = topic_prefix or settings.get('topic_prefix', 'nlp')
        self.workflow = ReferenceWorkflow(store, self.analyze) if store is not None else None
        self._consumers: List[MessageConsumer] = []

        self._routes: Dict[NlpAddress, Callable[[Message], Awaitable[Any]]] = {
            NlpAddress.TOKENS: self.handle_tokens,
            NlpAddress.POSTAGGING: self.handle_postagging,
            NlpAddress.SENTENCES: self.handle_sentences,
            NlpAddress.PERSONNAME: self.handle_personname,
            NlpAddress.ANALYZE: self.handle_analyze,
        }
        # Empty name lists keep the person name codec header
        self._reply_options: Dict[NlpAddress, DeliveryOptions] = {
            NlpAddress.PERSONNAME: DeliveryOptions(codec_name="PersonNameListCodec"),
        }

    @property
    def addresses(self) -> List[str]:
        return [topic.address(self.topic_prefix) for topic in self._routes]

    def register(self, bus: EventBus):
        """Subscribe every route on ``bus``"""
        for topic, handler in self._routes.items():
            consumer = bus.consumer(topic.address(self.topic_prefix), self._wrap(topic, handler))
            self._consumers.append(consumer)
        logger.info(f"Request router registered {len(self._consumers)} topics under '{self.topic_prefix}'")

    async def unregister(self):
        for consumer in self._consumers:
            await consumer.unregister()
        self._consumers.clear()

    def _wrap(self, topic: NlpAddress, handler: Callable[[Message], Awaitable[Any]]):
        tracked = track_request(topic.value)(handler)

        async def on_message(message: Message):
            try:
                result = await tracked(message)
            except NlpServiceError as e:
                logger.warning(f"{topic.value} request failed: {e}")
                kind, text = e.to_reply()
                message.fail(kind, text)
                return
            except Exception as e:
                logger.error(f"{topic.value} request failed unexpectedly: {e}", exc_info=True)
                message.fail("InternalError", str(e))
                return

            if not message.replied:
                try:
                    message.reply(result, self._reply_options.get(topic))
                except NlpServiceError as e:
                    logger.warning(f"{topic.value} reply could not be encoded: {e}")
                    message.fail(*e.to_reply())

        return on_message

    async def _run(self, func: Callable, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    async def analyze(self, text: str) -> AnalyzedText:
        return await self._run(analyze_text, self.port, text)

    async def handle_tokens(self, message: Message) -> List[str]:
        text = _expect_text(message.body)
        tokens = await self._run(self.port.tokenize, text)
        logger.debug(f"evaluated tokens: {tokens}")
        return tokens

    async def handle_postagging(self, message: Message) -> List[str]:
        tokens = _expect_tokens(message.body)
        tags = await self._run(self.port.tag, tokens)
        logger.debug(f"pos tagged: {tags}")
        return tags

    async def handle_sentences(self, message: Message) -> List[str]:
        text = _expect_text(message.body)
        sentences = await self._run(self.port.detect_sentences, text)
        logger.debug(f"evaluated {len(sentences)} sentences")
        return sentences

    async def handle_personname(self, message: Message):
        tokens = _expect_tokens(message.body)
        return await self._run(find_person_names, self.port, tokens)

    async def handle_analyze(self, message: Message):
        body = _expect_text(message.body)
        mode = message.headers.get(MODE_HEADER, self.analyze_mode)

        if mode == REFERENCE_MODE:
            if self.workflow is None:
                raise NlpServiceError("Reference mode requested but no reference store is configured")
            await self.workflow.handle(body, message.reply)
            return None

        if mode != INLINE_MODE:
            raise CodecError(f"Unknown analyze mode: {mode!r}")

        return await self.analyze(body)
