"""
client.py - Typed caller-side access to the NLP topics
"""
from typing import Any, Dict, List, Optional
from event_bus import DeliveryOptions, EventBus
from models import AnalyzedText, PersonName
from router import MODE_HEADER, REFERENCE_MODE, NlpAddress
from config import settings

_DEFAULT_TIMEOUT = object()


class NlpClient:
    """
    Request helpers over an EventBus.

    The bus itself never times out; the client applies ``timeout`` (seconds,
    None to wait forever). Failure replies raise ``ReplyError``.
    """

    def __init__(self, bus: EventBus, timeout: Any = _DEFAULT_TIMEOUT, topic_prefix: Optional[str] = None):
        self.bus = bus
        self.timeout = settings.get('request_timeout', 30.0) if timeout is _DEFAULT_TIMEOUT else timeout
        self.topic_prefix = topic_prefix

    async def _request(self, topic: NlpAddress, body: Any, headers: Optional[Dict[str, str]] = None) -> Any:
        options = DeliveryOptions(headers=headers or {}, timeout=self.timeout)
        reply = await self.bus.request(topic.address(self.topic_prefix), body, options)
        return reply.body

    async def tokens(self, text: str) -> List[str]:
        return await self._request(NlpAddress.TOKENS, text)

    async def pos_tags(self, tokens: List[str]) -> List[str]:
        return await self._request(NlpAddress.POSTAGGING, list(tokens))

    async def sentences(self, text: str) -> List[str]:
        return await self._request(NlpAddress.SENTENCES, text)

    async def person_names(self, tokens: List[str]) -> List[PersonName]:
        return await self._request(NlpAddress.PERSONNAME, list(tokens))

    async def analyze(self, text: str) -> AnalyzedText:
        return await self._request(NlpAddress.ANALYZE, text)

    async def analyze_reference(self, identifier: str) -> str:
        """Submit by reference; the result is read back from the store"""
        return await self._request(NlpAddress.ANALYZE, identifier, {MODE_HEADER: REFERENCE_MODE})
