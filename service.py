"""
service.py - Two-phase service lifecycle: load models, then serve
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional
from errors import ModelError
from event_bus import EventBus
from metrics import models_loaded
from model_port import ModelPort, PortStatus
from reference_store import InMemoryReferenceStore, RedisReferenceStore, ReferenceStore
from router import RequestRouter
from logger import get_logger
from config import settings

logger = get_logger(__name__)


class NlpService:
    """
    Owns the Model Port, the inference executor and the request router.

    ``start()`` loads the models in the executor and registers the router
    only once every resource loaded; a load failure aborts startup with no
    topic registered.
    """

    def __init__(
        self,
        bus: EventBus,
        port: ModelPort,
        store: Optional[ReferenceStore] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        analyze_mode: Optional[str] = None,
        topic_prefix: Optional[str] = None
    ):
        self.bus = bus
        self.port = port
        self.store = store
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=settings.get('inference_workers', 2),
            thread_name_prefix="nlp"
        )
        self._analyze_mode = analyze_mode
        self._topic_prefix = topic_prefix
        self.router: Optional[RequestRouter] = None
        self._start_lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self.router is not None

    async def start(self):
        """Load the model port off the event loop, then register topics"""
        async with self._start_lock:
            if self.started:
                return

            logger.info(f"Loading model port: {self.port.get_name()}")
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(self._executor, self.port.load)
            except ModelError as e:
                models_loaded.set(0)
                logger.critical(f"Model loading failed, no topics registered: {e}")
                raise

            models_loaded.set(1)

            router = RequestRouter(
                self.port,
                executor=self._executor,
                store=self.store,
                analyze_mode=self._analyze_mode,
                topic_prefix=self._topic_prefix
            )
            router.register(self.bus)
            self.router = router
            logger.info("NLP service started")

    async def stop(self):
        if self.router is not None:
            await self.router.unregister()
            self.router = None

        if self.store is not None:
            try:
                await self.store.close()
            except Exception as e:
                logger.error(f"Error closing reference store: {e}")

        self.port.close()
        models_loaded.set(0)

        if self._owns_executor:
            self._executor.shutdown(wait=True)
        logger.info("NLP service stopped")

    async def health(self) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        port_status = await loop.run_in_executor(self._executor, self.port.health_check)
        store_available = await self.store.ping() if self.store is not None else None

        if not self.started or port_status != PortStatus.AVAILABLE:
            status = "unhealthy"
        elif store_available is False:
            # Inline analysis still works without the store
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "models": port_status.value,
            "topics": self.router.addresses if self.router else [],
            "reference_store": type(self.store).__name__ if self.store else None,
            "reference_store_available": store_available,
        }

    async def __aenter__(self) -> "NlpService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()


def create_service(bus: Optional[EventBus] = None) -> NlpService:
    """Build the default service from settings (spaCy port, Redis or in-memory store)"""
    from model_port.spacy_port import SpacyModelPort

    redis_url = settings.get('redis_url')
    store: ReferenceStore
    if redis_url:
        store = RedisReferenceStore(redis_url)
    else:
        logger.warning("No redis_url configured, using in-memory reference store")
        store = InMemoryReferenceStore()

    return NlpService(bus or EventBus(), SpacyModelPort(), store=store)
