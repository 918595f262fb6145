"""
Base abstract interface for the Model Port
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Sequence, Tuple
from enum import Enum
from errors import ModelError, ModelLoadError, NlpServiceError
from models import Span
from logger import get_logger

logger = get_logger(__name__)

# Model resources, loaded once at startup
RESOURCES = ("token", "ner-person", "pos-maxent", "sent")


class PortStatus(Enum):
    """Model port availability status"""
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"


class ModelPort(ABC):
    """
    Abstract base class for the four analyzers (tokenizer, POS tagger,
    sentence detector, person name finder).

    Lifecycle is two-phase: ``load()`` once, then serve read-only calls from
    any thread. Every public call made before ``load()`` succeeded raises
    ``ModelError``. Subclasses implement the underscore hooks; the public
    methods wrap any analyzer exception into ``ModelError``.
    """

    def __init__(self, config: Dict[str, Any] = None):
        self.config = config or {}
        self._status = PortStatus.UNKNOWN
        self._loaded = False

    @abstractmethod
    def get_name(self) -> str:
        """Get port name"""
        pass

    @abstractmethod
    def _load_models(self) -> None:
        """Load all model resources; raise ModelLoadError on failure"""
        pass

    @abstractmethod
    def _tokenize(self, text: str) -> Sequence[str]:
        pass

    @abstractmethod
    def _tag(self, tokens: Sequence[str]) -> Sequence[str]:
        pass

    @abstractmethod
    def _detect_sentences(self, text: str) -> Sequence[str]:
        pass

    @abstractmethod
    def _find_names(self, tokens: Sequence[str]) -> Tuple[Sequence[Span], Sequence[float]]:
        pass

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def status(self) -> PortStatus:
        return self._status

    def load(self) -> None:
        """
        Load every model resource. Blocking and I/O bound; callers run it in
        a worker thread. Any failure leaves the port unusable.
        """
        if self._loaded:
            return

        try:
            self._load_models()
        except ModelLoadError:
            self._status = PortStatus.UNAVAILABLE
            raise
        except Exception as e:
            self._status = PortStatus.UNAVAILABLE
            raise ModelLoadError(f"Failed to load models for {self.get_name()}: {e}", original_error=e) from e

        self._loaded = True
        self._status = PortStatus.AVAILABLE
        logger.info(f"Model port ready: {self.get_name()}")

    def tokenize(self, text: str) -> List[str]:
        return list(self._invoke("tokenize", self._tokenize, text))

    def tag(self, tokens: Sequence[str]) -> List[str]:
        tags = list(self._invoke("tag", self._tag, tokens))
        if len(tags) != len(tokens):
            raise ModelError(
                f"POS tagger returned {len(tags)} tags for {len(tokens)} tokens"
            )
        return tags

    def detect_sentences(self, text: str) -> List[str]:
        return list(self._invoke("detect_sentences", self._detect_sentences, text))

    def find_names(self, tokens: Sequence[str]) -> Tuple[List[Span], List[float]]:
        spans, probabilities = self._invoke("find_names", self._find_names, tokens)
        return list(spans), list(probabilities)

    def health_check(self) -> PortStatus:
        """Check port availability with a tiny tokenization"""
        if not self._loaded:
            return PortStatus.UNAVAILABLE

        try:
            self.tokenize("test")
            self._status = PortStatus.AVAILABLE
        except ModelError as e:
            logger.warning(f"Model port health check failed: {e}")
            self._status = PortStatus.DEGRADED

        return self._status

    def close(self):
        """Release model resources"""
        self._loaded = False
        self._status = PortStatus.UNKNOWN

    def _invoke(self, operation: str, func, *args):
        if not self._loaded:
            raise ModelError(f"{operation} called before models were loaded")

        try:
            return func(*args)
        except NlpServiceError:
            raise
        except Exception as e:
            logger.error(f"{self.get_name()} {operation} failed: {e}")
            raise ModelError(f"{operation} failed: {e}", original_error=e) from e
