"""
Shared fixtures: a rule-based Model Port, an in-memory store and a running service
"""
import os
import re
import sys
import tempfile

import pytest
import pytest_asyncio

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "nlp-bus-test-logs"))
os.environ.setdefault("ENVIRONMENT", "testing")

from errors import ModelLoadError
from event_bus import EventBus
from model_port import ModelPort
from models import Span
from reference_store import InMemoryReferenceStore
from service import NlpService
from client import NlpClient

FIRST_NAMES = {"John", "Mary", "Kurt"}


class RuleBasedModelPort(ModelPort):
    """
    Deterministic stand-in for the pretrained analyzers.

    Config flags: ``fail_load`` (resource name that fails to load),
    ``fail_tag`` (tagger raises), ``short_tags`` (tagger drops a tag),
    ``bad_spans`` (name finder returns an out-of-range span).
    """

    def get_name(self) -> str:
        return "RuleBased"

    def _load_models(self) -> None:
        failing = self.config.get("fail_load")
        if failing:
            raise ModelLoadError(f"Cannot load '{failing}'", resource=failing)

    def _tokenize(self, text):
        return re.findall(r"\w+|[^\w\s]", text)

    def _tag(self, tokens):
        if self.config.get("fail_tag"):
            raise RuntimeError("tagger exploded")
        tags = []
        for token in tokens:
            if not token[0].isalnum():
                tags.append(".")
            elif token[0].isupper():
                tags.append("NNP")
            else:
                tags.append("NN")
        if self.config.get("short_tags"):
            return tags[:-1]
        return tags

    def _detect_sentences(self, text):
        return [s for s in re.split(r"(?<=[.!?])\s+", text.strip()) if s]

    def _find_names(self, tokens):
        if self.config.get("bad_spans"):
            return [Span(0, len(tokens) + 1)], [0.5]

        spans = []
        i = 0
        while i < len(tokens):
            if tokens[i] in FIRST_NAMES:
                j = i + 1
                while j < len(tokens) and tokens[j][:1].isupper() and tokens[j].isalpha():
                    j += 1
                spans.append(Span(i, j))
                i = j
            else:
                i += 1
        return spans, [0.9] * len(spans)


@pytest.fixture
def port():
    """A loaded rule-based port"""
    port = RuleBasedModelPort()
    port.load()
    return port


@pytest.fixture
def store():
    return InMemoryReferenceStore()


@pytest_asyncio.fixture
async def bus():
    bus = EventBus()
    yield bus
    await bus.close()


@pytest_asyncio.fixture
async def service(bus, store):
    service = NlpService(bus, RuleBasedModelPort(), store=store)
    await service.start()
    yield service
    await service.stop()


@pytest.fixture
def client(service):
    return NlpClient(service.bus, timeout=5)


# Pytest markers
def pytest_configure(config):
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "spacy: Tests that need a spaCy model installed")
