"""
Analysis pipeline - raw text to AnalyzedText
"""
from typing import List, Sequence
from model_port import ModelPort
from models import AnalyzedText, PersonName, Sentence
from span_resolver import resolve_spans
from logger import get_logger

logger = get_logger(__name__)


def find_person_names(port: ModelPort, tokens: Sequence[str]) -> List[PersonName]:
    """Run the name finder over ``tokens`` and resolve its spans"""
    spans, probabilities = port.find_names(tokens)
    return resolve_spans(tokens, spans, probabilities)


def analyze_sentence(port: ModelPort, raw: str) -> Sentence:
    tokens = port.tokenize(raw)
    pos_tags = port.tag(tokens)
    names = find_person_names(port, tokens)
    return Sentence(
        raw=raw,
        tokens=tuple(tokens),
        pos_tags=tuple(pos_tags),
        person_names=tuple(names),
    )


def analyze_text(port: ModelPort, text: str) -> AnalyzedText:
    """
    Split ``text`` into sentences and analyze each one in detection order.

    The result is all-or-nothing: a ModelError (or SpanIndexError) from any
    sentence propagates and no partial AnalyzedText is produced. Empty text
    yields zero sentences.
    """
    if not text:
        return AnalyzedText()

    raw_sentences = port.detect_sentences(text)
    sentences = tuple(analyze_sentence(port, raw) for raw in raw_sentences)

    logger.debug(f"Analyzed {len(sentences)} sentences")
    return AnalyzedText(sentences=sentences)
