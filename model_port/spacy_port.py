"""
spaCy-backed Model Port
"""
import spacy
from spacy.language import Language
from spacy.tokens import Doc
from pathlib import Path
from typing import Dict, List, Any, Sequence, Tuple
from model_port.base import ModelPort, RESOURCES
from errors import ModelLoadError
from models import Span
from logger import get_logger
from config import settings

logger = get_logger(__name__)

PERSON_LABELS = {"PERSON", "PER"}

# spaCy does not expose per-entity scores for its default NER
DEFAULT_SPAN_PROBABILITY = 1.0


class SpacyModelPort(ModelPort):
    """
    Model port over spaCy pipelines.

    Each resource is either a spaCy package name or, when ``model_dir`` is set,
    the directory ``<model_dir>/<resource>``. Resources that resolve to the
    same location share one loaded pipeline.
    """

    def __init__(self, config: Dict[str, Any] = None):
        super().__init__(config)
        config = config or {}
        self.model_dir = config.get('model_dir', settings.get('model_dir'))
        self.model_names = {
            "token": config.get('tokenizer_model', settings.get('tokenizer_model')),
            "ner-person": config.get('name_finder_model', settings.get('name_finder_model')),
            "pos-maxent": config.get('pos_model', settings.get('pos_model')),
            "sent": config.get('sentence_model', settings.get('sentence_model')),
        }
        self.max_length = config.get('max_text_length', settings.get('max_text_length', 100000))
        self._pipelines: Dict[str, Language] = {}

    def get_name(self) -> str:
        locations = sorted({self._resource_location(r) for r in RESOURCES})
        return f"SpaCy ({', '.join(locations)})"

    def _resource_location(self, resource: str) -> str:
        if self.model_dir:
            return str(Path(self.model_dir) / resource)
        return self.model_names[resource]

    def _load_models(self) -> None:
        by_location: Dict[str, Language] = {}

        for resource in RESOURCES:
            location = self._resource_location(resource)
            if location not in by_location:
                try:
                    nlp = spacy.load(location)
                except Exception as e:
                    logger.error(f"Failed to load model resource '{resource}' from {location}: {e}")
                    raise ModelLoadError(
                        f"Cannot load '{resource}' from {location}: {e}",
                        resource=resource,
                        original_error=e
                    ) from e
                nlp.max_length = self.max_length
                by_location[location] = nlp
                logger.info(f"Loaded spaCy pipeline for '{resource}': {location}")
            self._pipelines[resource] = by_location[location]

        sent = self._pipelines["sent"]
        if not any(sent.has_pipe(name) for name in ("parser", "senter", "sentencizer")):
            sent.add_pipe("sentencizer", first=True)

    def _tokenize(self, text: str) -> List[str]:
        nlp = self._pipelines["token"]
        return [token.text for token in nlp.tokenizer(text)]

    def _tag(self, tokens: Sequence[str]) -> List[str]:
        if not tokens:
            return []
        doc = self._annotate(self._pipelines["pos-maxent"], tokens)
        return [token.tag_ for token in doc]

    def _detect_sentences(self, text: str) -> List[str]:
        if not text.strip():
            return []
        doc = self._pipelines["sent"](text)
        return [sent.text.strip() for sent in doc.sents if sent.text.strip()]

    def _find_names(self, tokens: Sequence[str]) -> Tuple[List[Span], List[float]]:
        if not tokens:
            return [], []
        doc = self._annotate(self._pipelines["ner-person"], tokens)
        spans = [
            Span(ent.start, ent.end)
            for ent in doc.ents
            if ent.label_ in PERSON_LABELS
        ]
        return spans, [DEFAULT_SPAN_PROBABILITY] * len(spans)

    def _annotate(self, nlp: Language, tokens: Sequence[str]) -> Doc:
        """Run the pipeline components over pre-split tokens"""
        doc = Doc(nlp.vocab, words=list(tokens))
        for _, component in nlp.pipeline:
            doc = component(doc)
        return doc

    def close(self):
        self._pipelines.clear()
        super().close()
        logger.info("SpaCy model port closed")
