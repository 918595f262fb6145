"""
Data model for analysis results

Records are immutable once built. ``to_dict`` produces the JSON shape used on
the wire and in the reference store (camelCase keys).
"""
from dataclasses import dataclass, field
from typing import Dict, List, Any, Tuple


@dataclass(frozen=True)
class Span:
    """Half-open token interval [start, end) found by the name finder"""
    start: int
    end: int


@dataclass(frozen=True)
class PersonName:
    """A person name resolved from a span"""
    name: str
    tokens: Tuple[str, ...]
    probability: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tokens": list(self.tokens),
            "probability": self.probability,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersonName":
        return cls(
            name=data["name"],
            tokens=tuple(data["tokens"]),
            probability=float(data["probability"]),
        )


@dataclass(frozen=True)
class Sentence:
    """One detected sentence with its tokens, tags and person names"""
    raw: str
    tokens: Tuple[str, ...]
    pos_tags: Tuple[str, ...]
    person_names: Tuple[PersonName, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw": self.raw,
            "tokens": list(self.tokens),
            "posTags": list(self.pos_tags),
            "personNames": [name.to_dict() for name in self.person_names],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sentence":
        return cls(
            raw=data["raw"],
            tokens=tuple(data["tokens"]),
            pos_tags=tuple(data["posTags"]),
            person_names=tuple(PersonName.from_dict(n) for n in data.get("personNames", [])),
        )


@dataclass(frozen=True)
class AnalyzedText:
    """Root output of the analysis pipeline"""
    sentences: Tuple[Sentence, ...] = field(default_factory=tuple)

    @property
    def person_names(self) -> List[PersonName]:
        """All person names in sentence order"""
        return [name for sentence in self.sentences for name in sentence.person_names]

    def to_dict(self) -> Dict[str, Any]:
        return {"sentences": [sentence.to_dict() for sentence in self.sentences]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyzedText":
        return cls(sentences=tuple(Sentence.from_dict(s) for s in data.get("sentences", [])))
