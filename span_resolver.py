"""
Span resolution - turns name-finder spans into PersonName records
"""
from typing import List, Sequence
from errors import SpanIndexError
from models import PersonName, Span


def resolve_spans(
    tokens: Sequence[str],
    spans: Sequence[Span],
    probabilities: Sequence[float]
) -> List[PersonName]:
    """
    Resolve spans over ``tokens`` into person names.

    The surface name is the first token for a single-token span, otherwise the
    first and last token joined by a space; interior tokens are kept in
    ``PersonName.tokens`` only. Span order is preserved, nothing is merged or
    de-duplicated.

    Raises:
        SpanIndexError: a span falls outside ``tokens`` or the spans and
            probabilities are not index-aligned
    """
    if len(spans) != len(probabilities):
        raise SpanIndexError(
            f"Got {len(spans)} spans but {len(probabilities)} probabilities"
        )

    names = []
    token_count = len(tokens)

    for span, probability in zip(spans, probabilities):
        start = span.start
        end = span.end - 1  # inclusive
        if start < 0 or end >= token_count or end < start:
            raise SpanIndexError(
                f"Span [{span.start}, {span.end}) out of range for {token_count} tokens"
            )

        if start == end:
            name = tokens[start]
        else:
            name = tokens[start] + " " + tokens[end]

        names.append(PersonName(
            name=name,
            tokens=tuple(tokens[start:end + 1]),
            probability=float(probability),
        ))

    return names
