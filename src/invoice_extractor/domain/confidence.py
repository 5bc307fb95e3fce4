from __future__ import annotations

HEURISTIC_FLOOR = 0.5
HEURISTIC_CEILING = 0.95


def clamp_confidence(confidence: float | None) -> float:
    """Clamp a confidence value to the 0..1 range."""

    if confidence is None:
        return 0.0
    if confidence != confidence:
        return 0.0
    if confidence < 0.0:
        return 0.0
    if confidence > 1.0:
        return 1.0
    return float(confidence)


def text_confidence(text: str | None) -> float:
    """Estimate OCR confidence from the share of alphanumeric characters.

    The ratio is mapped into a conservative band instead of 0..1 so that clean
    looking text never claims full certainty. Blank text scores 0.
    """

    if not text or not text.strip():
        return 0.0
    visible = [ch for ch in text if not ch.isspace()]
    alnum = sum(1 for ch in visible if ch.isalnum())
    ratio = alnum / len(visible)
    return round(HEURISTIC_FLOOR + (HEURISTIC_CEILING - HEURISTIC_FLOOR) * ratio, 4)


def mean_confidence(values: list[float | None]) -> float | None:
    filtered = [value for value in values if value is not None]
    if not filtered:
        return None
    return sum(filtered) / len(filtered)
