import math

from invoice_extractor.domain.confidence import clamp_confidence, mean_confidence, text_confidence


def test_clamp_confidence_bounds() -> None:
    assert clamp_confidence(None) == 0.0
    assert clamp_confidence(math.nan) == 0.0
    assert clamp_confidence(-0.2) == 0.0
    assert clamp_confidence(1.7) == 1.0
    assert clamp_confidence(0.42) == 0.42


def test_text_confidence_blank_is_zero() -> None:
    assert text_confidence("") == 0.0
    assert text_confidence("  \n ") == 0.0
    assert text_confidence(None) == 0.0


def test_text_confidence_stays_in_heuristic_band() -> None:
    clean = text_confidence("Invoice 12345 Total 99")
    noisy = text_confidence("~~ |} ;; !! ## a")
    assert clean == 0.95
    assert 0.5 <= noisy < clean


def test_mean_confidence_skips_missing_values() -> None:
    assert mean_confidence([]) is None
    assert mean_confidence([None]) is None
    assert mean_confidence([0.5, None, 1.0]) == 0.75
