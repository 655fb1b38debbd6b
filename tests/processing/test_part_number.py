"""Tests for part-number extraction, scoring and resolution."""

from unittest.mock import MagicMock

import pytest

from partscan.processing.errors import BackendCallFailure, OutputValidationFailure
from partscan.processing.llm_client import StructuredResponse
from partscan.processing.models import OCRResult, VehicleContext
from partscan.processing.part_number import (
    PartNumberChoice,
    PartNumberResolver,
    collect_candidates,
    extract_candidates,
    looks_valid_part_number,
    normalize_part_number,
    pick_heuristic_candidate,
    score_candidate,
)


def _ocr_from_text(text: str, part_number=None) -> OCRResult:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return OCRResult(raw_text=text, detected_texts=lines, part_number=part_number, confidence=80)


def _backend_client(choice=None, error=None):
    client = MagicMock()
    client.available = True
    if error is not None:
        client.complete_structured.side_effect = error
    else:
        client.complete_structured.return_value = StructuredResponse(
            data=choice, model="gpt-4.1-mini", response_id="resp_1", usage=None
        )
    return client


def test_normalize_strips_and_uppercases():
    assert normalize_part_number("  gm-45123.789 ") == "GM-45123789"
    assert normalize_part_number("ab_12/cd#") == "AB_12/CD"


@pytest.mark.parametrize(
    "value, valid",
    [
        ("GM-45123", True),
        ("abc1", True),
        ("AB1", False),  # too short
        ("A1" * 13, False),  # too long
        ("12345678", False),  # no letter
        ("FRONT", False),  # no digit
        ("AB 123", False),  # space not allowed
        ("", False),
        (None, False),
    ],
)
def test_looks_valid_part_number(value, valid):
    assert looks_valid_part_number(value) is valid


def test_label_line_excludes_stoplist_words():
    """Test the P/N label scenario: stoplist words never become candidates."""
    candidates = extract_candidates("P/N: GM-45123-789 FRONT LEFT")

    assert candidates == ["GM-45123-789"]


def test_secondary_pattern_after_primary():
    candidates = extract_candidates("BOSCH 0280B 12-AB34 ZX9000")

    assert candidates == ["12-AB34", "ZX9000"]


def test_collect_candidates_order_and_dedup():
    ocr = OCRResult(
        raw_text="ACD123456\nGM-45123",
        detected_texts=["GM-45123", "ACD123456"],
        part_number="sim-ab12-xyz",
    )

    assert collect_candidates(ocr) == ["SIM-AB12-XYZ", "GM-45123", "ACD123456"]


def test_score_candidate_components():
    assert score_candidate("GM-45123-789").score == 4 + 4 + 2 + 6
    assert score_candidate("AB12").score == 4
    assert score_candidate("123456").score == 2 - 3
    assert score_candidate("###").score == float("-inf")


def test_digits_only_never_beats_mixed():
    assert pick_heuristic_candidate(["12345678", "AB345678"]) == "AB345678"


def test_heuristic_ties_go_to_first_seen():
    assert pick_heuristic_candidate(["AB1234", "CD5678"]) == "AB1234"
    assert pick_heuristic_candidate(["CD5678", "AB1234"]) == "CD5678"


def test_heuristic_is_deterministic():
    candidates = ["ZX9000", "GM-45123-789", "12-AB34"]

    winners = {pick_heuristic_candidate(candidates) for _ in range(10)}

    assert winners == {"GM-45123-789"}


def test_explicit_part_number_wins():
    client = _backend_client(PartNumberChoice(partNumber="OTHER-1", confidence=99))
    resolver = PartNumberResolver(client)
    ocr = _ocr_from_text("P/N: GM-45123-789")

    first = resolver.resolve(ocr, provided_part_number=" acd 12-34x ")
    second = resolver.resolve(ocr, provided_part_number=" acd 12-34x ")

    assert first == second == "ACD12-34X"
    client.complete_structured.assert_not_called()


def test_resolve_without_backend_uses_heuristic():
    resolver = PartNumberResolver()

    assert resolver.resolve(_ocr_from_text("P/N: GM-45123-789 FRONT LEFT")) == "GM-45123-789"


def test_resolve_without_candidates_falls_back_to_ocr_field():
    ocr = OCRResult(raw_text="FRONT LEFT", detected_texts=["FRONT LEFT"], part_number="??")

    assert PartNumberResolver().resolve(ocr) == "??"


def test_backend_choice_is_accepted():
    client = _backend_client(PartNumberChoice(partNumber=" zx9000 ", confidence=72, reasoning="stamped code"))
    resolver = PartNumberResolver(client)
    vehicle = VehicleContext(make="Chevrolet", model="Equinox", year=2018)

    result = resolver.resolve(_ocr_from_text("ZX9000\nGM-45123-789"), vehicle=vehicle)

    assert result == "ZX9000"
    kwargs = client.complete_structured.call_args.kwargs
    assert kwargs["schema_name"] == "part_number_selection"
    assert "1. ZX9000" in kwargs["user_prompt"]
    assert "Make: Chevrolet" in kwargs["user_prompt"]


def test_empty_backend_choice_defers_to_heuristic():
    client = _backend_client(PartNumberChoice(partNumber="", confidence=0))

    result = PartNumberResolver(client).resolve(_ocr_from_text("ZX9000\nGM-45123-789"))

    assert result == "GM-45123-789"


@pytest.mark.parametrize(
    "error", [BackendCallFailure("timeout"), OutputValidationFailure("bad json"), RuntimeError("surprise")]
)
def test_backend_failure_defers_to_heuristic(error):
    client = _backend_client(error=error)

    result = PartNumberResolver(client).resolve(_ocr_from_text("P/N: GM-45123-789"))

    assert result == "GM-45123-789"


def test_select_with_backend_reports_failure():
    client = _backend_client(error=BackendCallFailure("connection reset"))

    selection = PartNumberResolver(client).select_with_backend(["AB1234"], fallback=None)

    assert selection.part_number == "AB1234"
    assert selection.used_real_backend is False
    assert selection.confidence == 0
    assert "connection reset" in selection.reasoning


def test_backend_not_called_without_candidates():
    client = _backend_client(PartNumberChoice(partNumber="X", confidence=1))

    PartNumberResolver(client).resolve(_ocr_from_text("GENUINE PART"))

    client.complete_structured.assert_not_called()
