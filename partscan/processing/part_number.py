"""Part-number extraction, scoring and AI arbitration."""

import logging
import re
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import PartScanError
from .llm_client import GenerativeClient
from .models import OCRResult, PartNumberCandidate, PartNumberSelection, VehicleContext


logger = logging.getLogger(__name__)

IGNORED_TOKENS = frozenset(
    {
        "GENUINE",
        "PART",
        "ASSEMBLY",
        "ASSY",
        "OEM",
        "QUALITY",
        "FRONT",
        "REAR",
        "LEFT",
        "RIGHT",
        "DRIVER",
        "PASSENGER",
        "SIDE",
        "UPPER",
        "LOWER",
        "FIT",
        "FOR",
        "LHD",
        "RHD",
    }
)

# Order matters: primary matches are collected before secondary ones, and the
# label scan runs last. Tie-breaking depends on this insertion order.
PRIMARY_PATTERN = re.compile(r"(?<![A-Z0-9])([A-Z0-9]{2,}(?:[-_/][A-Z0-9]{2,})+)(?![A-Z0-9])", re.IGNORECASE)
SECONDARY_PATTERN = re.compile(r"(?<![A-Z0-9])([A-Z][A-Z0-9]{4,})(?![A-Z0-9])", re.IGNORECASE)
LABEL_PATTERN = re.compile(r"P/N[:\s-]+([A-Z0-9\-_/]+)", re.IGNORECASE)

_ALLOWED = re.compile(r"^[A-Z0-9\-_/]+$")
_DISALLOWED_CHARS = re.compile(r"[^A-Z0-9\-_/]")
_HAS_LETTER = re.compile(r"[A-Z]")
_HAS_DIGIT = re.compile(r"[0-9]")

SELECTION_SYSTEM_PROMPT = (
    "You are an expert automotive parts catalog analyst. You only return data you are confident about."
)


class PartNumberChoice(BaseModel):
    """Structured reply for part-number arbitration."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    part_number: str = Field(..., alias="partNumber", description="The single best part number, or empty.")
    confidence: int = Field(..., ge=0, le=100, description="Certainty from 0 to 100.")
    reasoning: Optional[str] = Field(default=None, description="Short justification.")


def normalize_part_number(raw: str) -> str:
    """Uppercase and strip everything outside ``[A-Z0-9-_/]``."""
    return _DISALLOWED_CHARS.sub("", raw.strip().upper())


def looks_valid_part_number(value: Optional[str]) -> bool:
    if not value:
        return False
    upper = value.strip().upper()
    if len(upper) < 4 or len(upper) > 24:
        return False
    if not _HAS_LETTER.search(upper) or not _HAS_DIGIT.search(upper):
        return False
    if not _ALLOWED.match(upper):
        return False
    return upper not in IGNORED_TOKENS


def score_candidate(raw: str) -> PartNumberCandidate:
    normalized = normalize_part_number(raw)
    if not normalized:
        return PartNumberCandidate(raw_value=raw, normalized_value=normalized, score=float("-inf"))

    score = 0
    if any(sep in normalized for sep in "-_/"):
        score += 4
    if _HAS_LETTER.search(normalized) and _HAS_DIGIT.search(normalized):
        score += 4
    if 6 <= len(normalized) <= 18:
        score += 2
    if normalized.isdigit():
        score -= 3
    if normalized in IGNORED_TOKENS:
        score -= 5
    score += max(0, min(len(normalized) - 6, 6))

    return PartNumberCandidate(raw_value=raw, normalized_value=normalized, score=score)


def extract_candidates(text: str, accumulator: Optional[dict[str, None]] = None) -> list[str]:
    """Collect normalized candidates from free text, preserving first-seen order.

    ``accumulator`` is an insertion-ordered dict used as a set so candidates
    can be gathered across several texts.
    """
    found = accumulator if accumulator is not None else {}
    if not text:
        return list(found)

    for pattern in (PRIMARY_PATTERN, SECONDARY_PATTERN):
        for match in pattern.finditer(text):
            candidate = match.group(1)
            if looks_valid_part_number(candidate):
                found.setdefault(normalize_part_number(candidate), None)

    label = LABEL_PATTERN.search(text)
    if label and looks_valid_part_number(label.group(1)):
        found.setdefault(normalize_part_number(label.group(1)), None)

    return list(found)


def collect_candidates(ocr: OCRResult) -> list[str]:
    found: dict[str, None] = {}

    if ocr.part_number:
        cleaned = normalize_part_number(ocr.part_number)
        if looks_valid_part_number(cleaned):
            found.setdefault(cleaned, None)

    for text in ocr.detected_texts:
        extract_candidates(text, found)
    if ocr.raw_text:
        extract_candidates(ocr.raw_text, found)

    return list(found)


def pick_heuristic_candidate(candidates: Iterable[str]) -> Optional[str]:
    """Return the highest scoring candidate; ties go to the earliest one."""
    best: Optional[PartNumberCandidate] = None
    for value in candidates:
        scored = score_candidate(value)
        if scored.score == float("-inf"):
            continue
        if best is None or scored.score > best.score:
            best = scored
    return best.normalized_value if best else None


def guess_part_number(text: str) -> Optional[str]:
    """Cheap, non-authoritative part-number guess from raw OCR text."""
    return pick_heuristic_candidate(extract_candidates(text))


class PartNumberResolver:
    """Reconcile noisy OCR text into a single part number."""

    def __init__(self, client: Optional[GenerativeClient] = None, temperature: float = 0.1):
        self.client = client
        self.temperature = temperature

    @property
    def backend_enabled(self) -> bool:
        return self.client is not None and self.client.available

    def resolve(
        self,
        ocr: OCRResult,
        provided_part_number: Optional[str] = None,
        vehicle: Optional[VehicleContext] = None,
    ) -> Optional[str]:
        if provided_part_number and provided_part_number.strip():
            return normalize_part_number(provided_part_number)

        candidates = collect_candidates(ocr)
        heuristic = pick_heuristic_candidate(candidates)
        fallback = heuristic or ocr.part_number

        if not candidates or not self.backend_enabled:
            return fallback

        selection = self.select_with_backend(candidates, ocr.raw_text, vehicle, fallback)
        return selection.part_number or fallback

    def select_with_backend(
        self,
        candidates: list[str],
        raw_text: Optional[str] = None,
        vehicle: Optional[VehicleContext] = None,
        fallback: Optional[str] = None,
    ) -> PartNumberSelection:
        """Ask the generative backend to pick the most probable candidate.

        Never raises; any failure defers to ``fallback`` (or the first
        candidate) with ``used_real_backend=False``.
        """
        if not candidates:
            return PartNumberSelection(part_number=fallback)
        if not self.backend_enabled:
            return PartNumberSelection(part_number=fallback or candidates[0])

        prompt = self._build_prompt(candidates, raw_text, vehicle)
        try:
            response = self.client.complete_structured(
                system_prompt=SELECTION_SYSTEM_PROMPT,
                user_prompt=prompt,
                response_model=PartNumberChoice,
                schema_name="part_number_selection",
                temperature=self.temperature,
            )
        except PartScanError as e:
            logger.error(f"Part number selection failed, falling back: {e}")
            return PartNumberSelection(part_number=fallback or candidates[0], reasoning=str(e))
        except Exception as e:
            logger.error(f"Unexpected error during part number selection, falling back: {e}")
            return PartNumberSelection(part_number=fallback or candidates[0], reasoning=str(e))

        choice: PartNumberChoice = response.data
        part_number = choice.part_number.strip().upper()
        logger.debug(f"Backend picked {part_number!r} with confidence {choice.confidence}")
        return PartNumberSelection(
            part_number=part_number or fallback,
            confidence=choice.confidence,
            reasoning=choice.reasoning,
            used_real_backend=True,
        )

    @staticmethod
    def _build_prompt(candidates: list[str], raw_text: Optional[str], vehicle: Optional[VehicleContext]) -> str:
        numbered = "\n".join(f"{i + 1}. {c}" for i, c in enumerate(candidates))
        vehicle_lines = vehicle.detail_lines() if vehicle else []
        sections = [
            "You analyze OCR outputs from automotive part labels.",
            "Select the most probable OEM or manufacturer part number from the candidates.",
            "Return the single best part number if confident; otherwise leave it empty.",
            f"Candidates:\n{numbered}",
            f"Full OCR text:\n{raw_text}" if raw_text else "",
            "Vehicle context:\n" + "\n".join(vehicle_lines) if vehicle_lines else "",
            "If no candidate appears valid, respond with an empty part number and confidence 0.",
            "Confidence should be an integer 0-100 indicating certainty.",
        ]
        return "\n\n".join(s for s in sections if s)
