"""Request-scoped datastructures for the listing pipeline."""

import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Optional, Union


UNKNOWN_VEHICLE = "Unknown Vehicle"


@dataclass
class UploadedImage:
    """A single uploaded photo."""

    filename: str
    data: bytes


@dataclass
class OCRResult:
    """Text extracted from one image batch."""

    raw_text: str = ""
    detected_texts: list[str] = field(default_factory=list)
    part_number: Optional[str] = None
    vehicle_info: Optional[str] = None
    confidence: int = 0
    engine: Optional[str] = None

    def __post_init__(self):
        self.confidence = clamp_confidence(self.confidence)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BackendOutput:
    """Raw output of one OCR backend, one text per image."""

    texts: list[str]
    confidence: Optional[float] = None
    part_number: Optional[str] = None
    vehicle_info: Optional[str] = None


@dataclass
class PartNumberCandidate:
    """A scored part-number candidate."""

    raw_value: str
    normalized_value: str
    score: float


@dataclass
class PartNumberSelection:
    """Outcome of asking the generative backend to pick a part number."""

    part_number: Optional[str]
    confidence: int = 0
    reasoning: Optional[str] = None
    used_real_backend: bool = False


@dataclass(frozen=True)
class VehicleContext:
    """Vehicle the part was pulled from. Never mutated by the pipeline."""

    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[Union[int, str]] = None
    vin: Optional[str] = None

    def describe(self, fallback: Optional[str] = None) -> str:
        """Return "year make model", the fallback, or "Unknown Vehicle"."""
        segments = [str(self.year) if self.year else None, self.make or None, self.model or None]
        segments = [s for s in segments if s]
        if segments:
            return " ".join(segments)
        return fallback or UNKNOWN_VEHICLE

    def detail_lines(self) -> list[str]:
        lines = []
        if self.year:
            lines.append(f"Year: {self.year}")
        if self.make:
            lines.append(f"Make: {self.make}")
        if self.model:
            lines.append(f"Model: {self.model}")
        if self.vin:
            lines.append(f"VIN: {self.vin}")
        return lines

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["VehicleContext"]:
        if not data:
            return None
        return cls(
            make=data.get("make"),
            model=data.get("model"),
            year=data.get("year"),
            vin=data.get("vin"),
        )


def describe_vehicle(vehicle: Optional[VehicleContext], fallback: Optional[str] = None) -> str:
    if vehicle is None:
        return fallback or UNKNOWN_VEHICLE
    return vehicle.describe(fallback)


@dataclass
class CompatibilityEntry:
    """One vehicle fitment the part is known or assumed to fit."""

    year: str
    make: str
    model: str
    verified: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    source: Optional[str] = None
    source_url: Optional[str] = None

    def summary_line(self) -> str:
        status = "verified" if self.verified else "unverified"
        return f"{self.year} {self.make} {self.model} ({status})"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CompatibilityEntry":
        kwargs = {
            "year": str(data.get("year", "")),
            "make": data.get("make", ""),
            "model": data.get("model", ""),
            "verified": bool(data.get("verified", False)),
            "source": data.get("source"),
            "source_url": data.get("source_url") or data.get("sourceUrl"),
        }
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        return cls(**kwargs)


@dataclass
class ListingSuggestion:
    """Title, description and prices proposed for a listing."""

    title: str
    description: str
    suggested_prices: list[float]
    used_real_backend: bool
    model: Optional[str] = None
    meta: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class GenerateRequest:
    """Inputs for one listing generation."""

    images: list[UploadedImage] = field(default_factory=list)
    part_number: Optional[str] = None
    vehicle: Optional[VehicleContext] = None
    compatibility: list[CompatibilityEntry] = field(default_factory=list)
    existing_title: Optional[str] = None
    existing_description: Optional[str] = None


@dataclass
class GenerateResult:
    """Suggestion payload returned to the caller."""

    ocr: OCRResult
    suggestion: ListingSuggestion
    compatibility: list[CompatibilityEntry]
    inferred_part_number: Optional[str]
    images: list[str]

    def to_dict(self) -> dict:
        return {
            "ocr": self.ocr.to_dict(),
            "suggestion": self.suggestion.to_dict(),
            "compatibility": [entry.to_dict() for entry in self.compatibility],
            "inferred_part_number": self.inferred_part_number,
            "images": list(self.images),
        }


def clamp_confidence(value) -> int:
    """Clamp a confidence value to an integer in [0, 100]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if number != number:  # NaN
        return 0
    return int(round(max(0.0, min(100.0, number))))
