"""AI listing generation with a deterministic mock fallback."""

import logging
from typing import Annotated, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .errors import PartScanError
from .llm_client import GenerativeClient
from .models import CompatibilityEntry, ListingSuggestion, OCRResult, VehicleContext, describe_vehicle


logger = logging.getLogger(__name__)

DEFAULT_PART_NUMBER = "GEN-1234"
MOCK_MODEL = "mock-local"
MOCK_PRICES = (59.99, 64.99, 79.99)

LISTING_SYSTEM_PROMPT = (
    "You are an assistant helping automotive parts sellers prepare eBay Motors listings. "
    "Keep the tone professional and factual."
)

FinitePrice = Annotated[float, Field(allow_inf_nan=False)]


class ListingDraftResponse(BaseModel):
    """Structured reply for listing generation."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: str = Field(..., min_length=10, max_length=110, description="Listing title.")
    description: str = Field(..., min_length=50, max_length=2000, description="Listing description.")
    suggested_prices: list[FinitePrice] = Field(
        ..., alias="suggestedPrices", min_length=1, max_length=3, description="1-3 USD prices, ascending."
    )


def mock_title(vehicle_info: str, part_number: str, existing_title: Optional[str] = None) -> str:
    return existing_title or f"{vehicle_info} Component - OEM {part_number}"


def mock_description(vehicle_info: str, part_number: str, existing_description: Optional[str] = None) -> str:
    return existing_description or (
        f"Mock description for {vehicle_info} (part {part_number}). "
        "Add real details after enabling OpenAI API key."
    )


def mock_prices() -> list[float]:
    return list(MOCK_PRICES)


class ListingGenerator:
    """Turn OCR, vehicle and fitment context into a listing suggestion."""

    def __init__(self, client: Optional[GenerativeClient] = None, model: Optional[str] = None, temperature: float = 0.4):
        self.client = client
        self.model = model or (client.model if client is not None else None)
        self.temperature = temperature

    @property
    def backend_enabled(self) -> bool:
        return self.client is not None and self.client.available

    def generate(
        self,
        ocr: OCRResult,
        part_number: Optional[str] = None,
        vehicle: Optional[VehicleContext] = None,
        existing_title: Optional[str] = None,
        existing_description: Optional[str] = None,
        compatibility: Optional[Sequence[CompatibilityEntry]] = None,
    ) -> ListingSuggestion:
        """Return a fully populated suggestion. Never raises."""
        part_number = part_number or ocr.part_number or DEFAULT_PART_NUMBER
        vehicle_info = describe_vehicle(vehicle, ocr.vehicle_info)

        if not self.backend_enabled:
            return self._mock(vehicle_info, part_number, existing_title, existing_description, model=MOCK_MODEL)

        prompt = self.build_prompt(
            ocr, part_number, vehicle_info, vehicle, existing_title, existing_description, compatibility or []
        )

        try:
            response = self.client.complete_structured(
                system_prompt=LISTING_SYSTEM_PROMPT,
                user_prompt=prompt,
                response_model=ListingDraftResponse,
                schema_name="listing_suggestion",
                temperature=self.temperature,
                model=self.model,
            )
        except Exception as e:
            if isinstance(e, PartScanError):
                logger.error(f"Listing generation failed, falling back to mock: {e}")
            else:
                logger.exception(f"Unexpected error during listing generation, falling back to mock: {e}")
            return self._mock(
                vehicle_info,
                part_number,
                existing_title,
                existing_description,
                model=self.model,
                meta={"error": str(e), "attemptedModel": self.model},
            )

        draft: ListingDraftResponse = response.data
        prices = list(draft.suggested_prices) or mock_prices()
        return ListingSuggestion(
            title=draft.title,
            description=draft.description,
            suggested_prices=prices,
            used_real_backend=True,
            model=response.model or self.model,
            meta={"response_id": response.response_id, "usage": response.usage},
        )

    @staticmethod
    def _mock(
        vehicle_info: str,
        part_number: str,
        existing_title: Optional[str],
        existing_description: Optional[str],
        model: Optional[str],
        meta: Optional[dict] = None,
    ) -> ListingSuggestion:
        return ListingSuggestion(
            title=mock_title(vehicle_info, part_number, existing_title),
            description=mock_description(vehicle_info, part_number, existing_description),
            suggested_prices=mock_prices(),
            used_real_backend=False,
            model=model,
            meta=meta,
        )

    @staticmethod
    def build_prompt(
        ocr: OCRResult,
        part_number: str,
        vehicle_info: str,
        vehicle: Optional[VehicleContext],
        existing_title: Optional[str],
        existing_description: Optional[str],
        compatibility: Sequence[CompatibilityEntry],
    ) -> str:
        compatibility_summary = "\n".join(entry.summary_line() for entry in compatibility)
        detected = "\n".join(f"{i + 1}. {line}" for i, line in enumerate(ocr.detected_texts))
        vehicle_details = "\n".join(vehicle.detail_lines()) if vehicle else ""

        sections = [
            "You create concise, high-conversion eBay Motors part listings.",
            f"Vehicle info: {vehicle_info}",
            f"Vehicle details:\n{vehicle_details}" if vehicle_details else "",
            f"Part number: {part_number}",
            f"OCR extracted text:\n{ocr.raw_text or 'N/A'}",
            f"OCR detected lines:\n{detected}" if detected else "",
            f"Existing title: {existing_title}" if existing_title else "",
            f"Existing description: {existing_description}" if existing_description else "",
            (
                f"Existing compatibility entries:\n{compatibility_summary}"
                if compatibility_summary
                else "No compatibility provided."
            ),
            "Return polished strings focused on fitment, condition, and selling points.",
            "Suggested prices must be an array of 2-3 realistic USD prices ordered ascending.",
        ]
        return "\n\n".join(s for s in sections if s)
