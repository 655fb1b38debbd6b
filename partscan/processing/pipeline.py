"""Top-level listing pipeline: OCR, part-number resolution, generation."""

import logging
from typing import Optional, Sequence

from partscan.config import Settings

from .listing import DEFAULT_PART_NUMBER, ListingGenerator
from .llm_client import GenerativeClient
from .models import (
    UNKNOWN_VEHICLE,
    CompatibilityEntry,
    GenerateRequest,
    GenerateResult,
    OCRResult,
    UploadedImage,
    describe_vehicle,
)
from .ocr import OCROrchestrator
from .part_number import PartNumberResolver
from .scheduler import JobScheduler


logger = logging.getLogger(__name__)


def synthesize_compatibility(vehicle_info: Optional[str]) -> list[CompatibilityEntry]:
    """Build at most one unverified entry from free-text vehicle info."""
    if not vehicle_info or vehicle_info == UNKNOWN_VEHICLE or " " not in vehicle_info.strip():
        return []
    words = vehicle_info.split()
    return [
        CompatibilityEntry(
            year=words[0],
            make=words[1],
            model=" ".join(words[2:]) or "Model",
            verified=False,
        )
    ]


class ListingPipeline:
    """Wire the scheduler, OCR orchestrator, resolver and generator together.

    One instance owns a single generative client and a single scheduler, both
    reused across requests.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[GenerativeClient] = None,
        orchestrator: Optional[OCROrchestrator] = None,
    ):
        self.settings = settings or Settings()
        self.client = client or GenerativeClient(self.settings)
        self.scheduler = JobScheduler(self.settings.ocr_concurrency)
        self.orchestrator = orchestrator or OCROrchestrator.from_settings(self.settings, self.client)

        temperature = self.settings.openai_temperature
        self.resolver = PartNumberResolver(self.client, temperature=0.1 if temperature is None else temperature)
        self.generator = ListingGenerator(
            self.client,
            model=self.settings.openai_model,
            temperature=0.4 if temperature is None else temperature,
        )

    def recognize(self, images: Sequence[UploadedImage]) -> OCRResult:
        """Run OCR for one batch through the scheduler and wait for it."""
        future = self.scheduler.submit(lambda: self.orchestrator.recognize(images))
        return future.result()

    def generate(self, request: GenerateRequest) -> GenerateResult:
        ocr = self.recognize(request.images) if request.images else OCRResult()

        resolved = self.resolver.resolve(ocr, request.part_number, request.vehicle)
        part_number = resolved or DEFAULT_PART_NUMBER
        if resolved:
            logger.info(f"Resolved part number: {part_number}")
        else:
            logger.info(f"No part number found, using placeholder {part_number}")

        compatibility = list(request.compatibility)
        if not compatibility:
            vehicle_info = describe_vehicle(request.vehicle, ocr.vehicle_info)
            compatibility = synthesize_compatibility(vehicle_info)

        suggestion = self.generator.generate(
            ocr,
            part_number=part_number,
            vehicle=request.vehicle,
            existing_title=request.existing_title,
            existing_description=request.existing_description,
            compatibility=compatibility,
        )

        return GenerateResult(
            ocr=ocr,
            suggestion=suggestion,
            compatibility=compatibility,
            inferred_part_number=part_number,
            images=[image.filename for image in request.images],
        )

    def close(self) -> None:
        self.scheduler.shutdown(wait=True)
        self.client.close()

    def __enter__(self) -> "ListingPipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
