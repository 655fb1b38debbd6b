"""End-to-end tests for the listing pipeline."""

import json
from unittest.mock import MagicMock, patch

import pytest

from partscan.config import Settings
from partscan.processing.errors import ConfigurationError
from partscan.processing.models import (
    BackendOutput,
    CompatibilityEntry,
    GenerateRequest,
    UploadedImage,
    VehicleContext,
)
from partscan.processing.ocr import OCROrchestrator
from partscan.processing.pipeline import ListingPipeline, synthesize_compatibility


class LabelBackend:
    """Backend returning fixed label text."""

    name = "label"

    def __init__(self, text):
        self.text = text
        self.calls = 0

    def is_available(self):
        return True

    def recognize(self, images):
        self.calls += 1
        return BackendOutput(texts=[self.text for _ in images])


def _pipeline(text, settings=None):
    backend = LabelBackend(text)
    orchestrator = OCROrchestrator([backend], preprocess=False)
    return ListingPipeline(settings or Settings(), orchestrator=orchestrator), backend


def test_label_scenario_without_backend():
    """Test that the P/N label line resolves to the part number without stoplist words."""
    pipeline, _ = _pipeline("GENUINE GM PARTS\nP/N: GM-45123-789 FRONT LEFT")
    request = GenerateRequest(
        images=[UploadedImage(filename="label.jpg", data=b"")],
        vehicle=VehicleContext(make="Chevrolet", model="Equinox", year=2018),
    )

    with pipeline:
        result = pipeline.generate(request)

    assert result.inferred_part_number == "GM-45123-789"
    assert result.ocr.part_number == "GM-45123-789"
    assert result.suggestion.title == "2018 Chevrolet Equinox Component - OEM GM-45123-789"
    assert result.suggestion.used_real_backend is False
    assert result.images == ["label.jpg"]
    assert len(result.compatibility) == 1
    entry = result.compatibility[0]
    assert (entry.year, entry.make, entry.model, entry.verified) == ("2018", "Chevrolet", "Equinox", False)


def test_explicit_part_number_overrides_ocr():
    pipeline, _ = _pipeline("P/N: GM-45123-789")

    with pipeline:
        result = pipeline.generate(
            GenerateRequest(images=[UploadedImage(filename="a.jpg", data=b"")], part_number="acd-99887")
        )

    assert result.inferred_part_number == "ACD-99887"
    assert "ACD-99887" in result.suggestion.title


def test_no_images_skips_ocr():
    pipeline, backend = _pipeline("unused")

    with pipeline:
        result = pipeline.generate(GenerateRequest())

    assert backend.calls == 0
    assert result.ocr.confidence == 0
    assert result.inferred_part_number == "GEN-1234"
    assert result.suggestion.title == "Unknown Vehicle Component - OEM GEN-1234"
    assert result.compatibility == []


def test_supplied_compatibility_is_passed_through():
    pipeline, _ = _pipeline("ZX9000")
    supplied = [CompatibilityEntry(year="2015-2017", make="Ford", model="F-150", verified=True, id="c1")]

    with pipeline:
        result = pipeline.generate(
            GenerateRequest(images=[UploadedImage(filename="a.jpg", data=b"")], compatibility=supplied)
        )

    assert result.compatibility == supplied


def test_simulated_ocr_feeds_compatibility():
    with ListingPipeline(Settings(use_cloud_ocr=False, preprocess_images=False)) as pipeline:
        result = pipeline.generate(GenerateRequest(images=[UploadedImage(filename="hub.png", data=b"")]))

    assert result.ocr.engine == "simulated"
    assert result.inferred_part_number == "SIM-HUB.-XYZ"
    entry = result.compatibility[0]
    assert (entry.year, entry.make, entry.model) == ("2018-2022", "Chevrolet", "Equinox")


@pytest.mark.parametrize("text, expected", [(None, 0), ("", 0), ("Unknown Vehicle", 0), ("Equinox", 0), ("2018 Ford", 1)])
def test_synthesize_compatibility(text, expected):
    entries = synthesize_compatibility(text)

    assert len(entries) == expected
    if entries:
        assert entries[0].model == "Model"


def test_recognize_goes_through_scheduler():
    pipeline, backend = _pipeline("BOSCH 0280-1234")

    with pipeline:
        with patch.object(pipeline.scheduler, "submit", wraps=pipeline.scheduler.submit) as submit:
            result = pipeline.recognize([UploadedImage(filename="a.jpg", data=b"")])

    assert submit.call_count == 1
    assert result.engine == "label"


def test_invalid_concurrency_is_fatal():
    with pytest.raises(ConfigurationError):
        ListingPipeline(Settings(ocr_concurrency=0))


def test_malformed_generation_reply_falls_back_to_mock():
    """Test that malformed JSON from the backend yields the mock listing with a recorded reason."""
    completion = MagicMock()
    completion.choices = [MagicMock(message=MagicMock(content="{'title': oops"))]
    completion.usage = None
    sdk_client = MagicMock()
    sdk_client.chat.completions.create.return_value = completion

    settings = Settings(openai_api_key="sk-test-1234567890", use_cloud_ocr=False)
    pipeline, _ = _pipeline("P/N: GM-45123", settings=settings)

    with patch("partscan.processing.llm_client.openai.OpenAI", return_value=sdk_client):
        with pipeline:
            result = pipeline.generate(
                GenerateRequest(
                    images=[UploadedImage(filename="a.jpg", data=b"")],
                    part_number="GM-45123",
                    vehicle=VehicleContext(make="Chevrolet", model="Equinox", year=2018),
                )
            )

    suggestion = result.suggestion
    assert suggestion.used_real_backend is False
    assert suggestion.suggested_prices == [59.99, 64.99, 79.99]
    assert suggestion.meta["error"]
    assert suggestion.title == "2018 Chevrolet Equinox Component - OEM GM-45123"
    json.dumps(result.to_dict())
