"""OCR orchestration across native, embedded, cloud and simulated backends."""

import functools
import io
import logging
import re
import subprocess
from typing import Optional, Protocol, Sequence

import numpy as np
import pytesseract
from PIL import Image

from partscan.config import Settings

from .errors import BackendCallFailure
from .llm_client import GenerativeClient
from .models import BackendOutput, OCRResult, UploadedImage, clamp_confidence
from .part_number import guess_part_number
from .preprocess import DEFAULT_MAX_DIMENSION, preprocess_image


logger = logging.getLogger(__name__)

IMAGE_SEPARATOR = "\n---\n"
DEFAULT_MAX_IMAGES = 3

CLOUD_OCR_SYSTEM_PROMPT = (
    "You are an OCR engine for photos of automotive parts and their labels. "
    "You return only the raw recognized text, without interpretation or explanation."
)
CLOUD_OCR_PROMPT = (
    "Transcribe every piece of text visible in this photo of an automotive part, "
    "including part numbers, brand names and stamped or printed codes. "
    "Keep one label line per output line."
)


class OCRBackend(Protocol):
    """One OCR engine tried by the orchestrator."""

    @property
    def name(self) -> str:
        """Return a short identifier for this backend."""
        ...

    def is_available(self) -> bool:
        """Return False when the engine, binary or credential is missing."""
        ...

    def recognize(self, images: Sequence[UploadedImage]) -> BackendOutput:
        """Return one text per image. Raises BackendCallFailure on errors."""
        ...


def estimate_confidence(text: str) -> int:
    """Heuristic confidence from the amount of extracted text."""
    length = len(text.strip())
    if length == 0:
        return 0
    if length < 10:
        return 35
    if length < 30:
        return 60
    if length < 80:
        return 80
    return 90


def split_lines(text: str) -> list[str]:
    """Split combined OCR text into normalized, non-empty lines."""
    lines = []
    separator = IMAGE_SEPARATOR.strip()
    for line in text.splitlines():
        normalized = re.sub(r"\s+", " ", line).strip()
        if normalized and normalized != separator:
            lines.append(normalized)
    return lines


@functools.lru_cache(maxsize=None)
def probe_tesseract(binary: str) -> bool:
    """Check once per process whether the tesseract binary can be started."""
    try:
        subprocess.run([binary, "--version"], check=True, capture_output=True, timeout=30)
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"Native tesseract not found or failed to start: {e}")
        return False
    return True


class NativeTesseractBackend:
    """Runs the ``tesseract`` executable through pytesseract, once per image."""

    name = "tesseract"

    def __init__(self, binary: str = "tesseract", psm: str = "6", timeout: Optional[float] = None):
        self.binary = binary
        self.psm = psm
        self.timeout = timeout

    @property
    def config(self) -> str:
        return f"--psm {self.psm} -c preserve_interword_spaces=1"

    def is_available(self) -> bool:
        return probe_tesseract(self.binary)

    def recognize(self, images: Sequence[UploadedImage]) -> BackendOutput:
        pytesseract.pytesseract.tesseract_cmd = self.binary
        return BackendOutput(texts=[self._recognize_one(image.data) for image in images])

    def _recognize_one(self, data: bytes) -> str:
        try:
            with Image.open(io.BytesIO(data)) as image:
                rgb = image.convert("RGB")
            # pytesseract treats a timeout of 0 as no deadline
            return pytesseract.image_to_string(rgb, config=self.config, timeout=self.timeout or 0)
        except (OSError, ValueError, RuntimeError, pytesseract.TesseractError) as e:
            raise BackendCallFailure(f"tesseract failed: {e}") from e


def _collect_paddle_lines(ocr_result) -> tuple[list[str], list[float]]:
    """Pull text and scores out of either PaddleOCR result layout."""
    texts: list[str] = []
    scores: list[float] = []
    if not ocr_result:
        return texts, scores

    entry = ocr_result[0]
    if not entry:
        return texts, scores

    if isinstance(entry, dict):
        texts = [str(t) for t in entry.get("rec_texts") or []]
        scores = [float(s) for s in entry.get("rec_scores") or []]
        return texts, scores

    for detection in entry:
        if not detection or not isinstance(detection, (list, tuple)) or len(detection) < 2:
            continue
        text_info = detection[1]
        if not text_info or not isinstance(text_info, (list, tuple)):
            continue
        texts.append(str(text_info[0]))
        if len(text_info) > 1:
            scores.append(float(text_info[1]))
    return texts, scores


class PaddleOCRBackend:
    """In-process PaddleOCR engine, created per batch and released afterwards."""

    name = "paddleocr"

    def __init__(self, lang: str = "en"):
        self.lang = lang

    def is_available(self) -> bool:
        try:
            import paddleocr  # noqa: F401
        except ImportError:
            logger.debug("paddleocr is not installed")
            return False
        return True

    def recognize(self, images: Sequence[UploadedImage]) -> BackendOutput:
        from paddleocr import PaddleOCR

        engine = None
        try:
            engine = PaddleOCR(lang=self.lang, use_angle_cls=True, show_log=False)
            texts = []
            scores: list[float] = []
            for image in images:
                frame = self._to_array(image.data)
                lines, line_scores = _collect_paddle_lines(engine.ocr(frame, cls=True))
                texts.append("\n".join(lines))
                scores.extend(line_scores)
        except BackendCallFailure:
            raise
        except Exception as e:
            raise BackendCallFailure(f"paddleocr failed: {e}") from e
        finally:
            del engine

        confidence = sum(scores) / len(scores) * 100 if scores else None
        return BackendOutput(texts=texts, confidence=confidence)

    @staticmethod
    def _to_array(data: bytes) -> np.ndarray:
        try:
            with Image.open(io.BytesIO(data)) as img:
                rgb = np.array(img.convert("RGB"))
        except OSError as e:
            raise BackendCallFailure(f"Cannot decode image: {e}") from e
        # PaddleOCR expects BGR frames
        return rgb[:, :, ::-1]


class CloudVisionBackend:
    """Vision-capable chat model reached through the shared client."""

    name = "cloud-vision"

    def __init__(self, client: GenerativeClient):
        self.client = client

    def is_available(self) -> bool:
        return self.client.available

    def recognize(self, images: Sequence[UploadedImage]) -> BackendOutput:
        texts = [
            self.client.transcribe_image(image.data, CLOUD_OCR_PROMPT, system_prompt=CLOUD_OCR_SYSTEM_PROMPT)
            for image in images
        ]
        return BackendOutput(texts=texts)


class SimulatedBackend:
    """Deterministic placeholder keyed off the first filename."""

    name = "simulated"

    def is_available(self) -> bool:
        return True

    def recognize(self, images: Sequence[UploadedImage]) -> BackendOutput:
        seed = images[0].filename if images and images[0].filename else "UNKNOWN"
        return BackendOutput(
            texts=[f"SIMULATED OCR TEXT\nP/N: {seed}\nFRONT LEFT DRIVER SIDE"],
            confidence=0,
            part_number=f"SIM-{seed[:4].upper()}-XYZ",
            vehicle_info="2018-2022 Chevrolet Equinox",
        )


def build_default_backends(settings: Settings, client: Optional[GenerativeClient] = None) -> list[OCRBackend]:
    """Assemble the backend trial order enabled by ``settings``."""
    backends: list[OCRBackend] = []
    if settings.use_native_tesseract:
        backends.append(
            NativeTesseractBackend(
                binary=settings.tesseract_binary, psm=settings.tesseract_psm, timeout=settings.backend_timeout
            )
        )
    if settings.use_embedded_ocr:
        backends.append(PaddleOCRBackend(lang=settings.embedded_ocr_lang))
    if settings.use_cloud_ocr and client is not None:
        backends.append(CloudVisionBackend(client))
    if settings.simulate_ocr:
        backends.append(SimulatedBackend())
    return backends


class OCROrchestrator:
    """Try OCR backends in order and normalize the first usable output."""

    def __init__(
        self,
        backends: Sequence[OCRBackend],
        max_images: int = DEFAULT_MAX_IMAGES,
        preprocess: bool = True,
        max_dimension: int = DEFAULT_MAX_DIMENSION,
    ):
        self.backends = list(backends)
        self.max_images = max(1, max_images)
        self.preprocess = preprocess
        self.max_dimension = max_dimension

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[GenerativeClient] = None) -> "OCROrchestrator":
        return cls(
            build_default_backends(settings, client),
            max_images=settings.ocr_max_images,
            preprocess=settings.preprocess_images,
            max_dimension=settings.preprocess_max_dimension,
        )

    def recognize(self, images: Sequence[UploadedImage]) -> OCRResult:
        """Return an OCRResult for the batch. Never raises."""
        if not images:
            return OCRResult()

        batch = list(images[: self.max_images])
        if len(images) > len(batch):
            logger.info(f"Using first {len(batch)} of {len(images)} images for OCR")

        if self.preprocess:
            batch = [self._prepare(img) for img in batch]

        for backend in self.backends:
            try:
                if not backend.is_available():
                    logger.debug(f"OCR backend {backend.name} unavailable, skipping")
                    continue
                output = backend.recognize(batch)
            except BackendCallFailure as e:
                logger.warning(f"OCR backend {backend.name} failed: {e}")
                continue
            except Exception as e:
                logger.error(f"Unexpected error in OCR backend {backend.name}: {e}")
                continue

            result = self._build_result(output, backend.name)
            if result.detected_texts:
                logger.info(f"OCR produced {len(result.detected_texts)} lines via {backend.name}")
                return result
            logger.info(f"OCR backend {backend.name} returned no text, trying next")

        logger.warning("No OCR backend produced text")
        return OCRResult()

    def _prepare(self, image: UploadedImage) -> UploadedImage:
        try:
            data = preprocess_image(image.data, self.max_dimension)
        except Exception as e:
            logger.warning(f"Preprocessing {image.filename} failed, using original bytes: {e}")
            return image
        return UploadedImage(filename=image.filename, data=data)

    @staticmethod
    def _build_result(output: BackendOutput, engine: str) -> OCRResult:
        texts = [text.strip() for text in output.texts if text and text.strip()]
        combined = IMAGE_SEPARATOR.join(texts)

        if output.confidence is not None:
            confidence = clamp_confidence(output.confidence)
        else:
            confidence = estimate_confidence(combined)

        return OCRResult(
            raw_text=combined,
            detected_texts=split_lines(combined),
            part_number=output.part_number or guess_part_number(combined),
            vehicle_info=output.vehicle_info,
            confidence=confidence,
            engine=engine,
        )
