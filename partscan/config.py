"""Runtime settings, read once from the environment."""

import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, TypeVar

from partscan.processing.errors import ConfigurationError


T = TypeVar("T")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Immutable pipeline configuration."""

    # Generative backend
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: str = "gpt-4.1-mini"
    openai_vision_model: Optional[str] = None
    openai_temperature: Optional[float] = None
    openai_proxy: Optional[str] = None
    backend_timeout: Optional[float] = None

    # OCR backends
    use_native_tesseract: bool = False
    tesseract_binary: str = "tesseract"
    tesseract_psm: str = "6"
    use_embedded_ocr: bool = False
    embedded_ocr_lang: str = "en"
    use_cloud_ocr: bool = True
    simulate_ocr: bool = True

    # Batching and scheduling
    ocr_max_images: int = 3
    ocr_concurrency: int = 1

    # Preprocessing
    preprocess_images: bool = True
    preprocess_max_dimension: int = 1800

    @property
    def has_credential(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def vision_model(self) -> str:
        return self.openai_vision_model or self.openai_model

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from. Defaults to os.environ.

        Raises:
            ConfigurationError: If a value cannot be parsed.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        return cls(
            openai_api_key=_get(env, "OPENAI_API_KEY", str, None),
            openai_base_url=_get(env, "OPENAI_BASE_URL", str, None),
            openai_model=_get(env, "OPENAI_MODEL", str, defaults.openai_model),
            openai_vision_model=_get(env, "OPENAI_VISION_MODEL", str, None),
            openai_temperature=_get(env, "OPENAI_TEMPERATURE", float, None),
            openai_proxy=_get(env, "OPENAI_PROXY", str, None),
            backend_timeout=_get(env, "BACKEND_TIMEOUT", float, None),
            use_native_tesseract=_get(env, "USE_NATIVE_TESSERACT", _parse_bool, defaults.use_native_tesseract),
            tesseract_binary=_get(env, "TESSERACT_BINARY", str, defaults.tesseract_binary),
            tesseract_psm=_get(env, "TESSERACT_PSM", str, defaults.tesseract_psm),
            use_embedded_ocr=_get(env, "USE_EMBEDDED_OCR", _parse_bool, defaults.use_embedded_ocr),
            embedded_ocr_lang=_get(env, "EMBEDDED_OCR_LANG", str, defaults.embedded_ocr_lang),
            use_cloud_ocr=_get(env, "USE_CLOUD_OCR", _parse_bool, defaults.use_cloud_ocr),
            simulate_ocr=_get(env, "SIMULATE_OCR", _parse_bool, defaults.simulate_ocr),
            ocr_max_images=_get(env, "OCR_MAX_IMAGES", int, defaults.ocr_max_images),
            ocr_concurrency=_get(env, "OCR_CONCURRENCY", int, defaults.ocr_concurrency),
            preprocess_images=_get(env, "PREPROCESS_IMAGES", _parse_bool, defaults.preprocess_images),
            preprocess_max_dimension=_get(
                env, "PREPROCESS_MAX_DIMENSION", int, defaults.preprocess_max_dimension
            ),
        )


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _get(env: Mapping[str, str], key: str, parse: Callable[[str], T], default: Optional[T]) -> Optional[T]:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return parse(raw.strip())
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {key}: {raw!r} ({e})") from e
