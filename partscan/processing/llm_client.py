"""Shared handle to the OpenAI-compatible generative backend."""

import base64
import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Optional, Type, TypeVar

import httpx
import openai
from pydantic import BaseModel, ValidationError

from partscan.config import Settings

from .errors import BackendCallFailure, BackendUnavailable, OutputValidationFailure


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


@dataclass
class StructuredResponse:
    """Validated structured output plus response bookkeeping."""

    data: BaseModel
    model: Optional[str]
    response_id: Optional[str]
    usage: Optional[dict]


def mask_key(key: str) -> str:
    return key[:4] + "..." + key[-4:] if len(key) > 8 else key


def extract_json(raw_content: str) -> str:
    """Strip markdown code fences or surrounding prose from a JSON reply."""
    json_to_parse = raw_content.strip()
    match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", json_to_parse, re.DOTALL)
    if match:
        return match.group(1)
    start = json_to_parse.find("{")
    end = json_to_parse.rfind("}")
    if start != -1 and end != -1 and end > start:
        return json_to_parse[start : end + 1]
    return json_to_parse


def response_format_for(model_cls: Type[BaseModel], name: str) -> dict:
    return {
        "type": "json_schema",
        "json_schema": {
            "name": name,
            "schema": model_cls.model_json_schema(by_alias=True),
            "strict": True,
        },
    }


def image_data_url(data: bytes) -> str:
    mime = "image/png" if data.startswith(_PNG_SIGNATURE) else "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(data).decode('utf-8')}"


class GenerativeClient:
    """Lazily constructed, reused OpenAI client.

    One instance is created per pipeline and passed to every component that
    talks to the backend. The credential is checked once, when the underlying
    client is first built.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Optional[openai.OpenAI] = None
        self._http_client: Optional[httpx.Client] = None
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return self.settings.has_credential

    @property
    def model(self) -> str:
        return self.settings.openai_model

    def _get_client(self) -> openai.OpenAI:
        if self._client is not None:
            return self._client

        with self._lock:
            if self._client is not None:
                return self._client

            api_key = self.settings.openai_api_key
            if not api_key:
                raise BackendUnavailable("No OpenAI API key configured")

            proxy = self.settings.openai_proxy
            if proxy:
                try:
                    proxy_mounts = {
                        "http://": httpx.HTTPTransport(proxy=proxy),
                        "https://": httpx.HTTPTransport(proxy=proxy),
                    }
                    self._http_client = httpx.Client(mounts=proxy_mounts)
                except Exception as e:
                    logger.error(f"Failed to initialize proxy '{proxy}': {e}. Proceeding without proxy.")
                    self._http_client = httpx.Client()
            else:
                self._http_client = httpx.Client()

            endpoint = self.settings.openai_base_url
            logger.debug(
                f"Initializing OpenAI client with key {mask_key(api_key)} at endpoint {endpoint or 'default'}"
            )

            kwargs: dict[str, Any] = {"api_key": api_key, "base_url": endpoint, "http_client": self._http_client}
            if self.settings.backend_timeout is not None:
                kwargs["timeout"] = self.settings.backend_timeout
            self._client = openai.OpenAI(**kwargs)
            return self._client

    def complete_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: Type[M],
        schema_name: str,
        temperature: float,
        model: Optional[str] = None,
    ) -> StructuredResponse:
        """Request JSON output constrained to ``response_model``'s schema.

        Raises:
            BackendUnavailable: If no credential is configured.
            BackendCallFailure: If the request itself fails.
            OutputValidationFailure: If the reply is empty, unparsable or
                does not match the schema.
        """
        client = self._get_client()
        model_name = model or self.model

        try:
            completion = client.chat.completions.create(
                model=model_name,
                temperature=temperature,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                response_format=response_format_for(response_model, schema_name),
            )
        except Exception as e:
            logger.error(f"API request failed: {e}")
            raise BackendCallFailure(str(e)) from e

        raw_content = None
        if completion.choices and completion.choices[0].message:
            raw_content = completion.choices[0].message.content
        if not raw_content:
            raise OutputValidationFailure("Response did not include message content")

        try:
            data = json.loads(extract_json(raw_content))
            validated = response_model.model_validate(data)
        except (ValidationError, json.JSONDecodeError) as e:
            logger.debug(f"Raw JSON content from API: {raw_content}")
            raise OutputValidationFailure(f"Invalid structured output: {e}") from e

        usage = None
        if getattr(completion, "usage", None) is not None:
            usage = completion.usage.model_dump() if hasattr(completion.usage, "model_dump") else dict(completion.usage)

        return StructuredResponse(
            data=validated,
            model=getattr(completion, "model", None) or model_name,
            response_id=getattr(completion, "id", None),
            usage=usage,
        )

    def transcribe_image(self, data: bytes, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Ask the vision model for all text visible in one image.

        Raises:
            BackendUnavailable: If no credential is configured.
            BackendCallFailure: If the request fails.
        """
        client = self._get_client()
        model_name = self.settings.vision_model

        messages: list[dict] = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": image_data_url(data)}},
                ],
            }
        ]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})

        logger.debug(f"OCR request with model: {model_name}")
        try:
            response = client.chat.completions.create(model=model_name, messages=messages, temperature=0)
        except Exception as e:
            logger.error(f"OCR request failed: {e}")
            raise BackendCallFailure(str(e)) from e

        if response.choices and response.choices[0].message.content:
            return response.choices[0].message.content.strip()
        logger.warning("No text found in OCR response.")
        return ""

    def close(self) -> None:
        with self._lock:
            if self._http_client is not None:
                self._http_client.close()
            self._http_client = None
            self._client = None
