from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from foundry.config import settings
from foundry.llm.client import ChatUsage, LLMClient
from foundry.services import site_config
from foundry.services.ai_usage import safely_record_usage
from foundry.services.media_storage import MediaStorage

logger = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = "OpenAI API key not configured. Save it under Admin > AI assistant settings."
DEFAULT_IMAGE_SIZE = "1024x1024"
DEFAULT_IMAGE_QUALITY = "auto"
DEFAULT_IMAGE_BACKGROUND = "auto"
DEFAULT_IMAGE_FORMAT = "png"
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")

_CONTENT_TYPES = {"webp": "image/webp", "jpeg": "image/jpeg", "png": "image/png"}


class ImageKeyMissingError(RuntimeError):
    pass


@dataclass
class ImageRequest:
    prompt: str
    model: Optional[str] = None
    size: Optional[str] = None
    quality: Optional[str] = None
    background: Optional[str] = None
    output_format: Optional[str] = None
    filename_hint: Optional[str] = None


@dataclass
class StoredImage:
    blob_url: str
    name: str
    model: str
    usage: ChatUsage

    def to_payload(self) -> dict:
        return {
            "blobUrl": self.blob_url,
            "name": self.name,
            "model": self.model,
            "usage": self.usage.to_payload(),
        }


def slugify(value: str) -> str:
    return _SLUG_STRIP_RE.sub("-", value.strip().lower()).strip("-")


def extension_for(output_format: str) -> str:
    return "jpg" if output_format == "jpeg" else output_format


def content_type_for(output_format: str) -> str:
    return _CONTENT_TYPES.get(output_format, "image/png")


def build_image_name(prompt: str, filename_hint: Optional[str], output_format: str) -> str:
    base_name = slugify(filename_hint or prompt[:64]) or "ai-image"
    return f"{base_name}.{extension_for(output_format)}"


def _pick(*values: Optional[str]) -> str:
    for value in values:
        if value and value.strip():
            return value.strip()
    return ""


class ImageGenerator:
    """Generate an image with the stored OpenAI key and upload it to media storage."""

    def __init__(
        self,
        session: Session,
        *,
        llm_client: Optional[LLMClient] = None,
        storage: Optional[MediaStorage] = None,
    ) -> None:
        self.session = session
        self._llm_client = llm_client
        self._storage = storage

    def _client(self, api_key: str) -> LLMClient:
        return self._llm_client or LLMClient(api_key)

    def _media(self) -> MediaStorage:
        if self._storage is None:
            self._storage = MediaStorage()
        return self._storage

    def generate(self, request: ImageRequest) -> StoredImage:
        config = site_config.load_site_config(self.session)
        stored = site_config.openai_settings(config)
        api_key = _pick(stored.get("apiKey"))
        if not api_key:
            raise ImageKeyMissingError(MISSING_KEY_MESSAGE)

        model = _pick(request.model, stored.get("imageModel"), settings.AI_DEFAULT_IMAGE_MODEL)
        size = _pick(request.size, stored.get("imageSize"), DEFAULT_IMAGE_SIZE)
        quality = _pick(request.quality, stored.get("imageQuality"), DEFAULT_IMAGE_QUALITY)
        background = _pick(request.background, stored.get("imageBackground"), DEFAULT_IMAGE_BACKGROUND)
        output_format = _pick(request.output_format, stored.get("imageOutputFormat"), DEFAULT_IMAGE_FORMAT)

        image = self._client(api_key).generate_image(
            request.prompt,
            model=model,
            size=size,
            quality=quality,
            background=background,
            output_format=output_format,
        )

        name = build_image_name(request.prompt, request.filename_hint, output_format)
        blob_url = self._media().upload_bytes(
            name=name,
            data=image.data,
            content_type=content_type_for(output_format),
        )
        safely_record_usage(self.session, "images", model, image.usage)
        logger.info("Generated AI image", extra={"model": model, "image_name": name})
        return StoredImage(blob_url=blob_url, name=name, model=model, usage=image.usage)
