"""Generation service (text + image) on the OpenAI SDK, and the per-job reference image cache."""

import base64
import logging
import os
from dataclasses import dataclass
from typing import Callable, Protocol

import httpx
import openai
from openai import AzureOpenAI, OpenAI

from docauto.errors import GenerationError, MissingCredentialError

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.4
DEFAULT_MAX_TOKENS = 2048

_CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


@dataclass
class ReferenceImage:
    data: bytes
    content_type: str = "image/png"

    @property
    def filename(self) -> str:
        ext = self.content_type.split("/")[-1].replace("jpeg", "jpg")
        return f"reference.{ext}"


@dataclass
class GeneratedImage:
    data: bytes
    content_type: str = "image/png"


class GenerationService(Protocol):
    def generate_text(self, prompt: str, temperature: float = DEFAULT_TEMPERATURE, max_tokens: int = DEFAULT_MAX_TOKENS) -> str:
        ...

    def generate_image(self, prompt: str, references: list[ReferenceImage]) -> GeneratedImage | None:
        ...


def fetch_reference_image(source: str) -> ReferenceImage:
    """Load a reference image from a local path or an http(s) URL."""
    if source.startswith(("http://", "https://")):
        resp = httpx.get(source, timeout=30.0, follow_redirects=True)
        resp.raise_for_status()
        content_type = resp.headers.get("content-type", "image/png").split(";")[0].strip()
        return ReferenceImage(data=resp.content, content_type=content_type or "image/png")
    ext = os.path.splitext(source)[1].lower()
    with open(source, "rb") as f:
        return ReferenceImage(data=f.read(), content_type=_CONTENT_TYPES.get(ext, "image/png"))


class ReferenceImageCache:
    """Reference images for one job invocation, fetched lazily on first use."""

    def __init__(self, sources: list[str], fetch: Callable[[str], ReferenceImage] = fetch_reference_image):
        self.sources = list(sources)
        self._fetch = fetch
        self._images: dict[str, ReferenceImage] = {}
        self.hits = 0
        self.misses = 0

    def lookup(self, source: str) -> ReferenceImage | None:
        image = self._images.get(source)
        if image is None:
            self.misses += 1
        else:
            self.hits += 1
        return image

    def populate(self, source: str, image: ReferenceImage) -> None:
        self._images[source] = image

    def get(self, source: str) -> ReferenceImage | None:
        image = self.lookup(source)
        if image is not None:
            return image
        try:
            image = self._fetch(source)
        except (OSError, httpx.HTTPError) as exc:
            logger.warning("Could not load reference image %s: %s", source, exc)
            return None
        self.populate(source, image)
        return image

    def images(self) -> list[ReferenceImage]:
        out = []
        for source in self.sources:
            image = self.get(source)
            if image is not None:
                out.append(image)
        return out


def build_client(api_key: str | None):
    """Azure OpenAI when AZURE_OPENAI_ENDPOINT and a key are set, else OpenAI."""
    azure_key = os.environ.get("AZURE_OPENAI_API_KEY") or os.environ.get("AZURE_OPENAI_KEY")
    azure_endpoint = os.environ.get("AZURE_OPENAI_ENDPOINT")
    if azure_key and azure_endpoint:
        return AzureOpenAI(
            api_key=azure_key,
            api_version=os.environ.get("AZURE_OPENAI_API_VERSION", "2025-04-01-preview"),
            azure_endpoint=azure_endpoint.rstrip("/"),
        )
    if not api_key:
        raise MissingCredentialError(
            "Set OPENAI_API_KEY for OpenAI, or AZURE_OPENAI_API_KEY and AZURE_OPENAI_ENDPOINT for Azure OpenAI"
        )
    return OpenAI(api_key=api_key)


class OpenAIGenerationService:
    """Text completions via chat.completions; images via images.generate / images.edit."""

    def __init__(self, client, text_model: str = "gpt-4o-mini", image_model: str = "gpt-image-1", image_size: str = "1536x1024"):
        self.client = client
        self.text_model = os.environ.get("AZURE_OPENAI_DEPLOYMENT") or text_model
        self.image_model = image_model
        self.image_size = image_size

    def generate_text(self, prompt: str, temperature: float = DEFAULT_TEMPERATURE, max_tokens: int = DEFAULT_MAX_TOKENS) -> str:
        try:
            resp = self.client.chat.completions.create(
                model=self.text_model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APIStatusError as exc:
            raise GenerationError(f"text generation failed with status {exc.status_code}: {exc.message}") from exc
        except openai.APIError as exc:
            raise GenerationError(f"text generation failed: {exc}") from exc
        if not resp.choices:
            raise GenerationError("text generation returned no choices")
        content = resp.choices[0].message.content
        if not content:
            raise GenerationError("text generation returned an empty message")
        return content.strip()

    def generate_image(self, prompt: str, references: list[ReferenceImage]) -> GeneratedImage | None:
        try:
            if references:
                resp = self.client.images.edit(
                    model=self.image_model,
                    image=[(ref.filename, ref.data, ref.content_type) for ref in references],
                    prompt=prompt,
                    size=self.image_size,
                )
            else:
                resp = self.client.images.generate(
                    model=self.image_model,
                    prompt=prompt,
                    size=self.image_size,
                    n=1,
                )
        except openai.APIStatusError as exc:
            raise GenerationError(f"image generation failed with status {exc.status_code}: {exc.message}") from exc
        except openai.APIError as exc:
            raise GenerationError(f"image generation failed: {exc}") from exc
        if not resp.data or not resp.data[0].b64_json:
            logger.info("Image generation returned no image")
            return None
        return GeneratedImage(data=base64.b64decode(resp.data[0].b64_json), content_type="image/png")
