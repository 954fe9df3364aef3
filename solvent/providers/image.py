"""Keyless image-generation fallback (Pollinations) using httpx."""

import base64
import logging
from urllib.parse import quote

import httpx

from config.config_loader import ProviderConfig
from solvent.errors import NoImageProduced, classify_exception
from solvent.models import GeneratedImage
from solvent.providers.base import Capability, ProviderAdapter

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://image.pollinations.ai"


class ImageFallbackAdapter(ProviderAdapter):
    """Pollinations.ai text-to-image endpoint. No credentials needed."""

    capabilities = frozenset({Capability.IMAGE, Capability.LIST_MODELS})

    def __init__(self, config: ProviderConfig, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config)
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url or _DEFAULT_BASE_URL,
            timeout=config.timeout_sec,
            follow_redirects=True,
        )

    async def image_generation(self, prompt: str, model: str) -> GeneratedImage:
        logger.info("Pollinations generating image for prompt: %r", prompt)
        params = {"nologo": "true"}
        if model:
            params["model"] = model
        try:
            response = await self._client.get(f"/prompt/{quote(prompt, safe='')}", params=params)
            response.raise_for_status()
        except Exception as exc:
            raise classify_exception(exc, self.name()) from exc

        mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        if not response.content or not mime_type.startswith("image/"):
            raise NoImageProduced(self.name(), f"Response was {mime_type!r}, {len(response.content)} bytes")

        return GeneratedImage(
            base64=base64.b64encode(response.content).decode("ascii"),
            mime_type=mime_type,
        )

    async def list_models(self) -> set[str]:
        try:
            response = await self._client.get("/models")
            response.raise_for_status()
            return {m if isinstance(m, str) else str(m.get("name")) for m in response.json()}
        except Exception as exc:
            raise classify_exception(exc, self.name()) from exc

    async def aclose(self) -> None:
        await self._client.aclose()
