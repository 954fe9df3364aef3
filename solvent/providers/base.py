"""Abstract base for all provider adapters."""

import base64
import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import Enum

from config.config_loader import ProviderConfig
from solvent.errors import UnsupportedCapability, ValidationError
from solvent.models import CompletionOptions, GeneratedImage, Message, ModelResponse

_DATA_URI = re.compile(r"^data:(?P<mime>[^;]+);base64,(?P<data>.+)$", re.DOTALL)


class Capability(str, Enum):
    CHAT = "chat_completion"
    STREAM = "stream_chat_completion"
    VISION = "vision_completion"
    IMAGE = "image_generation"
    LIST_MODELS = "list_models"


def decode_data_uri(uri: str) -> tuple[bytes, str]:
    """Split a ``data:<mime>;base64,<payload>`` URI into (bytes, mime type)."""
    match = _DATA_URI.match(uri.strip())
    if not match:
        raise ValidationError("Invalid image format, expected a base64 data URI")
    try:
        return base64.b64decode(match["data"]), match["mime"]
    except ValueError as exc:
        raise ValidationError("Invalid base64 image payload") from exc


class ProviderAdapter(ABC):
    """One backend behind the shared capability interface.

    Subclasses declare ``capabilities`` and override the matching methods.
    Calling an operation outside the declared set raises UnsupportedCapability.
    Every method raises a ``solvent.errors.ProviderError`` subclass on failure,
    never a backend-specific exception.
    """

    capabilities: frozenset[Capability] = frozenset()

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config

    def name(self) -> str:
        """Return the provider identifier (e.g. 'gemini', 'ollama')."""
        return self._config.name

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @abstractmethod
    async def list_models(self) -> set[str]:
        """Return the model identifiers the backend currently offers."""
        ...

    async def chat_completion(
        self,
        history: list[Message],
        last_message: str,
        model: str,
        options: CompletionOptions,
    ) -> ModelResponse:
        """Issue one non-streaming completion.

        Args:
            history: Earlier turns, oldest first. Does not include the last message.
            last_message: The (possibly augmented) text of the latest user turn.
            model: Backend-specific model name.
            options: Sampling and grounding options.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        raise UnsupportedCapability(self.name(), Capability.CHAT.value)

    def stream_chat_completion(
        self,
        history: list[Message],
        last_message: str,
        model: str,
        options: CompletionOptions,
    ) -> AsyncIterator[str]:
        """Return an async generator of text fragments.

        The generator re-issues the request each time it is created and
        releases its connection when closed early.
        """
        raise UnsupportedCapability(self.name(), Capability.STREAM.value)

    async def vision_completion(
        self,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        model: str,
        options: CompletionOptions | None = None,
    ) -> ModelResponse:
        raise UnsupportedCapability(self.name(), Capability.VISION.value)

    async def image_generation(self, prompt: str, model: str) -> GeneratedImage:
        """Raises NoImageProduced when the backend answers without an image."""
        raise UnsupportedCapability(self.name(), Capability.IMAGE.value)

    async def aclose(self) -> None:
        """Release any network resources held by the adapter."""
        return None
