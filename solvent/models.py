"""Dataclasses for the orchestration core: requests, responses, preferences."""

from dataclasses import dataclass, field
from enum import Enum

from solvent.errors import ValidationError


class Mode(str, Enum):
    PLAIN = "plain"
    BROWSER = "browser"
    SCHOLARLY = "scholarly"
    DEEP_THOUGHT = "deep_thought"
    ANALYSIS = "analysis"
    VISION = "vision"


SEARCH_MODES = frozenset({Mode.BROWSER, Mode.SCHOLARLY})

LOCAL_PROVIDER = "ollama"
_PROVIDER_ALIASES = {"local": LOCAL_PROVIDER}


@dataclass
class Message:
    role: str              # "user", "assistant" or "system"
    content: str
    image: str | None = None  # data URI: data:<mime>;base64,<payload>


@dataclass(frozen=True)
class ModelRef:
    provider: str
    model: str

    @classmethod
    def parse(cls, ref: str, default_provider: str = LOCAL_PROVIDER) -> "ModelRef":
        """Parse "provider/model". A bare model name belongs to default_provider.

        Only the first slash separates, so "openrouter/anthropic/claude-3-opus"
        keeps the vendor prefix inside the model name.
        """
        ref = ref.strip()
        if not ref:
            raise ValidationError("Model reference must not be empty")
        if "/" in ref:
            provider, model = ref.split("/", 1)
        else:
            provider, model = default_provider, ref
        provider = _PROVIDER_ALIASES.get(provider, provider)
        if not provider or not model:
            raise ValidationError(f"Malformed model reference: {ref!r}")
        return cls(provider=provider, model=model)

    def __str__(self) -> str:
        return f"{self.provider}/{self.model}"


@dataclass
class ChatRequest:
    messages: list[Message]
    provider: str
    model: str
    mode: Mode = Mode.PLAIN
    smart_router_enabled: bool = True
    fallback_model: str | None = None
    temperature: float = 0.7
    max_tokens: int = 2048
    image: str | None = None

    @property
    def last_message(self) -> Message:
        return self.messages[-1]

    def inline_image(self) -> str | None:
        """Return the request-level image or the first image found in history."""
        if self.image:
            return self.image
        return next((m.image for m in self.messages if m.image), None)

    def validate(self, known_providers: set[str] | None = None) -> None:
        if not self.messages:
            raise ValidationError("At least one message is required")
        if not self.model or not self.model.strip():
            raise ValidationError("Model must not be empty")
        if not self.provider:
            raise ValidationError("Provider must not be empty")
        if known_providers is not None and self.provider not in known_providers:
            raise ValidationError(f"Unknown provider: {self.provider}")

    @classmethod
    def from_payload(cls, payload: dict, known_providers: set[str] | None = None) -> "ChatRequest":
        """Build a request from the HTTP layer's JSON body."""
        try:
            messages = [
                Message(
                    role="assistant" if m["role"] == "model" else str(m["role"]),
                    content=str(m.get("content") or ""),
                    image=m.get("image"),
                )
                for m in payload.get("messages") or []
            ]
            provider = payload.get("provider") or ""
            if not isinstance(provider, str):
                raise TypeError(f"provider must be a string, got {type(provider).__name__}")
            fallback_model = payload.get("fallbackModel")
            if fallback_model is not None and not isinstance(fallback_model, str):
                raise TypeError(f"fallbackModel must be a string, got {type(fallback_model).__name__}")
            request = cls(
                messages=messages,
                provider=_PROVIDER_ALIASES.get(provider, provider),
                model=str(payload.get("model") or ""),
                mode=Mode(payload.get("mode") or Mode.PLAIN.value),
                smart_router_enabled=payload.get("smartRouter") is not False,
                fallback_model=fallback_model,
                temperature=float(payload.get("temperature", 0.7)),
                max_tokens=int(payload.get("maxTokens", 2048)),
                image=payload.get("image"),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed chat request: {exc}") from exc

        request.validate(known_providers)
        return request


@dataclass
class CompletionOptions:
    temperature: float = 0.7
    max_tokens: int = 2048
    enable_grounding: bool = False


@dataclass
class SearchResult:
    title: str
    link: str
    snippet: str
    source_host: str


@dataclass
class ModelResponse:
    provider: str
    model: str
    content: str
    latency_sec: float
    token_count: int | None = None


@dataclass
class GeneratedImage:
    base64: str
    mime_type: str


@dataclass
class ProviderResponse:
    response: str | GeneratedImage
    model_used: str
    info: str | None = None
    token_count: int | None = None

    @property
    def text(self) -> str:
        return self.response if isinstance(self.response, str) else ""


@dataclass
class ModelPreference:
    primary: ModelRef
    fallback: ModelRef | None = None
    auto_shift: bool = True

    def to_dict(self) -> dict:
        return {
            "primary": str(self.primary),
            "fallback": str(self.fallback) if self.fallback else None,
            "autoShift": self.auto_shift,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "ModelPreference":
        fallback = raw.get("fallback")
        return cls(
            primary=ModelRef.parse(raw["primary"]),
            fallback=ModelRef.parse(fallback) if fallback else None,
            auto_shift=bool(raw.get("autoShift", True)),
        )


@dataclass
class UsageCounters:
    tokens_consumed: int = 0
    cost_usd_accrued: float = 0.0
    request_count: int = 0


@dataclass
class ResourceEstimate:
    estimated_tokens: int
    estimated_cost_usd: float
    risk_level: str        # "low", "medium", "high", "critical"
    reason: str | None = None


@dataclass
class WaterfallStageResult:
    role: str
    output: str
    model: str


@dataclass
class WaterfallResult:
    stages: list[WaterfallStageResult] = field(default_factory=list)
    status: str = "completed"              # "completed", "failed", "paused"
    failed_stage: str | None = None
    error: str | None = None
    estimate: ResourceEstimate | None = None

    def stage(self, role: str) -> WaterfallStageResult | None:
        return next((s for s in self.stages if s.role == role), None)
