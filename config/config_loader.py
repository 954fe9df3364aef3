"""Load settings.yaml into typed dataclasses. Reports which providers have credentials."""

import logging
import os
import string
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from solvent.models import ModelPreference, ModelRef

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

_STAGE_FIELDS = {"input", "plan"}


@dataclass
class ProviderConfig:
    name: str
    adapter: str           # "cloud", "local", "openai" or "image"
    timeout_sec: int
    api_key_env: str | None = None
    base_url: str | None = None
    default_model: str | None = None


@dataclass
class SearchConfig:
    api_key_env: str
    endpoint: str = "https://google.serper.dev/search"
    top_k: int = 5
    timeout_sec: int = 15


@dataclass
class DefaultsConfig:
    provider: str
    model: str
    temperature: float
    max_tokens: int
    store_path: Path
    fallback_model: str | None = None
    image_model: ModelRef | None = None
    image_fallback: ModelRef | None = None


@dataclass
class StageConfig:
    role: str
    primary: ModelRef
    prompt: str
    fallback: ModelRef | None = None


@dataclass
class WaterfallConfig:
    stages: list[StageConfig]
    gate_enabled: bool = True


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    providers: dict[str, ProviderConfig]
    search: SearchConfig
    tiers: dict[str, ModelPreference]
    waterfall: WaterfallConfig
    available_providers: set[str] = field(default_factory=set)


def _optional_ref(raw: str | None) -> ModelRef | None:
    return ModelRef.parse(raw) if raw else None


def _check_template(role: str, template: str) -> str:
    """Stage prompts may only reference {input} and {plan}; literal braces must be doubled."""
    try:
        fields = {name for _, name, _, _ in string.Formatter().parse(template) if name is not None}
    except ValueError as exc:
        raise ValueError(f"Waterfall stage {role!r} has a malformed prompt template: {exc}") from exc
    unknown = fields - _STAGE_FIELDS
    if unknown:
        raise ValueError(
            f"Waterfall stage {role!r} prompt uses unknown placeholders: {sorted(unknown)}"
        )
    return template


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError if a
    waterfall stage prompt is not a valid {input}/{plan} template.
    Providers whose API key variable is unset are left out of
    available_providers; providers that need no key are always available.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        provider=str(defaults_raw["provider"]),
        model=str(defaults_raw["model"]),
        temperature=float(defaults_raw.get("temperature", 0.7)),
        max_tokens=int(defaults_raw.get("max_tokens", 2048)),
        store_path=Path(defaults_raw.get("store_path", ".solvent/state.json")),
        fallback_model=defaults_raw.get("fallback_model"),
        image_model=_optional_ref(defaults_raw.get("image_model")),
        image_fallback=_optional_ref(defaults_raw.get("image_fallback")),
    )

    providers: dict[str, ProviderConfig] = {}
    available_providers: set[str] = set()

    for provider_name, provider_raw in raw["providers"].items():
        provider_cfg = ProviderConfig(
            name=provider_name,
            adapter=str(provider_raw["adapter"]),
            timeout_sec=int(provider_raw.get("timeout_sec", 120)),
            api_key_env=provider_raw.get("api_key_env"),
            base_url=provider_raw.get("base_url"),
            default_model=provider_raw.get("default_model"),
        )
        providers[provider_name] = provider_cfg

        if not provider_cfg.api_key_env:
            available_providers.add(provider_name)
            logger.debug("Provider available (no key needed): %s", provider_name)
        elif os.environ.get(provider_cfg.api_key_env, "").strip():
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider without credentials: %s (set %s in .env)",
                provider_name,
                provider_cfg.api_key_env,
            )

    search_raw = raw.get("search", {})
    search = SearchConfig(
        api_key_env=str(search_raw.get("api_key_env", "SERPER_API_KEY")),
        endpoint=str(search_raw.get("endpoint", "https://google.serper.dev/search")),
        top_k=int(search_raw.get("top_k", 5)),
        timeout_sec=int(search_raw.get("timeout_sec", 15)),
    )

    tiers = {
        tier: ModelPreference(
            primary=ModelRef.parse(tier_raw["primary"]),
            fallback=_optional_ref(tier_raw.get("fallback")),
            auto_shift=bool(tier_raw.get("auto_shift", True)),
        )
        for tier, tier_raw in raw.get("tiers", {}).items()
    }

    waterfall_raw = raw["waterfall"]
    waterfall = WaterfallConfig(
        stages=[
            StageConfig(
                role=str(stage_raw["role"]),
                primary=ModelRef.parse(stage_raw["primary"]),
                prompt=_check_template(str(stage_raw["role"]), str(stage_raw["prompt"])),
                fallback=_optional_ref(stage_raw.get("fallback")),
            )
            for stage_raw in waterfall_raw["stages"]
        ],
        gate_enabled=bool(waterfall_raw.get("gate_enabled", True)),
    )

    return AppConfig(
        defaults=defaults,
        providers=providers,
        search=search,
        tiers=tiers,
        waterfall=waterfall,
        available_providers=available_providers,
    )
