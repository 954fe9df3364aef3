"""Map configured providers onto adapter variants."""

import logging

from config.config_loader import AppConfig
from solvent.providers.base import ProviderAdapter
from solvent.providers.cloud import CloudModelAdapter
from solvent.providers.image import ImageFallbackAdapter
from solvent.providers.local import LocalDaemonAdapter
from solvent.providers.openai_compat import OpenAICompatibleAdapter

logger = logging.getLogger(__name__)

ADAPTER_CLASSES: dict[str, type[ProviderAdapter]] = {
    "cloud": CloudModelAdapter,
    "local": LocalDaemonAdapter,
    "openai": OpenAICompatibleAdapter,
    "image": ImageFallbackAdapter,
}


def build_adapters(config: AppConfig) -> dict[str, ProviderAdapter]:
    """Build one adapter per configured provider. Returns dict keyed by name.

    Providers without credentials are still built; their calls fail with
    AuthenticationError so the router can report them.
    """
    adapters: dict[str, ProviderAdapter] = {}
    for name, provider_cfg in config.providers.items():
        adapter_cls = ADAPTER_CLASSES.get(provider_cfg.adapter)
        if adapter_cls is None:
            logger.warning("Provider '%s' has unknown adapter '%s', skipping", name, provider_cfg.adapter)
            continue
        try:
            adapters[name] = adapter_cls(provider_cfg)
        except Exception as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)
    return adapters
