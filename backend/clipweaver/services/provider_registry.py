"""Provider registry: model id → provider name → cached client.

Usage:
    registry = default_registry(get_settings())
    name = registry.resolve("sora-2")           # "sora"
    client = registry.get_client(name)          # SoraProvider bound to OPENAI_API_KEY
    registry.list_models()                      # [ModelInfo(...), ...]

Adding a provider means registering its class; its capability descriptor
supplies the model allow-list used by ``resolve``.
"""

from __future__ import annotations

import logging

import httpx

from clipweaver.config import Settings
from clipweaver.errors import UnknownModel
from clipweaver.schemas.job import ModelInfo
from clipweaver.services.providers import KlingProvider, SoraProvider, VeoProvider
from clipweaver.services.providers.base import ProviderCapabilities, VideoProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Explicit, injectable map of providers. Holds no global state."""

    def __init__(
        self,
        *,
        media_dir: str,
        credentials: dict[str, str] | None = None,
        base_urls: dict[str, str] | None = None,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.media_dir = media_dir
        self.timeout = timeout
        self._credentials = dict(credentials or {})
        self._base_urls = dict(base_urls or {})
        self._http_client = http_client
        self._providers: dict[str, type[VideoProvider]] = {}
        self._model_index: dict[str, str] = {}
        self._clients: dict[tuple[str, str], VideoProvider] = {}

    def register(self, provider_cls: type[VideoProvider], *, base_url: str | None = None) -> None:
        name = provider_cls.name
        for model in provider_cls.capabilities.models:
            owner = self._model_index.get(model)
            if owner and owner != name:
                raise ValueError(f"Model {model} already claimed by {owner}")
            self._model_index[model] = name
        self._providers[name] = provider_cls
        if base_url:
            self._base_urls[name] = base_url
        logger.debug("Registered provider %s (%d models)", name, len(provider_cls.capabilities.models))

    def resolve(self, model: str) -> str:
        """Provider name claiming ``model``; UnknownModel otherwise."""
        try:
            return self._model_index[model]
        except KeyError:
            raise UnknownModel(
                f"Unknown model: {model}. Use one of: {', '.join(sorted(self._model_index))}"
            ) from None

    def provider_names(self) -> list[str]:
        return list(self._providers)

    def capabilities(self, name: str) -> ProviderCapabilities:
        return self._provider_cls(name).capabilities

    def get_client(self, name: str, api_key: str | None = None) -> VideoProvider:
        """Return the client for (provider, credential), creating it on first use.

        ``api_key`` defaults to the credential configured for the provider.
        """
        provider_cls = self._provider_cls(name)
        key = api_key if api_key is not None else self._credentials.get(name, "")
        cache_key = (name, key)
        client = self._clients.get(cache_key)
        if client is None:
            client = provider_cls(
                api_key=key,
                base_url=self._base_urls.get(name, ""),
                media_dir=self.media_dir,
                http_client=self._http_client,
                timeout=self.timeout,
            )
            self._clients[cache_key] = client
            logger.info("Initialized %s client", name)
        return client

    def list_models(self) -> list[ModelInfo]:
        return [
            ModelInfo(
                provider=name,
                models=list(cls.capabilities.models),
                capabilities=cls.capabilities.to_dict(),
            )
            for name, cls in self._providers.items()
        ]

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()

    def _provider_cls(self, name: str) -> type[VideoProvider]:
        try:
            return self._providers[name]
        except KeyError:
            raise UnknownModel(f"Unknown provider: {name}") from None


def default_registry(settings: Settings, http_client: httpx.AsyncClient | None = None) -> ProviderRegistry:
    """Registry with every built-in provider, wired from settings."""
    registry = ProviderRegistry(
        media_dir=settings.MEDIA_VOLUME,
        credentials=settings.provider_credentials,
        base_urls=settings.provider_base_urls,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        http_client=http_client,
    )
    for provider_cls in (SoraProvider, VeoProvider, KlingProvider):
        registry.register(provider_cls)
    return registry
