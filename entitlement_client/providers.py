"""
Provider (seller) catalog and registry.

A provider is a remote authority that sells the product and answers
entitlement checks for it. Each provider has connection metadata per
deployment environment; the registry resolves which endpoint a product
talks to and mediates switching between providers.
"""

import copy
import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from entitlement_client.errors import InvalidConfiguration, InvalidProvider
from entitlement_client.models import (
    DeploymentConfig,
    EntitlementRecord,
    Environment,
    ProviderChoice,
    ProviderEndpoint,
    ResolvedProvider,
)
from entitlement_client.store import EntitlementStore

logger = logging.getLogger(__name__)

BUILTIN_SELLERS = ("aivec", "welcart")

REQUIRED_META_KEYS = ("origin", "api_endpoint", "seller_site")

DEFAULT_PROVIDER_META: Dict[str, Dict[str, Dict[str, str]]] = {
    "aivec": {
        "staging": {
            "origin": "https://aivec.co.jp",
            "api_endpoint": "https://www.aivec.co.jp/plugin_test/",
            "seller_site": "aivec.co.jp/plugin_test",
        },
        "prod": {
            "origin": "https://aivec.co.jp",
            "api_endpoint": "https://www.aivec.co.jp/plugin/",
            "seller_site": "aivec.co.jp/plugin",
        },
    },
    "welcart": {
        "staging": {
            "origin": "https://php7.welcart.org",
            "api_endpoint": "https://php7.welcart.org/",
            "seller_site": "php7.welcart.org",
        },
        "prod": {
            "origin": "https://www.welcart.com",
            "api_endpoint": "https://www.welcart.com/",
            "seller_site": "www.welcart.com",
        },
    },
}


class ProviderCatalog:
    """
    Immutable mapping of provider -> environment -> endpoint metadata.

    Built-in defaults are merged with caller overrides (an override for a
    provider replaces its whole entry). Only providers in ``sellers`` may be
    selected, and each of them must have complete ``prod`` metadata.
    """

    def __init__(
        self,
        sellers: Iterable[str] = ("aivec",),
        default_provider: str = "aivec",
        meta_overrides: Optional[Mapping[str, Mapping[str, Mapping[str, str]]]] = None,
        deployment: Optional[DeploymentConfig] = None,
    ):
        if isinstance(sellers, str):
            raise InvalidConfiguration("sellers must be a list of provider names")
        self._sellers = tuple(sellers or ())
        self._default_provider = default_provider
        self._validate_sellers()
        self._validate_default_provider()

        raw_meta = copy.deepcopy(DEFAULT_PROVIDER_META)
        raw_meta.update(copy.deepcopy(dict(meta_overrides or {})))
        self._validate_meta(raw_meta)

        deployment = deployment or DeploymentConfig()
        self._meta = MappingProxyType(
            {
                provider: MappingProxyType(self._build_environments(provider, envs, deployment))
                for provider, envs in raw_meta.items()
            }
        )

    def _validate_sellers(self):
        if not self._sellers:
            raise InvalidConfiguration("sellers must not be empty")
        if not any(seller in BUILTIN_SELLERS for seller in self._sellers):
            raise InvalidConfiguration(
                "at least one of %s must be in sellers"
                % " or ".join(f"'{seller}'" for seller in BUILTIN_SELLERS)
            )

    def _validate_default_provider(self):
        if self._default_provider not in self._sellers:
            raise InvalidConfiguration(
                f"default_provider '{self._default_provider}' does not exist in sellers"
            )

    def _validate_meta(self, raw_meta: Dict[str, Any]):
        for seller in self._sellers:
            envs = raw_meta.get(seller)
            if not isinstance(envs, Mapping):
                raise InvalidConfiguration(f"seller '{seller}' missing from meta")
            prod = envs.get("prod")
            if not isinstance(prod, Mapping):
                raise InvalidConfiguration(f"seller '{seller}' missing 'prod' key in meta")
            for key in REQUIRED_META_KEYS:
                if not prod.get(key):
                    raise InvalidConfiguration(
                        f"seller '{seller}' missing '{key}' key in meta under prod"
                    )

    @staticmethod
    def _build_environments(
        provider: str,
        envs: Mapping[str, Mapping[str, str]],
        deployment: DeploymentConfig,
    ) -> Dict[Environment, ProviderEndpoint]:
        built = {}
        for env in Environment:
            entry = envs.get(env.value) if isinstance(envs, Mapping) else None
            if isinstance(entry, Mapping):
                built[env] = ProviderEndpoint(
                    **{key: str(entry.get(key) or "") for key in REQUIRED_META_KEYS}
                )
        bridge = deployment.bridge_url
        if Environment.DEV not in built and bridge:
            built[Environment.DEV] = ProviderEndpoint(
                origin=bridge,
                api_endpoint=bridge,
                seller_site=f"{bridge} ({provider})",
            )
        return built

    @property
    def sellers(self) -> tuple:
        return self._sellers

    @property
    def default_provider(self) -> str:
        return self._default_provider

    def is_allowed(self, provider: Optional[str]) -> bool:
        return provider in self._sellers

    def endpoint_for(self, provider: str, environment: Environment) -> ProviderEndpoint:
        """Endpoint metadata for ``environment``, falling back to ``prod``."""
        envs = self._meta[provider]
        return envs.get(environment) or envs[Environment.PROD]


class ProviderRegistry:
    """
    Resolves the endpoint a product validates against and switches providers.
    """

    def __init__(
        self,
        catalog: ProviderCatalog,
        store: EntitlementStore,
        deployment: Optional[DeploymentConfig] = None,
    ):
        self.catalog = catalog
        self._store = store
        self._deployment = deployment or DeploymentConfig()
        self._switch_listeners: List[Callable[[str], Any]] = []

    def add_switch_listener(self, callback: Callable[[str], Any]):
        """Call ``callback(product_id)`` after every successful provider switch."""
        self._switch_listeners.append(callback)

    def resolve(self, product_id: str, provider_override: Optional[str] = None) -> ResolvedProvider:
        record = self._store.get(product_id)
        provider = self.catalog.default_provider
        if record is not None and self.catalog.is_allowed(record.provider):
            provider = record.provider
        if provider_override is not None and self.catalog.is_allowed(provider_override):
            provider = provider_override
        return self._resolve_provider(provider)

    def _resolve_provider(self, provider: str) -> ResolvedProvider:
        endpoint = self.catalog.endpoint_for(provider, self._deployment.environment)
        return ResolvedProvider(
            provider=provider,
            origin=endpoint.origin,
            endpoint=endpoint.api_endpoint,
            seller_site=endpoint.seller_site,
        )

    def register(self, product_id: str) -> EntitlementRecord:
        """
        Create the product's record, or refresh its endpoint metadata for the
        current environment. A stored provider that is no longer allowed is
        replaced by the default provider and must be validated again.
        """
        with self._store.lock(product_id):
            record = self._store.get(product_id)
            resolved = self.resolve(product_id)
            connection = {
                "provider": resolved.provider,
                "origin": resolved.origin,
                "endpoint": resolved.endpoint,
                "seller_site": resolved.seller_site,
            }
            if record is None:
                record = EntitlementRecord(product_id=product_id, **connection)
            elif record.provider != resolved.provider:
                logger.warning(
                    "Stored provider '%s' for %s is not allowed; using '%s'",
                    record.provider,
                    product_id,
                    resolved.provider,
                )
                record = record.model_copy(
                    update={**connection, "verified": False, "last_checked_at": None}
                )
            else:
                record = record.model_copy(update=connection)
            return self._store.save(record)

    def switch_provider(self, product_id: str, new_provider: str) -> EntitlementRecord:
        """
        Select ``new_provider`` for the product and force a re-validation.

        Raises:
            InvalidProvider: ``new_provider`` is not allow-listed. The stored
                record is left untouched.
        """
        if not self.catalog.is_allowed(new_provider):
            raise InvalidProvider(new_provider)

        with self._store.lock(product_id):
            record = self._store.get(product_id) or self.register(product_id)
            resolved = self._resolve_provider(new_provider)
            self._store.save(
                record.model_copy(
                    update={
                        "provider": resolved.provider,
                        "origin": resolved.origin,
                        "endpoint": resolved.endpoint,
                        "seller_site": resolved.seller_site,
                        "verified": False,
                        "last_checked_at": None,
                    }
                )
            )
        logger.info("Switched provider for %s to '%s'", product_id, new_provider)

        for listener in self._switch_listeners:
            listener(product_id)
        return self._store.get(product_id)

    def choices(self, product_id: str) -> List[ProviderChoice]:
        """
        Selectable providers for the product. Empty when only one seller is
        configured, since there is nothing to choose.
        """
        if len(self.catalog.sellers) < 2:
            return []
        current = self.resolve(product_id).provider
        return [
            ProviderChoice(
                provider=seller,
                sellerSite=self._resolve_provider(seller).seller_site,
                selected=seller == current,
            )
            for seller in self.catalog.sellers
        ]
