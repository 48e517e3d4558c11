"""Tests for the provider catalog and registry."""

from unittest.mock import MagicMock

import pytest

from entitlement_client.errors import InvalidConfiguration, InvalidProvider
from entitlement_client.models import DeploymentConfig, Environment
from entitlement_client.providers import ProviderCatalog, ProviderRegistry

ACME_META = {
    "acme": {
        "prod": {
            "origin": "https://acme.example",
            "api_endpoint": "https://api.acme.example/",
            "seller_site": "acme.example",
        }
    }
}


class TestProviderCatalogValidation:
    def test_empty_sellers_rejected(self):
        with pytest.raises(InvalidConfiguration):
            ProviderCatalog([], "aivec")

    def test_requires_a_builtin_seller(self):
        with pytest.raises(InvalidConfiguration, match="at least one of"):
            ProviderCatalog(["acme"], "acme", ACME_META)

    def test_default_provider_must_be_allowed(self):
        with pytest.raises(InvalidConfiguration, match="default_provider"):
            ProviderCatalog(["aivec"], "welcart")

    def test_custom_seller_needs_meta(self):
        with pytest.raises(InvalidConfiguration, match="'acme' missing from meta"):
            ProviderCatalog(["aivec", "acme"], "aivec")

    def test_custom_seller_needs_prod(self):
        meta = {"acme": {"staging": ACME_META["acme"]["prod"]}}
        with pytest.raises(InvalidConfiguration, match="missing 'prod' key"):
            ProviderCatalog(["aivec", "acme"], "aivec", meta)

    @pytest.mark.parametrize("missing", ["origin", "api_endpoint", "seller_site"])
    def test_custom_seller_needs_every_prod_key(self, missing):
        prod = dict(ACME_META["acme"]["prod"])
        del prod[missing]
        with pytest.raises(InvalidConfiguration, match=f"missing '{missing}' key in meta under prod"):
            ProviderCatalog(["aivec", "acme"], "aivec", {"acme": {"prod": prod}})

    def test_valid_custom_seller(self):
        catalog = ProviderCatalog(["aivec", "acme"], "acme", ACME_META)
        assert catalog.sellers == ("aivec", "acme")
        assert catalog.default_provider == "acme"
        assert catalog.is_allowed("acme")
        assert not catalog.is_allowed("welcart")


class TestProviderCatalogEnvironments:
    def test_prod_endpoint(self):
        catalog = ProviderCatalog(["aivec"], "aivec")
        endpoint = catalog.endpoint_for("aivec", Environment.PROD)
        assert endpoint.api_endpoint == "https://www.aivec.co.jp/plugin/"

    def test_staging_endpoint(self):
        catalog = ProviderCatalog(["welcart"], "welcart")
        endpoint = catalog.endpoint_for("welcart", Environment.STAGING)
        assert endpoint.seller_site == "php7.welcart.org"

    def test_missing_environment_falls_back_to_prod(self):
        catalog = ProviderCatalog(["aivec", "acme"], "aivec", ACME_META)
        assert catalog.endpoint_for("acme", Environment.DEV).seller_site == "acme.example"
        assert catalog.endpoint_for("acme", Environment.STAGING).seller_site == "acme.example"

    def test_dev_endpoint_from_bridge(self):
        deployment = DeploymentConfig(environment="development", bridge_ip="172.17.0.1", bridge_port="8080")
        catalog = ProviderCatalog(["aivec", "welcart"], "aivec", deployment=deployment)

        endpoint = catalog.endpoint_for("welcart", Environment.DEV)
        assert endpoint.api_endpoint == "http://172.17.0.1:8080"
        assert endpoint.seller_site == "http://172.17.0.1:8080 (welcart)"

    def test_overrides_do_not_mutate_defaults(self):
        ProviderCatalog(["aivec"], "aivec", {"aivec": ACME_META["acme"]})
        assert ProviderCatalog(["aivec"], "aivec").endpoint_for(
            "aivec", Environment.PROD
        ).seller_site == "aivec.co.jp/plugin"


class TestProviderRegistry:
    @pytest.fixture
    def registry(self, store):
        catalog = ProviderCatalog(["aivec", "welcart"], "aivec")
        return ProviderRegistry(catalog, store)

    def test_register_creates_default_record(self, registry, store):
        registry.register("widget")

        record = store.get("widget")
        assert record.provider == "aivec"
        assert record.verified is False
        assert record.endpoint == "https://www.aivec.co.jp/plugin/"

    def test_register_keeps_cached_verdict(self, registry, store):
        registry.register("widget")
        store.save(store.get("widget").model_copy(update={"verified": True}))

        registry.register("widget")
        assert store.get("widget").verified is True

    def test_register_replaces_provider_no_longer_allowed(self, store):
        ProviderRegistry(ProviderCatalog(["aivec", "welcart"], "welcart"), store).register("widget")
        store.save(store.get("widget").model_copy(update={"verified": True}))

        registry = ProviderRegistry(ProviderCatalog(["aivec"], "aivec"), store)
        record = registry.register("widget")
        assert record.provider == "aivec"
        assert record.verified is False

    def test_resolve_uses_stored_provider(self, registry):
        registry.register("widget")
        registry.switch_provider("widget", "welcart")

        assert registry.resolve("widget").provider == "welcart"

    def test_resolve_override_is_not_persisted(self, registry, store):
        registry.register("widget")

        resolved = registry.resolve("widget", provider_override="welcart")
        assert resolved.provider == "welcart"
        assert resolved.endpoint == "https://www.welcart.com/"
        assert store.get("widget").provider == "aivec"

    def test_resolve_ignores_unknown_override(self, registry):
        registry.register("widget")
        assert registry.resolve("widget", provider_override="acme").provider == "aivec"

    def test_resolve_uses_deployment_environment(self, store):
        catalog = ProviderCatalog(["aivec"], "aivec")
        registry = ProviderRegistry(catalog, store, DeploymentConfig(environment="staging"))
        assert registry.resolve("widget").endpoint == "https://www.aivec.co.jp/plugin_test/"

    def test_switch_provider_rejects_unknown(self, registry, store):
        registry.register("widget")
        store.save(store.get("widget").model_copy(update={"verified": True}))
        listener = MagicMock()
        registry.add_switch_listener(listener)

        with pytest.raises(InvalidProvider):
            registry.switch_provider("widget", "acme")

        record = store.get("widget")
        assert record.provider == "aivec"
        assert record.verified is True
        listener.assert_not_called()

    def test_switch_provider_resets_verdict_and_notifies(self, registry, store):
        registry.register("widget")
        store.save(store.get("widget").model_copy(update={"verified": True}))
        listener = MagicMock()
        registry.add_switch_listener(listener)

        record = registry.switch_provider("widget", "welcart")

        assert record.provider == "welcart"
        assert record.verified is False
        assert record.seller_site == "www.welcart.com"
        listener.assert_called_once_with("widget")

    def test_choices_lists_allowed_sellers(self, registry):
        registry.register("widget")

        choices = registry.choices("widget")
        assert [(c.provider, c.sellerSite, c.selected) for c in choices] == [
            ("aivec", "aivec.co.jp/plugin", True),
            ("welcart", "www.welcart.com", False),
        ]

    def test_no_choices_for_single_seller(self, store):
        registry = ProviderRegistry(ProviderCatalog(["aivec"], "aivec"), store)
        assert registry.choices("widget") == []
