"""
Tests for tenant configuration: the snapshot model, the cached config store,
the phone-number resolver, the DynamoDB source and YAML config loading.
"""

import copy
from decimal import Decimal
from typing import Any

import pytest
from pydantic import ValidationError

from fakes import FakeObjectStore, conditional_failure, make_tenant
from whatsbot.config import load_config
from whatsbot.core.errors import MalformedPayload, MissingCredentials, TenantNotConfigured, UnknownTenant
from whatsbot.core.types import TenantKind
from whatsbot.tenancy.models import TenantConfig
from whatsbot.tenancy.resolver import TenantResolver
from whatsbot.tenancy.sources import DynamoTenantSource, StaticTenantSource, TenantRef
from whatsbot.tenancy.store import ConfigStore

pytestmark = pytest.mark.unit


class CountingSource(StaticTenantSource):
    def __init__(self, tenants):
        super().__init__(tenants)
        self.loads = 0
        self.lookups = 0

    async def load(self, tenant_id):
        self.loads += 1
        return await super().load(tenant_id)

    async def find_by_phone_id(self, phone_number_id):
        self.lookups += 1
        return await super().find_by_phone_id(phone_number_id)


class ScanTable:
    """A boto3 Table stand-in with get_item, paginated scan and update_item."""

    def __init__(self, items: list[dict[str, Any]], page_size: int = 1):
        self.items = {item["storeId"]: copy.deepcopy(item) for item in items}
        self.page_size = page_size
        self.updates: list[dict[str, Any]] = []
        self.scans = 0

    def get_item(self, Key):
        item = self.items.get(Key["storeId"])
        return {"Item": copy.deepcopy(item)} if item else {}

    def scan(self, FilterExpression=None, ProjectionExpression=None, ExclusiveStartKey=None):
        self.scans += 1
        rows = list(self.items.values())
        if FilterExpression is not None:
            attr, wanted = FilterExpression.get_expression()["values"]
            rows = [r for r in rows if r.get(attr.name) == wanted]
        start = 0
        if ExclusiveStartKey:
            start = [r["storeId"] for r in rows].index(ExclusiveStartKey["storeId"]) + 1
        page = rows[start:start + self.page_size]
        response: dict[str, Any] = {"Items": copy.deepcopy(page)}
        if start + self.page_size < len(rows):
            response["LastEvaluatedKey"] = {"storeId": page[-1]["storeId"]}
        return response

    def update_item(self, **kwargs):
        self.updates.append(kwargs)
        must_exist = kwargs.get("ConditionExpression") == "attribute_exists(storeId)"
        if must_exist and kwargs["Key"]["storeId"] not in self.items:
            raise conditional_failure()


class TestTenantConfig:
    """Tests for the tenant snapshot model."""

    def test_validates_table_attribute_names(self):
        tenant = TenantConfig.model_validate({
            "storeId": "kopi",
            "botType": "pos",
            "whatsappToken": "EAAG",
            "whatsappPhoneNumberId": "1098765",
            "openAiApiKey": "sk-1",
            "ownerNumber": "+65 9000 0000",
            "todaysOfferEnabled": False,
            "unrelatedAttribute": "ignored",
        })
        assert tenant.tenant_id == "kopi"
        assert tenant.phone_number_id == "1098765"
        assert tenant.openai_model == "gpt-4o-mini"
        assert tenant.todays_offer_enabled is False

    @pytest.mark.parametrize(
        "raw, kind",
        [
            ("", TenantKind.POS),
            ("store", TenantKind.POS),
            ("LobangLah", TenantKind.DEALS),
            ("deals", TenantKind.DEALS),
            ("viral-agency", TenantKind.VIRAL_AGENCY),
            ("SocialAgency", TenantKind.VIRAL_AGENCY),
            ("viral_agency", TenantKind.VIRAL_AGENCY),
        ],
    )
    def test_kind_aliases(self, raw, kind):
        assert TenantConfig.model_validate({"storeId": "t", "botType": raw}).kind is kind

    def test_unknown_kind(self):
        with pytest.raises(ValidationError):
            TenantConfig.model_validate({"storeId": "t", "botType": "spaceship"})

    @pytest.mark.parametrize("raw, expected", [("", 0.7), (None, 0.7), ("0.9", 0.9), (Decimal("0.2"), 0.2)])
    def test_temperature_coercion(self, raw, expected):
        assert TenantConfig.model_validate({"storeId": "t", "temperature": raw}).temperature == pytest.approx(expected)

    def test_is_owner_normalizes_numbers(self):
        tenant = make_tenant(owner_number="+65 9000-0000")
        assert tenant.is_owner("6590000000")
        assert not tenant.is_owner("6581111111")
        assert not make_tenant(owner_number="").is_owner("")

    def test_require_transport(self):
        make_tenant().require_transport()
        with pytest.raises(MissingCredentials):
            make_tenant(whatsapp_token="").require_transport()

    def test_snapshot_is_frozen(self):
        with pytest.raises(ValidationError):
            make_tenant().store_name = "Other"


class TestConfigStore:
    """Tests for the read-through tenant cache."""

    async def test_cached_within_ttl(self, clock):
        source = CountingSource([make_tenant()])
        store = ConfigStore(source, ttl_seconds=300, clock=clock)
        first = await store.get("store1")
        clock.advance(299)
        assert await store.get("store1") is first
        assert source.loads == 1

        clock.advance(2)
        await store.get("store1")
        assert source.loads == 2

    async def test_invalidate_and_refresh(self, clock):
        source = CountingSource([make_tenant()])
        store = ConfigStore(source, clock=clock)
        await store.get("store1")
        store.invalidate("store1")
        await store.get("store1")
        await store.refresh("store1")
        assert source.loads == 3

    async def test_unknown_tenant(self):
        store = ConfigStore(StaticTenantSource([]))
        with pytest.raises(TenantNotConfigured):
            await store.get("ghost")

    async def test_invalid_stored_configuration(self):
        class BrokenSource(StaticTenantSource):
            async def load(self, tenant_id):
                return {"storeId": tenant_id, "botType": "spaceship"}

        with pytest.raises(TenantNotConfigured):
            await ConfigStore(BrokenSource([])).get("store1")

    async def test_business_context_from_object_store(self):
        objects = FakeObjectStore()
        objects.texts[("ctx-bucket", "store1.txt")] = "We open at 7am."
        tenant = make_tenant(business_context="", s3_context_bucket="ctx-bucket", s3_context_key="store1.txt")
        loaded = await ConfigStore(StaticTenantSource([tenant]), object_store=objects).get("store1")
        assert loaded.business_context == "We open at 7am."

    async def test_missing_business_context_is_tolerated(self):
        tenant = make_tenant(business_context="", s3_context_bucket="ctx-bucket", s3_context_key="gone.txt")
        loaded = await ConfigStore(StaticTenantSource([tenant]), object_store=FakeObjectStore()).get("store1")
        assert loaded.business_context == ""

    async def test_rotate_credentials(self, clock):
        source = CountingSource([make_tenant()])
        store = ConfigStore(source, clock=clock)
        assert (await store.get("store1")).app_secret == "app-secret"

        changed = await store.rotate_credentials(
            "store1", {"whatsappAppSecret": "rotated", "verifyToken": "", "openAiApiKey": "sk-evil"}
        )

        assert changed == ["whatsappAppSecret"]
        tenant = await store.get("store1")
        assert tenant.app_secret == "rotated"
        assert tenant.openai_api_key == "sk-test"

    async def test_rotate_with_nothing_to_change(self):
        store = ConfigStore(StaticTenantSource([make_tenant()]))
        assert await store.rotate_credentials("store1", {"verifyToken": ""}) == []

    async def test_verify_tokens(self):
        store = ConfigStore(StaticTenantSource([make_tenant(), make_tenant(tenant_id="t2", verify_token="")]))
        assert await store.verify_tokens() == ["store1-verify"]


class TestTenantResolver:
    """Tests for phone number id lookups."""

    async def test_resolves_and_caches(self, clock):
        source = CountingSource([make_tenant()])
        resolver = TenantResolver(source, ttl_seconds=60, clock=clock)
        assert await resolver.resolve("PHONE1") == TenantRef(tenant_id="store1", owner_number="6590000000")
        await resolver.resolve("PHONE1")
        assert source.lookups == 1

        clock.advance(61)
        await resolver.resolve("PHONE1")
        assert source.lookups == 2

    async def test_unknown_phone_is_not_cached(self):
        source = CountingSource([make_tenant()])
        resolver = TenantResolver(source)
        for _ in range(2):
            with pytest.raises(UnknownTenant):
                await resolver.resolve("PHONE9")
        assert source.lookups == 2

    async def test_clear(self):
        source = CountingSource([make_tenant()])
        resolver = TenantResolver(source)
        await resolver.resolve("PHONE1")
        resolver.clear()
        await resolver.resolve("PHONE1")
        assert source.lookups == 2

    async def test_envelope_without_phone_id(self):
        resolver = TenantResolver(StaticTenantSource([make_tenant()]))
        with pytest.raises(MalformedPayload):
            await resolver.resolve_envelope({"object": "whatsapp_business_account", "entry": []})


class TestDynamoTenantSource:
    """Tests for the bot-config plus store-tokens table pair."""

    @pytest.fixture
    def tables(self):
        configs = ScanTable([
            {"storeId": "kopi", "botType": "pos", "storeName": "Kopi Corner", "temperature": Decimal("0.4"),
             "whatsappToken": "stale-token"},
        ])
        tokens = ScanTable([
            {"storeId": "lobang", "whatsappPhoneNumberId": "222", "verifyToken": "lobang-verify"},
            {"storeId": "kopi", "whatsappPhoneNumberId": "111", "whatsappToken": "fresh-token",
             "whatsappAppSecret": "s3cret", "ownerNumber": "6590000000", "verifyToken": "kopi-verify"},
        ])
        return configs, tokens

    async def test_load_merges_token_attributes(self, tables):
        source = DynamoTenantSource(*tables)
        data = await source.load("kopi")
        assert data["storeName"] == "Kopi Corner"
        assert data["whatsappToken"] == "fresh-token"
        assert data["whatsappPhoneNumberId"] == "111"
        assert data["temperature"] == 0.4
        tenant = TenantConfig.model_validate(data)
        assert tenant.app_secret == "s3cret"

    async def test_load_tokens_only_tenant(self, tables):
        data = await DynamoTenantSource(*tables).load("lobang")
        assert data == {"storeId": "lobang", "whatsappPhoneNumberId": "222", "verifyToken": "lobang-verify"}

    async def test_load_unknown(self, tables):
        assert await DynamoTenantSource(*tables).load("ghost") is None

    async def test_find_by_phone_id_pages_through_scan(self, tables):
        configs, tokens = tables
        tokens.page_size = 1
        source = DynamoTenantSource(configs, tokens)
        assert await source.find_by_phone_id("111") == TenantRef(tenant_id="kopi", owner_number="6590000000")
        assert await source.find_by_phone_id("999") is None

    async def test_verify_tokens(self, tables):
        configs, tokens = tables
        source = DynamoTenantSource(configs, tokens)
        assert sorted(await source.verify_tokens()) == ["kopi-verify", "lobang-verify"]
        assert tokens.scans == 2

    async def test_update_credentials(self, tables):
        configs, tokens = tables
        await DynamoTenantSource(configs, tokens).update_credentials("kopi", {"whatsappAppSecret": "new"})
        [update] = tokens.updates
        assert update["Key"] == {"storeId": "kopi"}
        assert update["UpdateExpression"] == "SET #a0 = :v0, #updated = :updated"
        assert update["ExpressionAttributeNames"] == {"#a0": "whatsappAppSecret", "#updated": "updatedAt"}
        assert update["ExpressionAttributeValues"][":v0"] == "new"
        assert update["ConditionExpression"] == "attribute_exists(storeId)"

    async def test_update_credentials_for_unknown_store(self, tables):
        configs, tokens = tables
        store = ConfigStore(DynamoTenantSource(configs, tokens))
        with pytest.raises(KeyError):
            await store.rotate_credentials("ghost", {"verifyToken": "x"})
        assert "ghost" not in tokens.items


class TestLoadConfig:
    """Tests for YAML loading with environment interpolation."""

    def test_interpolates_env_and_data_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_VERIFY_TOKEN", "from-env")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "data_dir: /srv/whatsbot\n"
            "whatsapp:\n"
            "  verify_token: ${TEST_VERIFY_TOKEN}\n"
            "storage:\n"
            "  db_path: ${data_dir}/bot.db\n"
            "llm:\n"
            "  max_iterations: 3\n"
        )
        config = load_config(config_file, tmp_path / "missing.env")
        assert config.whatsapp.verify_token == "from-env"
        assert config.storage.db_path == "/srv/whatsbot/bot.db"
        assert config.llm.max_iterations == 3
        assert config.llm.loop_budget == 60.0
        assert config.is_production is False

    def test_unset_variable_is_left_verbatim(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TEST_UNSET_VARIABLE", raising=False)
        config_file = tmp_path / "config.yaml"
        config_file.write_text("workflow:\n  webhook_url: ${TEST_UNSET_VARIABLE}\n")
        assert load_config(config_file, tmp_path / ".env").workflow.webhook_url == "${TEST_UNSET_VARIABLE}"

    def test_env_file_is_loaded(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TEST_ENV_FILE_SECRET", raising=False)
        (tmp_path / ".env").write_text("TEST_ENV_FILE_SECRET=dotenv-value\n")
        config_file = tmp_path / "config.yaml"
        config_file.write_text("environment: ${TEST_ENV_FILE_SECRET}\n")
        assert load_config(config_file, tmp_path / ".env").environment == "dotenv-value"
        monkeypatch.delenv("TEST_ENV_FILE_SECRET", raising=False)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")
