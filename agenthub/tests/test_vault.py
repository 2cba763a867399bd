"""
Tests for the credential vault and plan entitlements.
"""

import pytest

from agenthub.shared.entitlements import PlanEntitlements
from agenthub.shared.vault import LocalCredentialVault


@pytest.fixture
def empty_vault():
    return LocalCredentialVault("unit-test-key")


# ═══════════════════════════════════════════════════════════════
# VAULT
# ═══════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestLocalCredentialVault:
    async def test_round_trip(self, empty_vault):
        empty_vault.put_credential_bundle(
            "T1", "falcon", {"anthropic_api_key": "sk-1"}, configuration={"tone": "formal"},
        )
        bundle = await empty_vault.get_credential_bundle("T1", "falcon")
        assert bundle.secrets == {"anthropic_api_key": "sk-1"}
        assert bundle.configuration == {"tone": "formal"}
        assert bundle.enabled is True

    async def test_secrets_encrypted_at_rest(self, empty_vault):
        empty_vault.put_credential_bundle("T1", "falcon", {"anthropic_api_key": "sk-plain"})
        raw = empty_vault.get_raw_secret("T1", "falcon", "anthropic_api_key")
        assert raw and "sk-plain" not in raw

    async def test_missing_bundle(self, empty_vault):
        assert await empty_vault.get_credential_bundle("T1", "falcon") is None

    async def test_ciphertext_bound_to_tenant(self, empty_vault):
        empty_vault.put_credential_bundle("T1", "falcon", {"k": "secret"})
        empty_vault.put_credential_bundle("T2", "falcon", {"k": "other"})
        stolen = empty_vault.get_raw_secret("T1", "falcon", "k")
        empty_vault._bundles[("T2", "falcon")].secrets["k"] = stolen

        with pytest.raises(ValueError, match="decrypt"):
            await empty_vault.get_credential_bundle("T2", "falcon")

    async def test_wrong_key_cannot_decrypt(self, empty_vault):
        empty_vault.put_credential_bundle("T1", "falcon", {"k": "secret"})
        other = LocalCredentialVault("a-different-key")
        other._bundles = empty_vault._bundles
        with pytest.raises(ValueError):
            await other.get_credential_bundle("T1", "falcon")

    async def test_set_enabled(self, empty_vault):
        empty_vault.put_credential_bundle("T1", "sage", {"k": "v"})
        assert empty_vault.set_enabled("T1", "sage", False) is True
        assert (await empty_vault.get_credential_bundle("T1", "sage")).enabled is False
        assert empty_vault.set_enabled("T1", "falcon", False) is False

    async def test_delete(self, empty_vault):
        empty_vault.put_credential_bundle("T1", "sage", {"k": "v"})
        assert empty_vault.delete_credential_bundle("T1", "sage") is True
        assert empty_vault.delete_credential_bundle("T1", "sage") is False
        assert await empty_vault.get_credential_bundle("T1", "sage") is None


class TestChangeListeners:
    def test_listener_called_on_every_change(self, empty_vault):
        calls = []
        empty_vault.add_change_listener(lambda tenant, agent: calls.append((tenant, agent)))

        empty_vault.put_credential_bundle("T1", "falcon", {"k": "v"})
        empty_vault.set_enabled("T1", "falcon", False)
        empty_vault.delete_credential_bundle("T1", "falcon")
        empty_vault.delete_credential_bundle("T1", "falcon")

        assert calls == [("T1", "falcon")] * 3

    def test_failing_listener_does_not_block_others(self, empty_vault):
        calls = []

        def broken(tenant, agent):
            raise RuntimeError("listener bug")

        empty_vault.add_change_listener(broken)
        empty_vault.add_change_listener(lambda tenant, agent: calls.append(tenant))
        empty_vault.put_credential_bundle("T1", "falcon", {"k": "v"})
        assert calls == ["T1"]


# ═══════════════════════════════════════════════════════════════
# ENTITLEMENTS
# ═══════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestPlanEntitlements:
    @pytest.mark.parametrize("plan,agent,expected", [
        ("starter", "falcon", True),
        ("starter", "sage", False),
        ("professional", "sage", True),
        ("professional", "sentinel", False),
        ("ultra", "sentinel", True),
        ("enterprise-legacy", "falcon", False),
    ])
    async def test_plan_table(self, plan, agent, expected):
        entitlements = PlanEntitlements()
        entitlements.set_subscription("T1", plan)
        assert await entitlements.plan_includes_agent("T1", agent) is expected

    async def test_unknown_tenant(self):
        assert await PlanEntitlements().plan_includes_agent("T9", "falcon") is False

    async def test_inactive_subscription(self):
        entitlements = PlanEntitlements()
        entitlements.set_subscription("T1", "ultra", status="past_due")
        assert await entitlements.plan_includes_agent("T1", "falcon") is False

    async def test_custom_plan_table(self):
        entitlements = PlanEntitlements({"custom": frozenset({"sentinel"})})
        entitlements.set_subscription("T1", "custom")
        assert await entitlements.plan_includes_agent("T1", "sentinel") is True
        assert await entitlements.plan_includes_agent("T1", "falcon") is False
