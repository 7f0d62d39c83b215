"""Tests for policy persistence, change events, dispatch and the acl timer."""

import asyncio

import pytest

from netenforce import config
from netenforce.identity import IdentityRegistry
from netenforce.store import EVENT_CHANNEL, POLICY_CHANGED, EventBus, JsonStore


@pytest.fixture
def events(registry):
    """Collect every policy change event."""
    received = []
    registry.publisher.subscribe_once(
        EVENT_CHANNEL,
        POLICY_CHANGED,
        None,
        lambda _channel, _type, item_id, obj: received.append((item_id, obj)),
    )
    return received


@pytest.fixture
def off_sets(fake):
    for name in (config.IPSET_QOS_OFF, config.IPSET_ACL_OFF, config.IPSET_NO_DNS_BOOST):
        fake.ipsets[name] = set()
    return fake.ipsets


class TestSetPolicy:
    """Tests for persisting and announcing policy changes."""

    async def test_set_policy_persists_and_publishes(self, registry, kind, events):
        """Test the whole policy is saved and the change announced."""
        identity = registry.get_or_create(kind, "uid1")

        await identity.set_policy("qos", False)
        await identity.set_policy("monitor", True)

        assert await registry.store.get_json("policy:test:uid1") == {
            "qos": False,
            "monitor": True,
        }
        assert events == [
            ("uid1", {"name": "qos", "data": False}),
            ("uid1", {"name": "monitor", "data": True}),
        ]

    async def test_without_publisher(self, fake, kind):
        """Test the policy is saved when there is no event bus."""
        registry = IdentityRegistry(store=JsonStore(), publisher=None)
        identity = registry.get_or_create(kind, "uid1")

        await identity.set_policy("qos", True)

        assert await registry.store.get_json("policy:test:uid1") == {"qos": True}

    async def test_change_event_applies_policy(self, registry, kind, off_sets):
        """Test a change event leads to the policy being applied once."""
        identity = registry.get_or_create(kind, "uid1")

        await identity.set_policy("qos", False)
        await identity.set_policy("acl", False)
        await registry.policy_queue.drain()

        assert off_sets["c_qos_off_set"] == {"c_test_uid1_set", "c_test_uid1_set6"}
        assert off_sets["c_acl_off_set"] == {"c_test_uid1_set", "c_test_uid1_set6"}

    @pytest.mark.parametrize(("primary", "uid"), [(False, "uid1"), (True, "")])
    async def test_no_subscription(self, fake, kind, primary, uid):
        """Test secondary processes and identities without id don't subscribe."""
        bus = EventBus()
        registry = IdentityRegistry(store=JsonStore(), publisher=bus, primary=primary)
        registry.get_or_create(kind, uid)

        assert bus.publish(EVENT_CHANNEL, POLICY_CHANGED, uid, {}) == 0

    async def test_subscribes_once(self, registry, kind):
        """Test getting an identity again doesn't subscribe again."""
        registry.get_or_create(kind, "uid1")
        registry.get_or_create(kind, "uid1")

        assert registry.publisher.publish(EVENT_CHANNEL, POLICY_CHANGED, "uid1", {}) == 1


class TestApplyPolicy:
    """Tests for dispatching policy fields to their handlers."""

    async def test_dispatch(self, registry, kind, fake, off_sets):
        """Test every known field is applied and unknown ones are ignored."""
        identity = registry.get_or_create(kind, "uid1")
        await registry.store.set_json(
            identity.policy_key,
            {
                "qos": True,
                "acl": False,
                "monitor": True,
                "tags": ["a"],
                "dnsmasq": {"dnsCaching": False},
                "vpnClient": {"state": None, "profileId": "p1"},
                "unknown": 1,
            },
        )

        report = await identity.apply_policy()

        assert report.ok
        assert identity.is_monitoring()
        assert off_sets["c_qos_off_set"] == set()
        assert off_sets["c_acl_off_set"] == {"c_test_uid1_set", "c_test_uid1_set6"}
        assert off_sets["c_no_dns_boost_set"] == {"c_test_uid1_set", "c_test_uid1_set6"}
        assert len(fake.rules_in(config.MANGLE_TABLE, config.VPN_CLIENT_CHAIN)) == 2

    async def test_handler_error_is_reported(self, registry, kind, off_sets):
        """Test a handler raising doesn't stop the other handlers."""
        identity = registry.get_or_create(kind, "uid1")
        await registry.store.set_json(
            identity.policy_key,
            {"dnsmasq": "not a dict", "monitor": True},
        )

        report = await identity.apply_policy()

        assert [step.step for step in report.failed] == ["policy dnsmasq"]
        assert identity.is_monitoring()


class TestAclTimer:
    """Tests for the deferred acl change."""

    async def test_second_timer_supersedes_first(self, registry, kind, clock, events):
        """Test only the latest timer fires."""
        identity = registry.get_or_create(kind, "uid1")

        await identity.acl_timer({"state": "block", "time": clock.now + 0.05})
        await identity.acl_timer({"state": "allow", "time": clock.now + 0.1})
        assert registry.timers.is_pending(identity.guid)

        await asyncio.sleep(0.3)

        assert identity.policy["acl"] == "allow"
        assert events == [("uid1", {"name": "acl", "data": "allow"})]
        assert not registry.timers.is_pending(identity.guid)

    @pytest.mark.parametrize(
        "policy",
        [
            {"state": True},
            {"state": True, "time": "soon"},
            {"state": True, "time": True},
            {"state": True, "time": 999_999.0},
            {"state": True, "time": 1_000_000.0},
            {"time": 1_000_100.0},
            None,
        ],
    )
    async def test_invalid_timer_is_ignored(self, registry, kind, policy):
        """Test missing, non numeric or past deadlines schedule nothing."""
        identity = registry.get_or_create(kind, "uid1")

        await identity.acl_timer(policy)

        assert not registry.timers.is_pending(identity.guid)

    async def test_invalid_timer_cancels_pending(self, registry, kind, clock):
        """Test a new acl timer policy always cancels the pending timer."""
        identity = registry.get_or_create(kind, "uid1")
        await identity.acl_timer({"state": True, "time": clock.now + 100})

        await identity.acl_timer({})

        assert not registry.timers.is_pending(identity.guid)

    async def test_numeric_string_deadline(self, registry, kind, clock):
        """Test a deadline given as a numeric string is accepted."""
        identity = registry.get_or_create(kind, "uid1")

        await identity.acl_timer({"state": True, "time": str(clock.now + 100)})

        assert registry.timers.is_pending(identity.guid)
