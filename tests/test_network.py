"""Tests for the ipset, iptables and route helpers."""

import pytest

from netenforce import config
from netenforce.models import Family
from netenforce.network import interface, ipset, iptables, route


class TestIpset:
    """Tests for the ipset wrappers."""

    async def test_create_is_idempotent(self, fake):
        """Test creating a set twice keeps a single set."""
        first = await ipset.create("c_test_set")
        second = await ipset.create("c_test_set")

        assert first.ok and second.ok
        assert list(fake.ipsets) == ["c_test_set"]
        assert all("-exist" in call for call in fake.commands("ipset"))

    async def test_create_inet6(self, fake):
        """Test an IPv6 set is created with the inet6 family."""
        await ipset.create("c_test_set6", "hash:net", Family.INET6)

        assert fake.ipset_types["c_test_set6"] == ("hash:net", "family", "inet6")

    @pytest.mark.parametrize("operation", [ipset.flush, ipset.destroy])
    async def test_missing_set_is_absent(self, fake, operation, caplog):
        """Test flushing or destroying a missing set is tolerated."""
        result = await operation("c_missing_set")

        assert result.ok
        assert result.message == "absent"
        assert not [r for r in caplog.records if r.levelname == "ERROR"]

    async def test_failing_flush(self, fake):
        """Test a failing command is reported, not raised."""
        await ipset.create("c_test_set")
        fake.fail_when(lambda args: "flush" in args)

        result = await ipset.flush("c_test_set")

        assert not result.ok
        assert "simulated failure" in result.message

    async def test_add_to_missing_set_fails(self, fake):
        """Test only flush and destroy tolerate a missing set."""
        result = await ipset.add("c_missing_set", "10.0.0.1")

        assert not result.ok
        assert "does not exist" in result.message

    async def test_batch_applies_all_commands(self, fake):
        """Test a batch is sent in one restore call."""
        await ipset.create("c_test_set")
        result = await ipset.batch(["add c_test_set 10.0.0.1", "add c_test_set 10.0.1.0/24"])

        assert result.ok
        assert fake.ipsets["c_test_set"] == {"10.0.0.1", "10.0.1.0/24"}
        assert fake.commands("ipset")[-1][1:] == ("restore", "-exist")

    async def test_empty_batch_runs_nothing(self, fake):
        """Test an empty batch doesn't call ipset."""
        result = await ipset.batch([])

        assert result.ok
        assert fake.calls == []


class TestIptables:
    """Tests for the comment identified rules."""

    @pytest.fixture
    def rule(self):
        return iptables.Rule(
            table="mangle",
            chain="FW_RT_TAG_DEVICE_5",
            match_set="c_test_set",
            comment="policy:test:uid",
            jump="MARK --set-xmark 0x0000/0xff0000",
        )

    def test_args(self, rule):
        """Test the argument vector of a rule."""
        assert rule.args("-A") == [
            "/usr/sbin/iptables",
            "-w",
            "-t",
            "mangle",
            "-A",
            "FW_RT_TAG_DEVICE_5",
            "-m",
            "set",
            "--match-set",
            "c_test_set",
            "src",
            "-m",
            "comment",
            "--comment",
            "policy:test:uid",
            "-j",
            "MARK",
            "--set-xmark",
            "0x0000/0xff0000",
        ]

    def test_inet6_uses_ip6tables(self, rule):
        """Test IPv6 rules use ip6tables."""
        rule6 = rule.model_copy(update={"family": Family.INET6})

        assert rule6.args("-C")[0] == "/usr/sbin/ip6tables"

    async def test_append_twice_adds_once(self, fake, rule):
        """Test appending a present rule doesn't duplicate it."""
        await iptables.append(rule)
        result = await iptables.append(rule)

        assert result.ok
        assert result.message == "already present"
        assert len(fake.rules_in("mangle", "FW_RT_TAG_DEVICE_5")) == 1

    async def test_delete_absent_rule_is_ok(self, fake, rule):
        """Test deleting a rule that isn't present succeeds."""
        result = await iptables.delete(rule)

        assert result.ok
        assert result.message == "absent"
        assert not [call for call in fake.calls if "-D" in call]

    async def test_delete_present_rule(self, fake, rule):
        """Test a present rule is deleted."""
        await iptables.append(rule)
        result = await iptables.delete(rule)

        assert result.ok
        assert fake.rules == []

    def test_masquerade(self):
        """Test the NAT rule of a container address."""
        rule = iptables.masquerade("10.1.2.2")

        assert rule.table == config.NAT_TABLE
        assert rule.chain == config.NAT_POSTROUTING_CHAIN
        assert rule.args("-A")[-4:] == ["-s", "10.1.2.2", "-j", "MASQUERADE"]


class TestRoute:
    """Tests for routing table helpers."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [("wan_routable", 201), ("main", 254), ("100", 100), ("unknown", None)],
    )
    def test_table_id(self, name, expected):
        """Test named tables are resolved from rt_tables."""
        assert route.table_id(name) == expected

    async def test_add_route_unknown_table(self):
        """Test an unknown table is reported without touching the kernel."""
        result = await route.add_route_to_table("10.0.0.2", "vpn_x", "nope")

        assert not result.ok
        assert result.message == "unknown routing table"


class TestInterface:
    """Tests for interface helpers."""

    def test_interface_name_is_truncated(self):
        """Test interface names fit in IFNAMSIZ."""
        name = interface.interface_name("vpn_", "a_very_long_profile_id")

        assert name == "vpn_a_very_long"
        assert len(name) == config.IFNAMSIZ

    async def test_has_carrier(self, netenforce_config):
        """Test the carrier is read from sysfs."""
        path = config.SYS_CLASS_NET.joinpath("vpn_x")
        path.mkdir(parents=True)
        path.joinpath("carrier").write_text("1\n")

        assert await interface.has_carrier("vpn_x")
        assert not await interface.has_carrier("vpn_missing")
