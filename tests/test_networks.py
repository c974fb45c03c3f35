"""Tests for accessgate.networks"""

import pytest

from accessgate.networks import NetworkDirectory, ip_in_any, ip_in_range


class TestIpInRange:
    @pytest.mark.parametrize("ip,ip_range,expected", [
        ("10.1.2.3", "10.0.0.0/8", True),
        ("11.0.0.1", "10.0.0.0/8", False),
        ("192.168.1.15", "192.168.1.10-192.168.1.20", True),
        ("192.168.1.21", "192.168.1.10-192.168.1.20", False),
        ("203.0.113.7", "203.0.113.7", True),
        ("2001:db8::1", "2001:db8::/32", True),
        ("2001:db8::1", "10.0.0.0/8", False),
        ("not-an-ip", "10.0.0.0/8", False),
        ("10.0.0.1", "garbage", False),
    ])
    def test_matching(self, ip, ip_range, expected):
        assert ip_in_range(ip, ip_range) is expected

    def test_ip_in_any(self):
        assert ip_in_any("10.0.0.1", ["192.168.0.0/16", "10.0.0.0/8"])
        assert not ip_in_any(None, ["10.0.0.0/8"])
        assert not ip_in_any("10.0.0.1", [])


class TestNetworkDirectory:
    def test_markers(self, store):
        networks = NetworkDirectory(store)
        networks.add_allow_list("Corp VPN", ["10.8.0.0/16"], location="VPN gateway")
        networks.add_allow_list("Seoul", ["172.16.0.0/12"], location="Seoul Office")
        networks.add_allow_list("Old VPN", ["10.9.0.0/16"], location="VPN", enabled=False)

        assert networks.is_vpn("10.8.3.3")
        assert not networks.is_vpn("10.9.3.3")
        assert networks.is_office_network("172.16.1.1")
        assert not networks.is_office_network("10.8.3.3")
