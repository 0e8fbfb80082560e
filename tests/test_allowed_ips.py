from ipaddress import IPv6Address, ip_address

import pytest

from wgtun.allowed_ips import AllowedIP, AllowedIps


def v4(a, b, c, d):
    return ip_address(f"{a}.{b}.{c}.{d}")


def v6(*segments):
    return IPv6Address(":".join(f"{s:x}" for s in segments))


def build_allowed_ips():
    table = AllowedIps()
    table.insert(v4(127, 0, 0, 1), 32, "1")
    table.insert(v4(45, 25, 15, 1), 30, "6")
    table.insert(v4(127, 0, 15, 1), 16, "2")
    table.insert(v4(127, 1, 15, 1), 24, "3")
    table.insert(v4(255, 1, 15, 1), 24, "4")
    table.insert(v4(60, 25, 15, 1), 32, "5")
    table.insert(v6(553, 0, 0, 1, 0, 0, 0, 0), 128, "7")
    return table


def test_insert_find():
    table = build_allowed_ips()
    assert table.find(v4(127, 0, 0, 1)) == "1"
    assert table.find(v4(127, 0, 255, 255)) == "2"
    assert table.find(v4(127, 1, 255, 255)) is None
    assert table.find(v4(127, 1, 15, 255)) == "3"
    assert table.find(v4(255, 1, 15, 2)) == "4"
    assert table.find(v4(60, 25, 15, 1)) == "5"
    assert table.find(v4(20, 0, 0, 100)) is None
    assert table.find(v6(553, 0, 0, 1, 0, 0, 0, 0)) == "7"
    assert table.find(v6(553, 0, 0, 1, 0, 0, 0, 1)) is None
    assert table.find(v4(45, 25, 15, 1)) == "6"


def test_find_accepts_strings():
    table = build_allowed_ips()
    assert table.find("127.0.0.1") == "1"


def test_remove():
    table = build_allowed_ips()
    table.remove(lambda c: c in ("5", "1", "7"))
    assert list(table) == [
        ("6", v4(45, 25, 15, 0), 30),
        ("2", v4(127, 0, 0, 0), 16),
        ("3", v4(127, 1, 15, 0), 24),
        ("4", v4(255, 1, 15, 0), 24),
    ]
    assert len(table) == 4


def test_iter():
    table = build_allowed_ips()
    assert list(table) == [
        ("6", v4(45, 25, 15, 0), 30),
        ("5", v4(60, 25, 15, 1), 32),
        ("2", v4(127, 0, 0, 0), 16),
        ("1", v4(127, 0, 0, 1), 32),
        ("3", v4(127, 1, 15, 0), 24),
        ("4", v4(255, 1, 15, 0), 24),
        ("7", v6(553, 0, 0, 1, 0, 0, 0, 0), 128),
    ]


def test_v4_kernel_compatibility():
    table = AllowedIps()
    table.insert(v4(192, 168, 4, 0), 24, "a")
    table.insert(v4(192, 168, 4, 4), 32, "b")
    table.insert(v4(192, 168, 0, 0), 16, "c")
    table.insert(v4(192, 95, 5, 64), 27, "d")
    table.insert(v4(192, 95, 5, 65), 27, "c")
    table.insert(v4(0, 0, 0, 0), 0, "e")
    table.insert(v4(64, 15, 112, 0), 20, "g")
    table.insert(v4(64, 15, 123, 211), 25, "h")
    table.insert(v4(10, 0, 0, 0), 25, "a")
    table.insert(v4(10, 0, 0, 128), 25, "b")
    table.insert(v4(10, 1, 0, 0), 30, "a")
    table.insert(v4(10, 1, 0, 4), 30, "b")
    table.insert(v4(10, 1, 0, 8), 29, "c")
    table.insert(v4(10, 1, 0, 16), 29, "d")

    assert table.find(v4(192, 168, 4, 20)) == "a"
    assert table.find(v4(192, 168, 4, 0)) == "a"
    assert table.find(v4(192, 168, 4, 4)) == "b"
    assert table.find(v4(192, 168, 200, 182)) == "c"
    assert table.find(v4(192, 95, 5, 68)) == "c"
    assert table.find(v4(192, 95, 5, 96)) == "e"
    assert table.find(v4(64, 15, 116, 26)) == "g"
    assert table.find(v4(64, 15, 127, 3)) == "g"

    hosts = [v4(1, 0, 0, 0), v4(64, 0, 0, 0), v4(128, 0, 0, 0), v4(192, 0, 0, 0), v4(255, 0, 0, 0)]
    for host in hosts:
        table.insert(host, 32, "a")
    for host in hosts:
        assert table.find(host) == "a"

    table.remove(lambda c: c == "a")
    for host in hosts:
        assert table.find(host) == "e"

    table.clear()
    assert len(table) == 0
    table.insert(v4(192, 168, 0, 0), 16, "a")
    table.insert(v4(192, 168, 0, 0), 24, "a")
    table.remove(lambda c: c == "a")
    assert table.find(v4(192, 168, 0, 1)) is None


def test_v6_kernel_compatibility():
    table = AllowedIps()
    table.insert(v6(0x2607, 0x5300, 0x6000, 0x6B00, 0, 0, 0xC05F, 0x0543), 128, "d")
    table.insert(v6(0x2607, 0x5300, 0x6000, 0x6B00, 0, 0, 0, 0), 64, "c")
    table.insert(v6(0, 0, 0, 0, 0, 0, 0, 0), 0, "e")
    table.insert(v6(0, 0, 0, 0, 0, 0, 0, 0), 0, "f")
    table.insert(v6(0x2404, 0x6800, 0, 0, 0, 0, 0, 0), 32, "g")
    table.insert(v6(0x2404, 0x6800, 0x4004, 0x0800, 0xDEAD, 0xBEEF, 0xDEAD, 0xBEEF), 64, "h")
    table.insert(v6(0x2404, 0x6800, 0x4004, 0x0800, 0xDEAD, 0xBEEF, 0xDEAD, 0xBEEF), 128, "a")
    table.insert(v6(0x2444, 0x6800, 0x40E4, 0x0800, 0xDEAE, 0xBEEF, 0x0DEF, 0xBEEF), 128, "c")
    table.insert(v6(0x2444, 0x6800, 0xF0E4, 0x0800, 0xEEAE, 0xBEEF, 0, 0), 98, "b")

    assert table.find(v6(0x2607, 0x5300, 0x6000, 0x6B00, 0, 0, 0xC05F, 0x0543)) == "d"
    assert table.find(v6(0x2607, 0x5300, 0x6000, 0x6B00, 0, 0, 0xC02E, 0x01EE)) == "c"
    assert table.find(v6(0x2607, 0x5300, 0x6000, 0x6B01, 0, 0, 0, 0)) == "f"
    assert table.find(v6(0x2404, 0x6800, 0x4004, 0x0806, 0, 0, 0, 0x1006)) == "g"
    assert table.find(v6(0x2404, 0x6800, 0x4004, 0x0806, 0, 0x1234, 0, 0x5678)) == "g"
    assert table.find(v6(0x2404, 0x67FF, 0x4004, 0x0806, 0, 0x1234, 0, 0x5678)) == "f"
    assert table.find(v6(0x2404, 0x6801, 0x4004, 0x0806, 0, 0x1234, 0, 0x5678)) == "f"
    assert table.find(v6(0x2404, 0x6800, 0x4004, 0x0800, 0, 0x1234, 0, 0x5678)) == "h"
    assert table.find(v6(0x2404, 0x6800, 0x4004, 0x0800, 0, 0, 0, 0)) == "h"
    assert table.find(v6(0x2404, 0x6800, 0x4004, 0x0800, 0x1010, 0x1010, 0x1010, 0x1010)) == "h"
    assert table.find(v6(0x2404, 0x6800, 0x4004, 0x0800, 0xDEAD, 0xBEEF, 0xDEAD, 0xBEEF)) == "a"


def test_iter_zero_leaf_bits():
    table = AllowedIps()
    table.insert(v4(10, 111, 0, 1), 32, "1")
    table.insert(v4(10, 111, 0, 2), 32, "2")
    table.insert(v4(10, 111, 0, 3), 32, "3")
    assert list(table) == [
        ("1", v4(10, 111, 0, 1), 32),
        ("2", v4(10, 111, 0, 2), 32),
        ("3", v4(10, 111, 0, 3), 32),
    ]


def test_insert_returns_previous_data():
    table = AllowedIps()
    assert table.insert(v4(10, 0, 0, 0), 8, "x") is None
    assert table.insert(v4(10, 1, 2, 3), 8, "y") == "x"
    assert len(table) == 1


def test_insert_rejects_bad_prefix():
    table = AllowedIps()
    with pytest.raises(ValueError):
        table.insert(v4(10, 0, 0, 0), 33, "x")


def test_from_entries():
    entries = [(AllowedIP.parse("10.0.0.0/8"), "a"), (AllowedIP.parse("fd00::/16"), "b")]
    table = AllowedIps.from_entries(entries)
    assert table.find("10.20.30.40") == "a"
    assert table.find("fd00::1") == "b"
    assert table.find("11.0.0.0") is None


@pytest.mark.parametrize("text", ["10.0.0.0/8", "::1/128", "0.0.0.0/0"])
def test_allowed_ip_round_trip(text):
    assert str(AllowedIP.parse(text)) == text


def test_allowed_ip_fields():
    parsed = AllowedIP.parse("172.0.0.2/32")
    assert parsed.addr == v4(172, 0, 0, 2)
    assert parsed.cidr == 32


@pytest.mark.parametrize(
    "text",
    ["10.0.0.0", "10.0.0.0/33", "::/129", "10.0.0.0/8/1", "bogus/8", "10.0.0.0/x", "10.0.0.0/-1", "10.0.0.0/"],
)
def test_allowed_ip_invalid(text):
    with pytest.raises(ValueError):
        AllowedIP.parse(text)