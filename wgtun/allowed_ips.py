"""Longest-prefix-match table of IP networks with attached data."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address, ip_address, ip_network
from typing import Callable, Dict, Generic, Iterable, Iterator, Optional, Tuple, TypeVar, Union

Address = Union[IPv4Address, IPv6Address]
D = TypeVar("D")

_MAX_PREFIX = {4: 32, 6: 128}
_CIDR_RE = re.compile(r"\+?[0-9]+")


@dataclass(frozen=True)
class AllowedIP:
    """An address together with a prefix length, as written ``addr/cidr``."""

    addr: Address
    cidr: int

    @classmethod
    def parse(cls, text: str) -> "AllowedIP":
        """Parse ``addr/cidr``; raise ValueError if the text is malformed."""
        parts = text.split("/")
        if len(parts) != 2:
            raise ValueError("Invalid IP format")
        addr_text, cidr_text = parts
        if "%" in addr_text or not _CIDR_RE.fullmatch(cidr_text):
            raise ValueError("Invalid IP format")
        try:
            addr = ip_address(addr_text)
        except ValueError:
            raise ValueError("Invalid IP format") from None
        cidr = int(cidr_text)
        if cidr > 255 or cidr > _MAX_PREFIX[addr.version]:
            raise ValueError("Invalid IP format")
        return cls(addr, cidr)

    def __str__(self) -> str:
        return f"{self.addr}/{self.cidr}"


def _to_address(addr: Union[str, int, Address]) -> Address:
    if isinstance(addr, (IPv4Address, IPv6Address)):
        return addr
    return ip_address(addr)


def _mask(version: int, prefixlen: int) -> int:
    width = _MAX_PREFIX[version]
    return ((1 << width) - 1) ^ ((1 << (width - prefixlen)) - 1)


class AllowedIps(Generic[D]):
    """Maps IPv4 and IPv6 networks to data and finds the most specific match."""

    def __init__(self) -> None:
        self._tables: Dict[int, Dict[Tuple[int, int], D]] = {4: {}, 6: {}}
        self._lengths: Dict[int, Counter] = {4: Counter(), 6: Counter()}

    @classmethod
    def from_entries(cls, entries: Iterable[Tuple[AllowedIP, D]]) -> "AllowedIps[D]":
        """Build a table from ``(AllowedIP, data)`` pairs."""
        table: AllowedIps[D] = cls()
        for allowed, data in entries:
            table.insert(allowed.addr, allowed.cidr, data)
        return table

    def insert(self, addr: Union[str, int, Address], cidr: int, data: D) -> Optional[D]:
        """Insert a network, truncating host bits; return the data it replaced."""
        address = _to_address(addr)
        if cidr < 0 or cidr > _MAX_PREFIX[address.version]:
            raise ValueError(f"invalid prefix length {cidr} for {address}")
        network = ip_network((address, cidr), strict=False)
        key = (int(network.network_address), network.prefixlen)
        table = self._tables[address.version]
        previous = table.get(key)
        if key not in table:
            self._lengths[address.version][cidr] += 1
        table[key] = data
        return previous

    def find(self, addr: Union[str, int, Address]) -> Optional[D]:
        """Return the data of the longest network containing ``addr``, or None."""
        address = _to_address(addr)
        version = address.version
        table = self._tables[version]
        value = int(address)
        for prefixlen in sorted(self._lengths[version], reverse=True):
            key = (value & _mask(version, prefixlen), prefixlen)
            if key in table:
                return table[key]
        return None

    def remove(self, predicate: Callable[[D], bool]) -> None:
        """Drop every entry whose data satisfies ``predicate``."""
        for version, table in self._tables.items():
            kept = {key: data for key, data in table.items() if not predicate(data)}
            self._tables[version] = kept
            self._lengths[version] = Counter(prefixlen for _, prefixlen in kept)

    def clear(self) -> None:
        """Remove all entries."""
        for version in self._tables:
            self._tables[version] = {}
            self._lengths[version] = Counter()

    def __iter__(self) -> Iterator[Tuple[D, Address, int]]:
        """Yield ``(data, network_address, prefixlen)``, IPv4 first, in address order."""
        for version, factory in ((4, IPv4Address), (6, IPv6Address)):
            for (network, prefixlen), data in sorted(self._tables[version].items(), key=lambda kv: kv[0]):
                yield data, factory(network), prefixlen

    def __len__(self) -> int:
        return sum(len(table) for table in self._tables.values())