"""Address variants and matching rules for address and range bans."""

from __future__ import annotations

from dataclasses import dataclass
from ipaddress import IPv4Address, IPv4Network, IPv6Address, IPv6Network, ip_address, ip_network
from typing import Literal, Union


@dataclass(frozen=True)
class HostAddress:
    value: IPv4Address | IPv6Address
    kind: Literal["host"] = "host"

    @property
    def version(self) -> int:
        return self.value.version

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class RangeAddress:
    network: IPv4Network | IPv6Network
    kind: Literal["range"] = "range"

    @property
    def version(self) -> int:
        return self.network.version

    def __str__(self) -> str:
        return str(self.network)


Address = Union[HostAddress, RangeAddress]


def parse_address(text: str) -> Address:
    """Parse a host address, or a CIDR range when the text carries a prefix length."""
    raw = text.strip()
    if not raw:
        raise ValueError("address must not be empty")
    if "/" in raw:
        return RangeAddress(network=ip_network(raw, strict=False))
    return HostAddress(value=ip_address(raw))


def parse_host(text: str) -> HostAddress:
    parsed = parse_address(text)
    if not isinstance(parsed, HostAddress):
        raise ValueError(f"expected a host address, got range {parsed}")
    return parsed


def parse_range(text: str) -> RangeAddress:
    parsed = parse_address(text)
    if not isinstance(parsed, RangeAddress):
        raise ValueError(f"expected a CIDR range, got host address {parsed}")
    return parsed


def matches(target: Address, candidate: Address) -> bool:
    """Return True when ``candidate`` is covered by ``target``.

    Only concrete host candidates can match. Families never cross: an IPv4
    target does not match an IPv6 candidate, including IPv4-mapped forms.
    A host target compares by value, a range target by prefix containment.
    """
    if not isinstance(candidate, HostAddress):
        return False
    if target.version != candidate.version:
        return False
    if isinstance(target, HostAddress):
        return target.value == candidate.value
    return candidate.value in target.network
