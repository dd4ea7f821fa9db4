"""Backend package for ban issuance and enforcement."""

from .addresses import Address, HostAddress, RangeAddress, matches, parse_address
from .config import BackendSettings, load_settings
from .connections import ConnectionEnforcer, LiveConnectionRegistry
from .issuer import BanIssuer
from .models import Ban, BanFailure, BanResult, Identity, LiveSession, Session
from .store import BanStore, InMemoryBanStore, PostgresBanStore, create_store

__all__ = [
    "Address",
    "Ban",
    "BanFailure",
    "BanIssuer",
    "BanResult",
    "BanStore",
    "BackendSettings",
    "ConnectionEnforcer",
    "create_store",
    "HostAddress",
    "Identity",
    "InMemoryBanStore",
    "LiveConnectionRegistry",
    "LiveSession",
    "load_settings",
    "matches",
    "parse_address",
    "PostgresBanStore",
    "RangeAddress",
    "Session",
]
