#!/usr/bin/env python3
"""
Address Validator Utility
Structural Bitcoin address checks (prefix, length, character set).

Checksums (Base58Check, Bech32/Bech32m) are verified by the signing
collaborator at transaction time, not here.
"""

from enum import Enum
from typing import Optional

BASE58_CHARSET = frozenset("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")
BECH32_CHARSET = frozenset("qpzry9x8gf2tvdw0s3jn54khce6mua7l")

MAINNET = "mainnet"
TESTNET = "testnet"


class AddressType(str, Enum):
    P2PKH = "p2pkh"
    P2SH = "p2sh"
    P2WPKH = "p2wpkh"
    P2WSH = "p2wsh"
    P2TR = "p2tr"
    UNKNOWN = "unknown"

    @property
    def is_segwit(self) -> bool:
        return self in (AddressType.P2WPKH, AddressType.P2WSH, AddressType.P2TR)


class AddressValidator:
    """Structural validator for mainnet and testnet addresses."""

    @staticmethod
    def _clean(address: Optional[str]) -> str:
        return (address or "").strip()

    @classmethod
    def network(cls, address: str) -> Optional[str]:
        """Return ``mainnet``/``testnet`` from the prefix, or None."""
        addr = cls._clean(address)
        if not addr:
            return None
        lowered = addr.lower()
        if lowered.startswith("bc1"):
            return MAINNET
        if lowered.startswith("tb1"):
            return TESTNET
        if addr[0] in "13":
            return MAINNET
        if addr[0] in "mn2":
            return TESTNET
        return None

    @classmethod
    def address_type(cls, address: str) -> AddressType:
        addr = cls._clean(address).lower()
        if not addr:
            return AddressType.UNKNOWN

        for hrp in ("bc1", "tb1"):
            if addr.startswith(hrp + "q"):
                return AddressType.P2WSH if len(addr) == 62 else AddressType.P2WPKH
            if addr.startswith(hrp + "p"):
                return AddressType.P2TR

        first = cls._clean(address)[0]
        if first in "1mn":
            return AddressType.P2PKH
        if first in "32":
            return AddressType.P2SH
        return AddressType.UNKNOWN

    @classmethod
    def is_valid(cls, address: Optional[str]) -> bool:
        addr = cls._clean(address)
        if not addr:
            return False
        lowered = addr.lower()
        if lowered.startswith(("bc1", "tb1")):
            return cls._validate_bech32(addr)
        if addr[0] in "13mn2":
            return cls._validate_base58(addr)
        return False

    @classmethod
    def is_mainnet(cls, address: str) -> bool:
        return cls.is_valid(address) and cls.network(address) == MAINNET

    @classmethod
    def is_testnet(cls, address: str) -> bool:
        return cls.is_valid(address) and cls.network(address) == TESTNET

    @classmethod
    def matches_network(cls, address: str, network: str) -> bool:
        return cls.network(address) == network.lower()

    @staticmethod
    def _validate_base58(address: str) -> bool:
        # P2PKH and P2SH addresses are 25-34 characters
        if not 25 <= len(address) <= 34:
            return False
        return all(ch in BASE58_CHARSET for ch in address)

    @staticmethod
    def _validate_bech32(address: str) -> bool:
        # Bech32 must be all lowercase or all uppercase
        if address != address.lower() and address != address.upper():
            return False
        lowered = address.lower()
        data = lowered[3:]
        if len(data) < 2 or not all(ch in BECH32_CHARSET for ch in data):
            return False
        witness_version = data[0]
        if witness_version == "q":
            return len(lowered) in (42, 62)
        if witness_version == "p":
            return len(lowered) == 62
        return False


address_validator = AddressValidator()
