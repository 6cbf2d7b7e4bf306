"""
polyalgo Core: Proxy Wallet Address Derivation

Derives the counterfactual proxy wallet address controlled by an EOA using
CREATE2 (EIP-1014), mirroring the on-chain proxy factory:

    salt          = keccak256(eoa_address_bytes)
    init_code     = template % (factory, implementation)
    address       = keccak256(0xff ++ factory ++ salt ++ keccak256(init_code))[12:]

Same inputs always yield the same checksummed address.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from web3 import Web3

from core.exceptions import ProxyDerivationError

logger = logging.getLogger(__name__)

# Proxy wallet factory deployment on Polygon
DEFAULT_FACTORY_ADDRESS = "0xab45c5a4b0c941a2f231c04c3f49182e1a254052"
DEFAULT_IMPLEMENTATION_ADDRESS = "0x44e999d5c2f66ef0861317f9a4805ac2e90aeb4f"


def _address_bytes(address: str) -> bytes:
    if not Web3.is_address(address):
        raise ProxyDerivationError(f"Invalid address: {address}")
    return bytes.fromhex(Web3.to_checksum_address(address)[2:])


def _hex_bytes(value: str) -> bytes:
    text = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(text)
    except ValueError as exc:
        raise ProxyDerivationError(f"Invalid hex data: {exc}") from exc


def compute_create2_address(deployer: str, salt: bytes, init_code_hash: bytes) -> str:
    """EIP-1014 address for `deployer` deploying code with `init_code_hash` under `salt`."""
    if len(salt) != 32:
        raise ProxyDerivationError(f"CREATE2 salt must be 32 bytes, got {len(salt)}")
    if len(init_code_hash) != 32:
        raise ProxyDerivationError(f"init code hash must be 32 bytes, got {len(init_code_hash)}")

    digest = bytes(Web3.keccak(b"\xff" + _address_bytes(deployer) + salt + init_code_hash))
    return Web3.to_checksum_address("0x" + digest[12:].hex())


def build_init_code(template: str, factory_address: str, implementation_address: str) -> bytes:
    """Fill the two `%s` placeholders with lowercase addresses (no 0x prefix)."""
    if not template or template.count("%s") != 2:
        raise ProxyDerivationError("Proxy init code template must contain exactly two '%s' placeholders")
    filled = template.replace("%s", factory_address[2:].lower(), 1)
    filled = filled.replace("%s", implementation_address[2:].lower(), 1)
    return _hex_bytes(filled)


@dataclass(frozen=True)
class ProxyWalletConfig:
    init_code_template: Optional[str]
    factory_address: str = DEFAULT_FACTORY_ADDRESS
    implementation_address: str = DEFAULT_IMPLEMENTATION_ADDRESS

    @classmethod
    def from_config(cls, raw: Optional[dict]) -> "ProxyWalletConfig":
        raw = raw or {}
        return cls(
            init_code_template=raw.get("init_code_template") or None,
            factory_address=raw.get("factory_address") or DEFAULT_FACTORY_ADDRESS,
            implementation_address=raw.get("implementation_address") or DEFAULT_IMPLEMENTATION_ADDRESS,
        )


def derive_proxy_address(eoa_address: str, config: ProxyWalletConfig) -> str:
    """
    Derive the proxy wallet address for `eoa_address`.

    Raises:
        ProxyDerivationError: invalid address or missing/malformed template
    """
    if not config.init_code_template:
        raise ProxyDerivationError(
            "proxy_wallet.init_code_template is not configured; supply a known proxy address instead"
        )

    salt = bytes(Web3.keccak(_address_bytes(eoa_address)))
    init_code = build_init_code(
        config.init_code_template, config.factory_address, config.implementation_address
    )
    init_code_hash = bytes(Web3.keccak(init_code))
    proxy = compute_create2_address(config.factory_address, salt, init_code_hash)
    logger.debug(f"Derived proxy {proxy} for {eoa_address}")
    return proxy
