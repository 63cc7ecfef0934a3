"""Known chains an escrow ledger may run on."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ChainConfig:
    name: str
    chain_id: int
    rpc_url: str


CHAIN_CONFIGS: dict[str, ChainConfig] = {
    "hardhat-local": ChainConfig(
        name="hardhat-local",
        chain_id=31337,
        rpc_url="http://127.0.0.1:8545",
    ),
    "sepolia": ChainConfig(
        name="sepolia",
        chain_id=11155111,
        rpc_url="https://rpc.sepolia.org",
    ),
}


def get_chain_config(chain_name: str = "hardhat-local", rpc_url: str | None = None) -> ChainConfig:
    """Look up a chain by name, optionally overriding its RPC endpoint.

    Raises:
        ValueError: If the chain name is unknown.
    """
    config = CHAIN_CONFIGS.get(chain_name)
    if config is None:
        known = ", ".join(sorted(CHAIN_CONFIGS))
        raise ValueError(f"Unknown chain: {chain_name}. Known chains: {known}")
    if rpc_url:
        return ChainConfig(name=config.name, chain_id=config.chain_id, rpc_url=rpc_url)
    return config
