import os
from dataclasses import dataclass
from typing import FrozenSet

from rpc_client import DEFAULT_RETRY_STATUSES, DEFAULT_TIMEOUT, RetryPolicy

DEFAULT_CHAIN = "arbitrum-one-mainnet"
DEFAULT_PORT = 3010
GATEWAY_URL_TEMPLATE = "https://{chain}.gateway.tatum.io"

# Known gateway chain slugs, for the health-check script.
GATEWAY_CHAINS = {
    "arbitrum": "arbitrum-one-mainnet",
    "arbitrum_nova": "arbitrum-nova-mainnet",
    "ethereum": "ethereum-mainnet",
    "sepolia": "ethereum-sepolia",
    "base": "base-mainnet",
    "optimism": "optimism-mainnet",
    "polygon": "polygon-mainnet",
    "bsc": "bsc-mainnet",
}


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class TatumSettings:
    api_key: str
    chain: str = DEFAULT_CHAIN
    gateway_url: str = ""
    port: int = DEFAULT_PORT
    timeout: float = DEFAULT_TIMEOUT
    max_attempts: int = 6
    retry_statuses: FrozenSet[int] = DEFAULT_RETRY_STATUSES

    @property
    def endpoint(self) -> str:
        return self.gateway_url or gateway_url(self.chain)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_attempts)


def gateway_url(chain: str) -> str:
    chain = chain.strip()
    if not chain:
        raise ConfigError("chain must not be empty")
    return GATEWAY_URL_TEMPLATE.format(chain=GATEWAY_CHAINS.get(chain, chain))


def parse_statuses(value: str) -> FrozenSet[int]:
    statuses = set()
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            statuses.add(int(item))
        except ValueError:
            raise ConfigError(f"Invalid HTTP status in TATUM_RETRY_STATUSES: {item!r}") from None
    return frozenset(statuses)


def load_settings(require_key: bool = True) -> TatumSettings:
    api_key = os.getenv("TATUM_API_KEY", "").strip()
    if require_key and not api_key:
        raise ConfigError("TATUM_API_KEY is required")

    statuses_env = os.getenv("TATUM_RETRY_STATUSES", "")
    try:
        settings = TatumSettings(
            api_key=api_key,
            chain=os.getenv("TATUM_CHAIN", DEFAULT_CHAIN).strip() or DEFAULT_CHAIN,
            gateway_url=os.getenv("TATUM_GATEWAY_URL", "").strip(),
            port=int(os.getenv("PORT", str(DEFAULT_PORT))),
            timeout=float(os.getenv("TATUM_RPC_TIMEOUT", str(DEFAULT_TIMEOUT))),
            max_attempts=int(os.getenv("TATUM_MAX_ATTEMPTS", "6")),
            retry_statuses=parse_statuses(statuses_env) if statuses_env else DEFAULT_RETRY_STATUSES,
        )
        RetryPolicy(max_attempts=settings.max_attempts)
    except ValueError as exc:
        raise ConfigError(f"Invalid Tatum configuration: {exc}") from exc
    return settings
