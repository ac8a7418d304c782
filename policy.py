import os
from typing import Set

DEFAULT_ALLOW_METHODS = frozenset(
    {
        "eth_blockNumber",
        "eth_getBalance",
        "eth_getBlockByNumber",
        "eth_getTransactionByHash",
        "eth_getLogs",
        "eth_call",
        "eth_chainId",
        "eth_gasPrice",
        "eth_estimateGas",
        "eth_getCode",
        "eth_getTransactionReceipt",
    }
)


class MethodNotAllowed(ValueError):
    def __init__(self, method: str):
        super().__init__(f"Method not allowed: {method}")
        self.method = method


def parse_allow_methods(cli_value: str = "") -> Set[str]:
    sources = [
        os.getenv("TATUM_ALLOW_METHODS", ""),
        cli_value or "",
    ]
    # RPC method names are case-sensitive, unlike addresses
    allowed = set(DEFAULT_ALLOW_METHODS)
    for source in sources:
        if not source:
            continue
        for item in source.split(","):
            method = item.strip()
            if method:
                allowed.add(method)
    return allowed


def is_allowed_method(method: str, allowed: Set[str]) -> bool:
    return method in allowed


def ensure_allowed_method(method: str, allowed: Set[str]) -> None:
    if not is_allowed_method(method, allowed):
        raise MethodNotAllowed(method)
