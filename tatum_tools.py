import logging
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from eth_abi import decode as eth_abi_decode
from eth_abi import encode as eth_abi_encode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from fixed_point import WEI_DECIMALS, format_unsigned, hex_to_int, wei_to_ether
from policy import DEFAULT_ALLOW_METHODS, ensure_allowed_method
from rpc_client import AsyncRetryingRpcClient, JsonValue
from rpc_errors import ApplicationError, ParseError

BALANCE_OF_SIG = "0x70a08231"
DECIMALS_SIG = "0x313ce567"
REVERT_CODE = 3

logger = logging.getLogger("TatumTools")


def checksum_address(address: str, label: str = "address") -> str:
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValueError(f"Invalid {label}: {address!r}")
    return Web3.to_checksum_address(address)


def encode_balance_of(owner: str) -> str:
    return BALANCE_OF_SIG + eth_abi_encode(["address"], [checksum_address(owner, "owner address")]).hex()


def decode_uint8(hexdata: Any) -> int:
    if not isinstance(hexdata, str):
        raise ParseError(f"Expected hex string, got {type(hexdata).__name__}")
    raw = hexdata[2:] if hexdata[:2] in ("0x", "0X") else hexdata
    (value,) = eth_abi_decode(["uint8"], bytes.fromhex(raw))
    return value


def is_revert(exc: ApplicationError) -> bool:
    # geth reports reverts with code 3, some nodes use -32000 with the same message
    return exc.code == REVERT_CODE or "revert" in exc.message.lower()


def block_tag(tag_or_number: Union[str, int]) -> str:
    if isinstance(tag_or_number, bool):
        raise ValueError("block tag must be a string or integer")
    if isinstance(tag_or_number, int):
        if tag_or_number < 0:
            raise ValueError("block number must be non-negative")
        return hex(tag_or_number)
    return tag_or_number


class TatumTools:
    def __init__(self, client: AsyncRetryingRpcClient, allowed_methods: Optional[Set[str]] = None):
        self.client = client
        self.allowed_methods = set(DEFAULT_ALLOW_METHODS) if allowed_methods is None else set(allowed_methods)

    async def get_block_number(self) -> Dict[str, Any]:
        hexnum = await self.client.call("eth_blockNumber")
        return {"hex": hexnum, "decimal": str(hex_to_int(hexnum))}

    async def get_native_balance(self, address: str) -> Dict[str, Any]:
        checksum_address(address)
        hexwei = await self.client.call("eth_getBalance", [address, "latest"])
        return {
            "address": address,
            "hex_wei": hexwei,
            "wei": str(hex_to_int(hexwei)),
            "ether": wei_to_ether(hexwei),
        }

    async def get_token_decimals(self, token_address: str) -> int:
        try:
            hexdec = await self.client.call("eth_call", [{"to": token_address, "data": DECIMALS_SIG}, "latest"])
            return decode_uint8(hexdec)
        except ApplicationError as exc:
            # gateway errors such as rate limits must not turn into a wrong scale
            if not is_revert(exc):
                raise
            logger.warning(f"decimals() reverted for {token_address} ({exc}), assuming {WEI_DECIMALS}")
            return WEI_DECIMALS
        except (ParseError, DecodingError, ValueError) as exc:
            logger.warning(f"decimals() undecodable for {token_address} ({exc}), assuming {WEI_DECIMALS}")
            return WEI_DECIMALS

    async def get_token_balance(self, token_address: str, address: str) -> Dict[str, Any]:
        checksum_address(token_address, "token address")
        call = {"to": token_address, "data": encode_balance_of(address)}
        hexbal = await self.client.call("eth_call", [call, "latest"])
        raw = hex_to_int(hexbal)
        decimals = await self.get_token_decimals(token_address)
        return {
            "token_address": token_address,
            "address": address,
            "hex": hexbal,
            "raw": str(raw),
            "decimals": decimals,
            "formatted": format_unsigned(hexbal, decimals),
        }

    async def get_block_by_number(self, tag_or_number: Union[str, int], full: bool = False) -> JsonValue:
        return await self.client.call("eth_getBlockByNumber", [block_tag(tag_or_number), bool(full)])

    async def get_transaction_by_hash(self, tx_hash: str) -> JsonValue:
        return await self.client.call("eth_getTransactionByHash", [tx_hash])

    async def get_logs(
        self,
        from_block: Optional[str] = None,
        to_block: Optional[str] = None,
        address: Optional[str] = None,
        topics: Optional[List[Optional[str]]] = None,
    ) -> JsonValue:
        log_filter = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": address,
            "topics": topics,
        }
        log_filter = {k: v for k, v in log_filter.items() if v is not None}
        return await self.client.call("eth_getLogs", [log_filter])

    async def rpc_call(self, method: str, params: Optional[Sequence[JsonValue]] = None) -> JsonValue:
        ensure_allowed_method(method, self.allowed_methods)
        return await self.client.call(method, list(params or []))
