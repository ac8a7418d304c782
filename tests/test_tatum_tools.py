import asyncio
import json
import os
import sys

import httpx
import pytest

# Add repo root to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from policy import MethodNotAllowed
from rpc_client import AsyncRetryingRpcClient, RetryPolicy
from rpc_errors import ApplicationError, RetriesExhausted
from tatum_tools import BALANCE_OF_SIG, DECIMALS_SIG, TatumTools, block_tag, encode_balance_of

OWNER = "0x" + "ab" * 20
TOKEN = "0x" + "cd" * 20


class FakeGateway:
    """Answers JSON-RPC requests from a method -> handler table."""

    def __init__(self, handlers):
        self.handlers = handlers
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append((body["method"], body["params"]))
        handler = self.handlers[body["method"]]
        reply = handler(body["params"])
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], **reply})


def make_tools(handlers, **kwargs):
    gateway = FakeGateway(handlers)

    async def no_sleep(delay):
        return None

    client = AsyncRetryingRpcClient(
        "https://arbitrum-one-mainnet.gateway.tatum.io",
        api_key="k",
        policy=RetryPolicy(jitter=False, max_attempts=2),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(gateway)),
        sleep=no_sleep,
    )
    return TatumTools(client, **kwargs), gateway


def uint_word(value):
    return "0x" + format(value, "064x")


def test_get_block_number():
    tools, gateway = make_tools({"eth_blockNumber": lambda p: {"result": "0x1b4"}})

    assert asyncio.run(tools.get_block_number()) == {"hex": "0x1b4", "decimal": "436"}
    assert gateway.calls == [("eth_blockNumber", [])]


def test_get_native_balance():
    tools, gateway = make_tools({"eth_getBalance": lambda p: {"result": "0xde0b6b3a7640000"}})

    result = asyncio.run(tools.get_native_balance(OWNER))

    assert result == {
        "address": OWNER,
        "hex_wei": "0xde0b6b3a7640000",
        "wei": "1000000000000000000",
        "ether": "1",
    }
    assert gateway.calls == [("eth_getBalance", [OWNER, "latest"])]


def test_get_native_balance_rejects_bad_address():
    tools, gateway = make_tools({})

    with pytest.raises(ValueError):
        asyncio.run(tools.get_native_balance("0x1234"))
    assert gateway.calls == []


def test_get_token_balance():
    def eth_call(params):
        data = params[0]["data"]
        if data == DECIMALS_SIG:
            return {"result": uint_word(6)}
        return {"result": uint_word(1_500_000)}

    tools, gateway = make_tools({"eth_call": eth_call})

    result = asyncio.run(tools.get_token_balance(TOKEN, OWNER))

    assert result == {
        "token_address": TOKEN,
        "address": OWNER,
        "hex": uint_word(1_500_000),
        "raw": "1500000",
        "decimals": 6,
        "formatted": "1.5",
    }
    balance_call = gateway.calls[0][1]
    assert balance_call[0]["to"] == TOKEN
    assert balance_call[0]["data"] == BALANCE_OF_SIG + "0" * 24 + OWNER[2:]
    assert balance_call[1] == "latest"


def test_token_decimals_fall_back_to_18_on_revert():
    def eth_call(params):
        if params[0]["data"] == DECIMALS_SIG:
            return {"error": {"code": 3, "message": "execution reverted"}}
        return {"result": uint_word(2 * 10 ** 18)}

    tools, _ = make_tools({"eth_call": eth_call})

    result = asyncio.run(tools.get_token_balance(TOKEN, OWNER))

    assert result["decimals"] == 18
    assert result["formatted"] == "2"


def test_token_decimals_fall_back_on_node_revert_message():
    def eth_call(params):
        if params[0]["data"] == DECIMALS_SIG:
            return {"error": {"code": -32000, "message": "execution reverted"}}
        return {"result": uint_word(7 * 10 ** 17)}

    tools, _ = make_tools({"eth_call": eth_call})

    result = asyncio.run(tools.get_token_balance(TOKEN, OWNER))

    assert result["decimals"] == 18
    assert result["formatted"] == "0.7"


def test_token_decimals_gateway_error_propagates():
    def eth_call(params):
        if params[0]["data"] == DECIMALS_SIG:
            return {"error": {"code": -32005, "message": "rate limit exceeded"}}
        return {"result": uint_word(1_500_000)}

    tools, _ = make_tools({"eth_call": eth_call})

    with pytest.raises(ApplicationError) as excinfo:
        asyncio.run(tools.get_token_balance(TOKEN, OWNER))
    assert excinfo.value.code == -32005


def test_token_decimals_fall_back_on_empty_return():
    def eth_call(params):
        if params[0]["data"] == DECIMALS_SIG:
            return {"result": "0x"}
        return {"result": uint_word(5)}

    tools, _ = make_tools({"eth_call": eth_call})

    result = asyncio.run(tools.get_token_balance(TOKEN, OWNER))

    assert result["decimals"] == 18
    assert result["formatted"] == "0.000000000000000005"


def test_token_balance_transport_failure_propagates():
    tools, _ = make_tools({"eth_call": lambda p: httpx.Response(429)})

    with pytest.raises(RetriesExhausted):
        asyncio.run(tools.get_token_balance(TOKEN, OWNER))


def test_encode_balance_of_checksums_input():
    assert encode_balance_of(OWNER.upper().replace("0X", "0x")) == BALANCE_OF_SIG + "0" * 24 + OWNER[2:]


def test_get_block_by_number_accepts_int_and_tag():
    tools, gateway = make_tools({"eth_getBlockByNumber": lambda p: {"result": {"number": p[0]}}})

    assert asyncio.run(tools.get_block_by_number(255, full=True)) == {"number": "0xff"}
    assert asyncio.run(tools.get_block_by_number("latest")) == {"number": "latest"}
    assert gateway.calls == [
        ("eth_getBlockByNumber", ["0xff", True]),
        ("eth_getBlockByNumber", ["latest", False]),
    ]


def test_block_tag_validation():
    with pytest.raises(ValueError):
        block_tag(-1)
    with pytest.raises(ValueError):
        block_tag(True)


def test_get_transaction_by_hash():
    tx_hash = "0x" + "11" * 32
    tools, gateway = make_tools({"eth_getTransactionByHash": lambda p: {"result": None}})

    assert asyncio.run(tools.get_transaction_by_hash(tx_hash)) is None
    assert gateway.calls == [("eth_getTransactionByHash", [tx_hash])]


def test_get_logs_omits_unset_filter_keys():
    tools, gateway = make_tools({"eth_getLogs": lambda p: {"result": []}})

    asyncio.run(tools.get_logs(from_block="0x1", topics=[None, "0xdead"]))

    assert gateway.calls == [("eth_getLogs", [{"fromBlock": "0x1", "topics": [None, "0xdead"]}])]


def test_rpc_call_allowed_method():
    tools, gateway = make_tools({"eth_chainId": lambda p: {"result": "0xa4b1"}})

    assert asyncio.run(tools.rpc_call("eth_chainId")) == "0xa4b1"
    assert gateway.calls == [("eth_chainId", [])]


def test_rpc_call_rejects_method_outside_allow_list():
    tools, gateway = make_tools({})

    with pytest.raises(MethodNotAllowed):
        asyncio.run(tools.rpc_call("eth_sendRawTransaction", ["0xdead"]))
    assert gateway.calls == []


def test_rpc_call_custom_allow_list():
    tools, _ = make_tools({"net_version": lambda p: {"result": "42161"}}, allowed_methods={"net_version"})

    assert asyncio.run(tools.rpc_call("net_version")) == "42161"
    with pytest.raises(MethodNotAllowed):
        asyncio.run(tools.rpc_call("eth_chainId"))
