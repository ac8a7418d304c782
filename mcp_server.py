import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from policy import parse_allow_methods
from rpc_client import AsyncRetryingRpcClient
from tatum_config import ConfigError, TatumSettings, load_settings
from tatum_tools import TatumTools

SERVER_NAME = "tatum-mcp-server"

logger = logging.getLogger("TatumMCP")


def build_tools(settings: TatumSettings, allow_methods: str = "") -> TatumTools:
    client = AsyncRetryingRpcClient(
        settings.endpoint,
        api_key=settings.api_key,
        policy=settings.retry_policy,
        retry_statuses=settings.retry_statuses,
        timeout=settings.timeout,
    )
    return TatumTools(client, allowed_methods=parse_allow_methods(allow_methods))


def build_server(settings: TatumSettings, tools: Optional[TatumTools] = None, allow_methods: str = "") -> FastMCP:
    tools = tools or build_tools(settings, allow_methods)
    mcp = FastMCP(SERVER_NAME, port=settings.port)

    @mcp.tool(name="get_block_number", description=f"Get latest {settings.chain} block number")
    async def get_block_number() -> Dict[str, Any]:
        return await tools.get_block_number()

    @mcp.tool(name="get_native_balance", description="Get native balance for address")
    async def get_native_balance(address: str) -> Dict[str, Any]:
        return await tools.get_native_balance(address)

    @mcp.tool(name="get_token_balance", description="Get ERC20 balance")
    async def get_token_balance(tokenAddress: str, address: str) -> Dict[str, Any]:
        return await tools.get_token_balance(tokenAddress, address)

    @mcp.tool(name="get_block_by_number", description="Get block by number or tag")
    async def get_block_by_number(tagOrNumber: str, full: bool = False) -> Any:
        return await tools.get_block_by_number(tagOrNumber, full)

    @mcp.tool(name="get_transaction_by_hash", description="Get transaction by hash")
    async def get_transaction_by_hash(hash: str) -> Any:
        return await tools.get_transaction_by_hash(hash)

    @mcp.tool(name="get_logs", description="Get logs by filter")
    async def get_logs(
        fromBlock: Optional[str] = None,
        toBlock: Optional[str] = None,
        address: Optional[str] = None,
        topics: Optional[List[Optional[str]]] = None,
    ) -> Any:
        return await tools.get_logs(fromBlock, toBlock, address, topics)

    @mcp.tool(name="rpc_call", description="Allow-listed raw RPC call")
    async def rpc_call(method: str, params: Optional[List[Any]] = None) -> Any:
        return await tools.rpc_call(method, params or [])

    return mcp


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )

    parser = argparse.ArgumentParser(description="Tatum gateway MCP server")
    parser.add_argument("--transport", choices=["stdio", "sse"], default="stdio")
    parser.add_argument("--allow-methods", default="", help="Extra comma-separated RPC methods to allow.")
    args = parser.parse_args()

    try:
        settings = load_settings()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    server = build_server(settings, allow_methods=args.allow_methods)
    logger.info(f"Starting {SERVER_NAME} ({settings.chain}) on {args.transport}")
    server.run(transport=args.transport)


if __name__ == "__main__":
    main()
