import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from pydantic import BaseModel

from mcp_server import SERVER_NAME, build_server, build_tools
from tatum_config import ConfigError, TatumSettings, load_settings
from tatum_tools import TatumTools

SERVER_VERSION = "1.0.0"

logger = logging.getLogger("TatumMCP")


# ---- Agent card ----


class AgentSkill(BaseModel):
    id: str
    name: str
    description: str
    tags: List[str]
    examples: List[str]
    inputModes: List[str]
    outputModes: List[str]


class AgentCard(BaseModel):
    name: str
    version: str
    description: str
    skills: List[AgentSkill]


def agent_card(settings: TatumSettings) -> AgentCard:
    return AgentCard(
        name="Tatum MCP Server",
        version=SERVER_VERSION,
        description=f"MCP server proxying Tatum Gateway for {settings.chain} data",
        skills=[
            AgentSkill(
                id="tatum-gateway",
                name="Tatum Gateway",
                description="Chain data access via allow-listed JSON-RPC",
                tags=["rpc", settings.chain, "tatum"],
                examples=["get_block_number", "get_native_balance"],
                inputModes=["application/json"],
                outputModes=["application/json"],
            )
        ],
    )


# ---- FastAPI app ----


def create_app(settings: TatumSettings, tools: Optional[TatumTools] = None) -> FastAPI:
    tools = tools or build_tools(settings)
    server = build_server(settings, tools=tools)
    card = agent_card(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await tools.client.close()

    app = FastAPI(title="Tatum MCP Server", version=SERVER_VERSION, lifespan=lifespan)

    @app.get("/.well-known/agent.json", response_model=AgentCard)
    async def well_known_agent() -> AgentCard:
        return card

    @app.get("/healthz")
    async def healthz() -> Dict[str, Any]:
        return {
            "ok": True,
            "server": SERVER_NAME,
            "chain": settings.chain,
            "endpoint": settings.endpoint,
            "max_attempts": settings.max_attempts,
            "retry_statuses": sorted(settings.retry_statuses),
            "allow_methods": sorted(tools.allowed_methods),
        }

    # /sse and /messages/ from the MCP server; mounted last so the routes above win
    app.mount("/", server.sse_app())
    return app


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        settings = load_settings()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    logger.info(f"Tatum MCP server listening on {settings.port}")
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
