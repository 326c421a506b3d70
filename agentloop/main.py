from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from langchain_core.tools import BaseTool

load_dotenv()

# Must come after load_dotenv so env vars are available
from agentloop.agents.agent_graph import build_agent_graph  # noqa: E402
from agentloop.api import agent, health, sessions           # noqa: E402
from agentloop.core.checkpointer import close_connection_pool, get_checkpointer  # noqa: E402
from agentloop.core.config import get_settings              # noqa: E402
from agentloop.core.llm import get_model_set                # noqa: E402
from agentloop.core.logging import configure_logging, get_logger  # noqa: E402
from agentloop.memory.store import PgVectorMemoryStore      # noqa: E402

configure_logging()
log = get_logger(__name__)


def create_app(tools: list[BaseTool] | None = None) -> FastAPI:
    """
    Build the API. Tools are supplied by the embedding application; the
    agent runs without tools when none are given.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        checkpointer = await get_checkpointer(settings)
        memory_store = PgVectorMemoryStore(settings) if settings.database_url and settings.memory_enabled else None
        app.state.agent_graph = build_agent_graph(
            get_model_set(settings),
            tools=tools,
            memory_store=memory_store,
            checkpointer=checkpointer,
            settings=settings,
        )
        log.info("startup", version="0.1.0", environment=settings.environment, mode=settings.agent_mode)
        yield
        await close_connection_pool()
        log.info("shutdown")

    app = FastAPI(
        title="agentloop",
        description="LangGraph agent execution loop with short- and long-term memory",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(agent.router)
    app.include_router(sessions.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("agentloop.main:app", host="0.0.0.0", port=8000, reload=True)
