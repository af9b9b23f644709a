"""ASGI entry point: ``uvicorn concierge.api.main:app``.

The lifespan wires the service graph onto ``app.state`` (pool, store, LLM,
search and workflow clients, tool registry, chat service) and tears it down
in reverse: background workflow posts, HTTP clients, then the pool.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from agents import set_default_openai_client, set_tracing_disabled
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from concierge.api.middleware.exception_handlers import ConfigurationError, register_exception_handlers
from concierge.api.middleware.request_context import RequestContextMiddleware
from concierge.api.routes import router as api_router
from concierge.api.services.chat_service import ChatService
from concierge.api.services.chat_store import ChatStore
from concierge.core.constants import env_files, get_settings
from concierge.integrations.llm_service import LLMService
from concierge.integrations.serpapi_client import SerpApiClient
from concierge.integrations.workflow_client import WorkflowClient
from concierge.tools.registry import build_default_registry
from concierge.utils.cache import HistoryCache
from concierge.utils.client_factory import create_http_client, create_openai_client
from concierge.utils.db_utils import check_pool_health, create_database_pool, graceful_pool_close
from concierge.utils.logger import configure_uvicorn_logging, logger

settings = get_settings()

if settings.debug:
    logger.info(
        "Settings loaded",
        env_files=[path.name for path in env_files()],
        app_env=settings.app_env,
        tools=settings.enabled_tools,
    )

# Module level so every uvicorn worker picks it up
configure_uvicorn_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: build the service graph, then tear it down in reverse."""
    if not settings.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY is not set")

    # Model client: shared by the agents SDK and the text/structured helpers
    openai_http = create_http_client(
        enable_logging=settings.http_request_logging,
        read_timeout=settings.http_read_timeout,
    )
    openai_client = create_openai_client(
        settings.openai_api_key,
        base_url=settings.openai_base_url,
        http_client=openai_http,
    )
    set_default_openai_client(openai_client)
    set_tracing_disabled(True)
    logger.info("OpenAI client registered with agents SDK")

    # Outbound HTTP for the search provider and workflow webhooks
    outbound_http = create_http_client(
        enable_logging=settings.http_request_logging,
        read_timeout=max(settings.search_timeout, settings.workflow_timeout),
    )

    app.state.db_pool = await create_database_pool(
        dsn=settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
        connection_timeout=settings.db_connection_timeout,
        statement_cache_size=settings.db_statement_cache_size,
        max_inactive_connection_lifetime=settings.db_max_inactive_connection_lifetime,
    )

    health = await check_pool_health(app.state.db_pool)
    if not health["healthy"]:
        raise RuntimeError("Database did not answer the startup health check")

    store = ChatStore(app.state.db_pool, HistoryCache(ttl=settings.message_cache_ttl))
    llm = LLMService(openai_client, settings)

    search: SerpApiClient | None = None
    if settings.serpapi_api_key:
        search = SerpApiClient(
            outbound_http,
            settings.serpapi_api_key,
            base_url=settings.serpapi_base_url,
            timeout=settings.search_timeout,
        )

    # Fails startup on unknown or misconfigured tools
    registry = build_default_registry(store, llm, search)
    registry.validate(settings.enabled_tools, settings)
    logger.info("Tools enabled", tools=settings.enabled_tools)

    workflow = WorkflowClient(
        outbound_http,
        secret=settings.workflow_webhook_secret,
        timeout=settings.workflow_timeout,
    )

    app.state.chat_store = store
    app.state.chat_service = ChatService(store, llm, registry, workflow, settings)

    try:
        yield
    finally:
        logger.info("Shutting down")
        await app.state.chat_service.wait_for_background_tasks(timeout=settings.workflow_timeout)

        await outbound_http.aclose()
        await openai_client.close()

        await graceful_pool_close(app.state.db_pool, timeout=settings.shutdown_timeout)


app = FastAPI(
    title="Concierge API",
    description="""
## Concierge API

Conversational concierge backend: streamed chat turns with personalized
flight, hotel and gift search tools, or delegation to external workflows.

### Features
- **Streaming turns**: newline-delimited JSON chunks (text, tool calls, progress)
- **Search tools**: multi-stage flight, hotel and gift searches with live progress
- **User context**: profile-aware answers from the user's stored context
- **Workflows**: webhook hand-off with an authenticated callback

### Authentication
Chat endpoints require an identity provider JWT as a Bearer token.
""",
    version=settings.app_version,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoints for monitoring and orchestration"},
        {"name": "Chat", "description": "Chat turns and chat deletion"},
        {"name": "Workflows", "description": "External workflow replies"},
    ],
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

register_exception_handlers(app)

# Last added runs first: CORS wraps the request context
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")

app.mount("/metrics", make_asgi_app())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "concierge.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["src"],
        log_config=None,
    )
