import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import api_router
from .config import get_engine_config
from .services.node_adapters import NodeAdapters

logger = logging.getLogger(__name__)

config = get_engine_config()

logging.basicConfig(
    level=config.settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan: startup and shutdown events.
    """
    logger.info("Starting workflows engine (default model %s)", config.settings.default_model)
    app.state.engine_config = config
    app.state.node_adapters = NodeAdapters.from_config(config)
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down workflows engine")


app = FastAPI(
    title="Workflows AI",
    description="Executes AI workflows (chain, fan-out, branch, retry and composite pipelines) over generation nodes and streams progress as server-sent events.",
    lifespan=lifespan,
)

# Use regex to allow Vercel deployments and localhost
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=config.settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.include_router(api_router)
