""" main.py: FastAPI application entry point and runtime configuration.

This module builds the ASGI app, mounts the API routers (messages, again, models), configures CORS and
exposes a Prometheus metrics endpoint. The queued-processing worker is started with the application and
stopped on shutdown, so it shares the server's event loop. When executed directly, it starts a Uvicorn
server using host/port values from configuration.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
import logging
from config import CONFIG
from core.bootstrap import get_engine
from version import __version__

# --- Router Imports ---
from api import messages as messages_router
from api import again as again_router
from api import models as models_router

# Get a logger instance for this module
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the queued-processing worker with the app and stop it on shutdown."""
    queue = get_engine().queue
    if CONFIG.get('queue', {}).get('enabled', True):
        queue.start()
    yield
    queue.shutdown()


app = FastAPI(title="Message Router", version=__version__, lifespan=lifespan)

# Include routers
app.include_router(messages_router.router, prefix="/api", tags=["Messages"])
app.include_router(again_router.router, prefix="/api", tags=["Again"])
app.include_router(models_router.router, prefix="/api", tags=["Models"])

# Add Prometheus metrics endpoint
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Configure CORS
allow_origins = CONFIG.get('cors', {}).get('allow_origins', ["*"])
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# The uvicorn server is used to run the FastAPI application.
if __name__ == '__main__':
    import uvicorn
    logger.info("[__main__] Starting Uvicorn server for main.py\n")
    uvicorn.run(
        app,
        host=CONFIG.get('server', {}).get('host', '0.0.0.0'),
        port=CONFIG.get('server', {}).get('port', 8080)
    )
