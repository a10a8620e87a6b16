"""
FastAPI application for the store sync engine.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_config
from .core.logging import setup_logging
from .core.database import get_database
from .api.routes import health, sync, shipping

# Initialize logging
config = get_config()
setup_logging(
    log_file=config.log_path,
    level=config.get('general', 'log_level', default='INFO')
)

# Initialize database
get_database()

app = FastAPI(
    title="Store Sync API",
    description="Store catalog, order and inventory synchronization for the CRM",
    version=health.VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get_list('api', 'cors_origins', default=["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/api")
app.include_router(sync.router, prefix="/api")
app.include_router(shipping.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Store Sync API",
        "version": health.VERSION,
        "docs": "/docs"
    }
