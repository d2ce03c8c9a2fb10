"""
FastAPI server for the RBus dissector

Provides REST API for:
- Dissecting captured RBus messages
- Heuristic protocol detection
- Field registry lookup
"""
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rbus_dissector.api.routes import ROUTERS
from rbus_dissector.config import settings
from rbus_dissector.engine.protocol import PROTOCOL_LONG_NAME
from rbus_dissector.logging import setup_logging

setup_logging("rbus-api")
logger = structlog.get_logger()

# Create FastAPI app
app = FastAPI(
    title="RBus Dissector",
    description=f"Decoder for {PROTOCOL_LONG_NAME} IPC traffic",
    version="0.1.0",
)

# CORS middleware for web UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for router in ROUTERS:
    app.include_router(router)


@app.get("/")
async def root():
    """Service banner"""
    return {
        "service": "RBus Dissector",
        "version": "0.1.0",
        "status": "operational",
        "tcp_port": settings.tcp_port,
        "uds_path": settings.uds_path,
    }


if __name__ == "__main__":
    import uvicorn

    logger.info(
        "starting_rbus_api",
        host=settings.api_host,
        port=settings.api_port,
    )

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
    )
