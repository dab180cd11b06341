"""
Application entry point for Caddy Panel.
This module creates the FastAPI application and starts the development server.
"""
import logging
from caddy_panel.main import create_app
from caddy_panel.config import settings
import uvicorn

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create the FastAPI application instance
app = create_app()

if __name__ == "__main__":
    # Start the development server with hot reloading in debug mode
    uvicorn.run(
        "run:app",
        host="0.0.0.0",
        port=settings.LISTEN_PORT,
        reload=settings.DEBUG_MODE,
    )
