from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Import the conversion router
from converter.router import router as convert_router

# Import service configuration
from converter.config import ServiceSettings

# Import the conversion pipeline
from converter.utils.conversion_core import DocumentConverter

# Import centralized logging configuration
from converter.utils.logging_config import get_logger, setup_logging


# Set up logging
logger = get_logger("converter.app")

# Headers added to every response
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "cross-origin",
}


def create_app(settings: Optional[ServiceSettings] = None,
               converter: Optional[DocumentConverter] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Service settings (read from the environment when omitted)
        converter: Pre-built conversion pipeline, mainly for tests
    """
    settings = settings or ServiceSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create the process-wide conversion pipeline on startup."""
        app.state.settings = settings
        app.state.converter = converter or DocumentConverter.from_settings(settings)
        logger.info(f"Converter service starting: {settings}")
        yield
        logger.info("Converter service stopped")

    app = FastAPI(title="Converter Service", lifespan=lifespan)

    # Any origin may call the service; narrow this per deployment
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept"],
        max_age=86400,
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        return response

    # Include the conversion router
    app.include_router(convert_router)

    @app.get("/ping")
    async def general_ping(request: Request):
        """Health check including converter binary availability."""
        runner = request.app.state.converter.runner
        return {
            "success": True,
            "data": "PONG!",
            "soffice": {
                "binary": runner.binary,
                "status": "available" if runner.is_available else "missing",
            },
        }

    return app


app = create_app()


def main():
    setup_logging()
    settings = ServiceSettings.from_env()
    logger.info(f"Converter running on :{settings.port}")
    uvicorn.run("app:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
