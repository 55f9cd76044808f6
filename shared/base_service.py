"""
Base service class for the Astronomer gateway.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Dict, Optional
import time

from shared.config import GatewaySettings, get_settings
from shared.logging import configure_logging, get_logger, set_request_id, clear_context
from shared.metrics import get_metrics_collector
from shared.errors import GatewayException


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, settings: Optional[GatewaySettings] = None):
        self.config = settings or get_settings()
        self.service_name = self.config.service_name
        self.logger = get_logger(self.service_name)
        self.metrics = get_metrics_collector(self.service_name)
        self._start_time = time.time()

        configure_logging(self.service_name, self.config.log_level, json_logs=self.config.env != "local")

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            self.logger.info("Service starting", host=self.config.host, port=self.config.port)
            yield
            await self.shutdown()
            self.logger.info("Service stopped")

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Astronomer - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.enable_docs else None,
            redoc_url=None,
            openapi_url="/openapi.json" if self.config.enable_docs else None,
            lifespan=lifespan,
        )

    def _setup_middleware(self):
        """Set up middleware."""

        # Only the presentation context's own origin may call the service
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.allowed_origins,
            allow_credentials=False,
            allow_methods=["GET", "POST"],
            allow_headers=["Content-Type", "X-Request-ID"],
        )

        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            start_time = time.time()

            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            duration = time.time() - start_time

            self.metrics.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration=duration
            )

            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2)
            )
            clear_context()

            return response

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            return {
                "service": self.service_name,
                "status": "ok",
                "uptime_seconds": self._get_uptime(),
                "details": await self._check_dependencies(),
                "version": "1.0.0"
            }

        @self.app.exception_handler(GatewayException)
        async def gateway_exception_handler(request: Request, exc: GatewayException):
            """Handle GatewayException."""
            self.logger.error(
                "Gateway error",
                code=exc.code,
                message=exc.message,
                details=exc.details
            )
            self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=400,
                content=exc.to_response().model_dump()
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {}
                }
            )

    async def _check_dependencies(self) -> Dict[str, object]:
        """Report component state for the health route. Override in subclasses."""
        return {}

    async def shutdown(self):
        """Release resources on shutdown. Override in subclasses."""

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn

        if self.config.metrics_port:
            self.metrics.start_metrics_server(self.config.metrics_port)

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
