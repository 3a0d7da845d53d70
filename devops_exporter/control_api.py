"""Control API for runtime inspection using FastAPI."""
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import logging
import time

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI-based control API exposing collector status."""

    def __init__(self, engine):
        """
        Initialize control API.

        Args:
            engine: Reference to the exporter engine
        """
        self.engine = engine
        self.app = FastAPI(title="Azure DevOps Exporter Control API")

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get the state of every collector."""
            scheduler = self.engine.scheduler
            collectors = scheduler.status()
            return {
                "uptime_seconds": time.time() - self.engine.start_time,
                "organisation": self.engine.config.azure_devops.organisation,
                "projects": len(self.engine.catalog.get()),
                "enabled_collectors": [task.name for task in scheduler.enabled_tasks()],
                "total_rows": sum(c["rows"] for c in collectors.values() if c["enabled"]),
                "collectors": collectors,
            }

        @self.app.post("/control/collect/{collector}")
        async def collect(collector: str):
            """Run a collector now instead of waiting for its next tick."""
            task = self.engine.scheduler.tasks.get(collector)
            if task is None:
                available = list(self.engine.scheduler.tasks.keys())
                raise HTTPException(
                    status_code=404,
                    detail=f"Collector '{collector}' not found. Available collectors: {available}"
                )
            if not task.enabled:
                raise HTTPException(status_code=409, detail=f"Collector '{collector}' is disabled")

            logger.info(f"Manual collection triggered for collector: {collector}")
            task.trigger()
            return {"status": "collection_triggered", "collector": collector, "timestamp": time.time()}

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in LOG_LEVELS:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
