"""FastAPI web dashboard application."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from ..config import Config
from ..sync import CollectionSynchronizer

logger = logging.getLogger(__name__)

# Template directory
TEMPLATE_DIR = Path(__file__).parent / "templates"


def create_app(
    config: Config,
    records: CollectionSynchronizer | None = None,
) -> FastAPI:
    """Create the FastAPI dashboard application.

    Args:
        config: Application configuration.
        records: Started synchronizer for the dashboard collection.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="pocketsync Dashboard",
        description="Live view of a synchronized record collection",
        version="0.1.0",
    )

    app.state.config = config
    app.state.records = records

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

    def snapshot() -> dict[str, Any]:
        if records is None:
            return {"data": [], "loading": False, "error": "No synchronizer available"}

        state = records.state
        return {
            "data": state.data,
            "loading": state.loading,
            "error": str(state.error) if state.error else None,
        }

    # ==================== HTML Routes ====================

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request):
        """Main dashboard page."""
        context = {
            "collection": config.dashboard.collection,
            **snapshot(),
        }
        return templates.TemplateResponse(request, "index.html", context)

    # ==================== API Routes (JSON) ====================

    @app.get("/api/records")
    async def api_records() -> dict[str, Any]:
        """Current synchronized state as JSON."""
        state = snapshot()
        return {
            "collection": config.dashboard.collection,
            "timestamp": datetime.now().isoformat(),
            "count": len(state["data"]),
            **state,
        }

    @app.post("/api/refresh")
    async def api_refresh() -> dict[str, Any]:
        """Trigger a background refresh of the collection."""
        if records is None:
            return {"refreshing": False, "error": "No synchronizer available"}

        records.refresh()
        return {"refreshing": True}

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check endpoint.

        Always returns 200 OK even if components are unavailable.
        """
        return {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "components": {
                "synchronizer": records is not None,
                "active": records.is_active if records else False,
                "subscribed": records.is_subscribed if records else False,
            },
        }

    return app
