"""FastAPI application serving the client page and the sync socket."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import HTMLResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates

from ..config import Config
from ..sync import DocumentStore, MergeStrategy, SyncSessionHandler

logger = logging.getLogger(__name__)

# Template directory
TEMPLATE_DIR = Path(__file__).parent / "templates"

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def create_app(
    config: Config,
    store: DocumentStore | None = None,
    strategy: MergeStrategy | None = None,
) -> FastAPI:
    """Create the relay application.

    Args:
        config: Application configuration.
        store: Optional pre-loaded DocumentStore. When omitted, a store is
            built from the storage config and loaded from the snapshot.
        strategy: Merge strategy for a store built here.

    Returns:
        Configured FastAPI application.
    """
    if store is None:
        store = DocumentStore(
            config.storage.snapshot_path,
            strategy=strategy,
            summary_path=config.session.summary_path,
        )
        store.load()

    handler = SyncSessionHandler(
        store,
        ping_interval_seconds=config.session.ping_interval_seconds,
        debug_echo=config.session.debug_echo,
    )

    app = FastAPI(
        title="docrelay",
        description="Real-time full-state document synchronization relay",
        version="0.1.0",
    )

    # Store references for route handlers
    app.state.config = config
    app.state.store = store
    app.state.handler = handler

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

    # ==================== HTML Routes ====================

    @app.get("/", response_class=HTMLResponse)
    @app.get("/client.html", response_class=HTMLResponse)
    async def client_page(request: Request):
        """Client page, never cached."""
        page = Path(config.client.page_path)
        if page.is_file():
            return HTMLResponse(page.read_text(encoding="utf-8"), headers=NO_CACHE_HEADERS)

        return templates.TemplateResponse(
            request,
            "client.html",
            {
                "node_name": config.node.name,
                "page_path": str(page),
                "socket_path": "/ws",
            },
            headers=NO_CACHE_HEADERS,
        )

    # ==================== API Routes (JSON) ====================

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check endpoint for monitoring and load balancers."""
        return {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "node_name": config.node.name,
            "store": store.get_stats(),
            "registry": handler.registry.get_stats(),
        }

    @app.exception_handler(404)
    async def not_found(request: Request, exc: Exception):
        return PlainTextResponse(
            "Not found", status_code=404, headers={"Cache-Control": "no-store"}
        )

    # ==================== WebSocket ====================

    @app.websocket("/")
    @app.websocket("/ws")
    async def sync_socket(websocket: WebSocket):
        """Synchronization socket; one session per connection."""
        await handler.serve(websocket)

    return app
