"""
HTTP trigger intake.

Any request, on any path, carrying a non-empty `key` query parameter is
accepted with an empty 200 response; the key is handed to the trigger
callback after the response is sent. Everything else is rejected with 403.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

import uvicorn
from fastapi import APIRouter, BackgroundTasks, FastAPI, Request, Response

from ..models.config import TriggerConfig

logger = logging.getLogger(__name__)

TriggerCallback = Callable[[str], Awaitable[Any]]


def create_trigger_app(on_trigger: TriggerCallback) -> FastAPI:
    """Build the FastAPI application that forwards trigger keys to on_trigger."""
    router = APIRouter()

    @router.api_route("/{path:path}", methods=["GET", "POST"])
    async def trigger(request: Request, background_tasks: BackgroundTasks, key: Optional[str] = None):
        if not key:
            logger.debug(f"Rejected trigger request {request.method} {request.url.path} without key")
            return Response(status_code=403)
        logger.info(f'Trigger received for key "{key}"')
        background_tasks.add_task(on_trigger, key)
        return Response(status_code=200)

    app = FastAPI(title="tinyci triggers", docs_url=None, redoc_url=None, openapi_url=None)
    app.include_router(router)
    return app


class TriggerListener:
    """
    Serves the trigger application with uvicorn inside the running event loop.
    """

    def __init__(self, config: TriggerConfig, on_trigger: TriggerCallback):
        self.config = config
        self.app = create_trigger_app(on_trigger)
        self.server = uvicorn.Server(uvicorn.Config(
            self.app,
            host=config.host,
            port=config.port,
            lifespan="off",
            log_config=None,
        ))

    async def serve(self) -> None:
        """Serve until stop() is called."""
        logger.info(f"Listening for triggers on {self.config.host}:{self.config.port}")
        await self.server.serve()
        logger.info("Trigger listener stopped")

    def stop(self) -> None:
        self.server.should_exit = True
