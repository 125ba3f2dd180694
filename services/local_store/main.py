"""Local Store - embedded memo database exposed as named commands."""

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Request, status
from fastapi.responses import JSONResponse

from shared.db_operations import DatabaseOperations
from shared.errors import NotesError
from services.local_store.commands import CommandDispatcher

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)


def create_app(db_ops: Optional[DatabaseOperations] = None) -> FastAPI:
    """
    Build the local store application.

    When ``db_ops`` is given the store is being embedded in another process
    (mounted through an in-process transport, which does not run lifespan
    events), so the dispatcher is wired immediately.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Local Store starting up...")
        if app.state.dispatcher is None:
            store = DatabaseOperations()
            store.create_tables()
            app.state.dispatcher = CommandDispatcher(store)
            logger.info(f"Database initialized at {store.database_url}")
        yield
        logger.info("Local Store shutting down...")

    app = FastAPI(
        title="Local Store",
        description="Embedded memo and daily plan store",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.dispatcher = CommandDispatcher(db_ops) if db_ops is not None else None

    @app.exception_handler(NotesError)
    async def notes_error_handler(request: Request, exc: NotesError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.http_status,
            content={"error": exc.to_dict()}
        )

    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check():
        """Health check endpoint."""
        dispatcher = app.state.dispatcher
        return {
            "status": "healthy" if dispatcher else "starting",
            "service": "local_store",
            "version": "0.1.0",
            "commands": dispatcher.command_names if dispatcher else []
        }

    @app.post("/invoke/{command}", status_code=status.HTTP_200_OK)
    async def invoke(command: str, arguments: Optional[Dict[str, Any]] = Body(default=None)):
        """Run a named store command with a structured argument object."""
        result = app.state.dispatcher.invoke(command, arguments)
        return {"result": result}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("LOCAL_STORE_PORT", 8010))
    uvicorn.run(app, host="127.0.0.1", port=port)
