"""Sync Service - FastAPI application serving the notes UI shell."""

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shared.db_operations import ClientStateOperations
from shared.encryption import EncryptionService
from shared.errors import NotesError, notes_exception_handler
from shared.models import CATEGORIES
from services.sync_service.session import NotesApplication

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)


# Request models
class CreateMemoRequest(BaseModel):
    content: str
    category: Optional[str] = None
    target_date: Optional[str] = None


class UpdateMemoRequest(BaseModel):
    content: Optional[str] = None
    category: Optional[str] = None
    target_date: Optional[str] = None
    completion_status: Optional[str] = None
    pinned: Optional[bool] = None


class ArchiveRequest(BaseModel):
    archived: bool = True


class SelectDateRequest(BaseModel):
    date: str = Field(..., description="Calendar date, YYYY-MM-DD")


class ModeRequest(BaseModel):
    mode: str


class CloudCredentialsRequest(BaseModel):
    url: str
    api_key: str
    changes_url: Optional[str] = None


def build_application() -> NotesApplication:
    """Create the application from environment configuration."""
    client_state = ClientStateOperations()
    client_state.create_tables()
    logger.info(f"Client state initialized at {client_state.database_url}")
    return NotesApplication(client_state, encryption_service=EncryptionService())


def create_app(application: Optional[NotesApplication] = None) -> FastAPI:
    """Build the sync service; ``application`` replaces the environment-built one."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Sync Service starting up...")
        if app.state.application is None:
            app.state.application = build_application()
        session = await app.state.application.start()
        if session is not None:
            logger.info(f"Session ready in {session.mode} mode")
        else:
            logger.warning("Started without a session; waiting for cloud credentials or a mode switch")
        yield
        await app.state.application.close()
        logger.info("Sync Service shutting down...")

    app = FastAPI(
        title="Sync Service",
        description="Memo and daily plan sync over local or cloud storage",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.application = application

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(NotesError, notes_exception_handler)

    @app.middleware("http")
    async def error_handling_middleware(request: Request, call_next):
        """Global error handling middleware."""
        try:
            return await call_next(request)
        except Exception as exc:
            logger.error(f"Unhandled exception: {exc}", exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"code": "internal_error", "message": str(exc)}
            )

    def notes() -> NotesApplication:
        return app.state.application

    def sync_payload() -> dict:
        orchestrator = notes().orchestrator
        return {
            **orchestrator.status.to_dict(),
            "mode": orchestrator.mode,
            "is_initial_loading": orchestrator.is_initial_loading,
            "has_loaded_once": orchestrator.has_loaded_once,
        }

    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check():
        """Health check endpoint."""
        session = notes().session
        return {
            "status": "healthy" if session is not None else "starting",
            "service": "sync_service",
            "version": "0.1.0",
            "mode": session.mode if session is not None else None,
            "runtime": notes().runtime,
        }

    @app.get("/memos")
    async def list_memos():
        orchestrator = notes().orchestrator
        return {
            "memos": [memo.to_dict() for memo in orchestrator.memos],
            "pending_deletions": sorted(orchestrator.deletions.pending_ids),
        }

    @app.post("/memos", status_code=status.HTTP_201_CREATED)
    async def create_memo(request: CreateMemoRequest):
        memo = await notes().orchestrator.create_memo(request.content, request.category, request.target_date)
        return memo.to_dict()

    @app.patch("/memos/{memo_id}")
    async def update_memo(memo_id: int, request: UpdateMemoRequest):
        memo = await notes().orchestrator.update_memo(memo_id, **request.model_dump(exclude_none=True))
        return memo.to_dict()

    @app.post("/memos/{memo_id}/toggle")
    async def toggle_status(memo_id: int):
        return (await notes().orchestrator.toggle_status(memo_id)).to_dict()

    @app.post("/memos/{memo_id}/pin")
    async def toggle_pin(memo_id: int):
        return (await notes().orchestrator.toggle_pin(memo_id)).to_dict()

    @app.post("/memos/{memo_id}/archive")
    async def set_archived(memo_id: int, request: Optional[ArchiveRequest] = None):
        archived = request.archived if request is not None else True
        return (await notes().orchestrator.set_archived(memo_id, archived)).to_dict()

    @app.delete("/memos/{memo_id}", status_code=status.HTTP_202_ACCEPTED)
    async def delete_memo(memo_id: int):
        entry = notes().orchestrator.delete_memo(memo_id)
        return {
            "id": entry.memo_id,
            "state": entry.state,
            "undo_seconds": notes().orchestrator.deletions.grace_seconds,
        }

    @app.post("/memos/{memo_id}/undo")
    async def undo_delete(memo_id: int):
        return {"id": memo_id, "restored": notes().orchestrator.undo_delete(memo_id)}

    @app.get("/search")
    async def search_memos(q: str = Query(..., min_length=1)):
        memos = await notes().orchestrator.search_memos(q)
        return {"memos": [memo.to_dict() for memo in memos]}

    @app.get("/calendar/{day}")
    async def memos_for_date(day: str):
        memos = await notes().orchestrator.memos_for_date(day)
        return {"date": day, "memos": [memo.to_dict() for memo in memos]}

    @app.get("/plans")
    async def list_plans():
        orchestrator = notes().orchestrator
        return {
            "date": orchestrator.selected_date,
            "plans": [plan.to_dict() for plan in orchestrator.plans],
        }

    @app.put("/date")
    async def select_date(request: SelectDateRequest):
        session = notes().active_session
        await session.select_date(request.date)
        return {"date": session.orchestrator.selected_date, "plans": [p.to_dict() for p in session.orchestrator.plans]}

    @app.post("/refresh")
    async def refresh():
        memos = await notes().orchestrator.refresh_all("manual")
        return {"memos": [memo.to_dict() for memo in memos], "sync": sync_payload()}

    @app.post("/focus", status_code=status.HTTP_202_ACCEPTED)
    async def focus():
        await notes().active_session.notify_focus()
        return {"sync": sync_payload()}

    @app.get("/sync/status")
    async def sync_status():
        return sync_payload()

    @app.get("/notices")
    async def list_notices(drain: bool = False):
        service = notes().notifications
        notices = service.drain() if drain else service.recent()
        return {"notices": [notice.to_dict() for notice in notices]}

    @app.get("/mode")
    async def get_mode():
        application = notes()
        return {
            "preference": application.preferences.get_current(),
            "mode": application.session.mode if application.session else None,
            "available": application.available_modes(),
            "categories": list(CATEGORIES),
        }

    @app.put("/mode")
    async def switch_mode(request: ModeRequest):
        session = await notes().switch_mode(request.mode)
        return {"mode": session.mode, "sync": sync_payload()}

    @app.put("/cloud/credentials", status_code=status.HTTP_204_NO_CONTENT)
    async def store_cloud_credentials(request: CloudCredentialsRequest):
        """Store hosted backend credentials (API key encrypted); opens the session if none is running."""
        await notes().store_cloud_credentials(request.url, request.api_key, changes_url=request.changes_url)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("SYNC_SERVICE_PORT", 8005))
    uvicorn.run(app, host="0.0.0.0", port=port)
