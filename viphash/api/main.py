"""
Peer ledger API.

Lets other installations discover this ledger, authenticate with a bearer
token, pull records newer than a watermark and push their own records.
Pushed records go through the same write-once save, so re-sent batches are
accepted as no-ops.
"""

import secrets
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from .schemas import (
    AuthCheckResponse,
    HealthResponse,
    IndexResponse,
    RecordBatchResponse,
    RecordPayload
)
from ..core.channel import API_LINK_REL
from ..core.config import VERSION, Settings
from ..core.db import health_check
from ..core.records import IRecordStore, SqliteRecordStore, open_record_store
from ..core.schema import SaveOutcome
from ..util.logging import logger

# Origin label for records that arrived through this API
API_ORIGIN = "@api"


def create_app(settings: Settings, store: Optional[IRecordStore] = None) -> FastAPI:
    """Build the API around a record store."""
    store = store or open_record_store(settings)

    app = FastAPI(
        title="viphash ledger API",
        version=VERSION,
        description="Write-once ledger of file review verdicts",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None
    )
    api = APIRouter(prefix="/api")

    def require_token(authorization: Optional[str] = Header(None)) -> str:
        """Check the bearer token against the configured API tokens."""
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise HTTPException(status_code=401, detail="Missing bearer token")
        if not any(secrets.compare_digest(token, expected) for expected in settings.api_tokens):
            logger.warning("API authentication failed: invalid token provided")
            raise HTTPException(status_code=401, detail="Invalid token")
        return token

    @app.api_route("/", methods=["GET", "HEAD"])
    def discovery(request: Request):
        """Advertise the API entry point through a Link header."""
        api_url = str(request.base_url).rstrip("/") + "/api/"
        return JSONResponse(
            {"name": "viphash", "api": api_url},
            headers={"Link": f'<{api_url}>; rel="{API_LINK_REL}"'}
        )

    @app.get("/health", response_model=HealthResponse)
    def health_check_endpoint():
        """Check system health."""
        if isinstance(store, SqliteRecordStore):
            db_health = health_check(store.db_path)
        else:
            db_health = settings.records_dir.is_dir()

        return HealthResponse(
            status="healthy" if db_health else "unhealthy",
            version=VERSION,
            db_health=db_health,
            record_count=store.count()
        )

    @api.get("/", response_model=IndexResponse)
    def index():
        return IndexResponse(
            name="viphash",
            version=VERSION,
            authentication={"token": {"scheme": "bearer", "verify": "auth"}},
            routes=["auth", "records"]
        )

    @api.get("/auth", response_model=AuthCheckResponse)
    def check_auth(token: str = Depends(require_token)):
        return AuthCheckResponse(authenticated=True)

    @api.get("/records", response_model=List[RecordPayload])
    def list_records(since: float = 0.0, token: str = Depends(require_token)):
        """Records recorded after since, oldest first."""
        return [RecordPayload(**record.to_wire()) for record in store.get_records_after(since)]

    @api.post("/records", response_model=RecordBatchResponse)
    def receive_records(batch: List[RecordPayload], token: str = Depends(require_token)):
        """Apply a batch of records; records we already hold are counted, not rejected."""
        created = 0
        for item in batch:
            outcome = store.save(item.address, item.reviewer, item.verdict, origin=API_ORIGIN)
            if outcome == SaveOutcome.CREATED:
                created += 1

        logger.log_operation("api.receive_records", "success", {
            "received": len(batch),
            "created": created
        })
        return RecordBatchResponse(received=len(batch), created=created, duplicates=len(batch) - created)

    app.include_router(api)
    return app
