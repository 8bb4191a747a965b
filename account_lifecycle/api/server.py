"""
FastAPI Server for the Account Lifecycle Engine.

Exposes the post-verification hook, the tier upgrade mutation and
read-only execution status endpoints.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Body, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from ..bootstrap import LifecycleRuntime, build_runtime
from ..config import load_settings
from ..errors import LifecycleError
from ..models import ErrorKind, ExecutionStatus, UpgradeRequest, UpgradeResponse
from ..workflows.helpers import create_execution_summary

logger = logging.getLogger(__name__)


class ExecutionSummaryResponse(BaseModel):
    """Execution summary response."""
    execution_name: str
    execution_reference: str
    workflow_id: str
    identity_id: str
    status: str
    started_at: Optional[str]
    completed_at: Optional[str]
    total_steps: int
    successful_steps: int
    soft_failed_steps: int
    failed_steps: int
    total_attempts: int
    failed_step: Optional[str]
    error: Optional[str]


# Global runtime (initialized on startup)
runtime: Optional[LifecycleRuntime] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global runtime

    created = runtime is None
    if created:
        logger.info("Initializing Account Lifecycle API server components")
        runtime = build_runtime(load_settings())

    yield

    logger.info("Shutting down Account Lifecycle API server")
    if created and runtime is not None:
        runtime.shutdown(wait=True)
        runtime = None


app = FastAPI(
    title="Account Lifecycle API",
    description="Account creation and tier upgrade workflows",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_runtime() -> LifecycleRuntime:
    if runtime is None:
        raise HTTPException(status_code=503, detail="Lifecycle runtime not available")
    return runtime


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Account Lifecycle API", "version": "1.0.0", "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    components: Dict[str, Any] = {"runtime": runtime is not None}
    if runtime is not None:
        components.update({
            connector.get_system_name(): connector.validate_config()
            for connector in runtime.connectors.all()
        })
        components["audit_logger"] = runtime.audit_logger is not None

    return {
        "status": "healthy" if runtime is not None else "starting",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "mock_mode": runtime.settings.mock_mode if runtime else None,
        "components": components,
    }


@app.post("/hooks/post-verification")
def post_verification(payload: Dict[str, Any] = Body(...)):
    """
    Identity provider post-verification hook.

    Grants the initial group, starts account creation and echoes the
    provider payload back. Failures are reported as errors so the
    provider fails the verification.
    """
    current = _require_runtime()
    try:
        return current.post_verification.handle(payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid post-verification event: {e}") from e
    except LifecycleError as e:
        status_code = 400 if e.kind == ErrorKind.INVALID_INPUT else 500
        raise HTTPException(status_code=status_code, detail="post-verification failed") from e


@app.post("/users/{identity_id}/upgrade", response_model=UpgradeResponse)
def upgrade_user(
    identity_id: str,
    x_identity_id: str = Header(..., alias="X-Identity-Id"),
    x_identity_groups: str = Header("", alias="X-Identity-Groups"),
    wait: bool = Query(False, description="Wait for the workflow to finish"),
):
    """
    Upgrade an identity to the paid tier.

    The caller's identity and group claims come from the authenticating
    proxy in the X-Identity-Id and X-Identity-Groups (comma separated)
    headers. Always answers with an UpgradeResponse.
    """
    current = _require_runtime()
    request = UpgradeRequest(
        target_identity_id=identity_id,
        requester_identity_id=x_identity_id,
        requester_groups=[g.strip() for g in x_identity_groups.split(",") if g.strip()],
        wait=wait,
    )
    return current.upgrade.handle(request)


@app.get("/executions", response_model=List[ExecutionSummaryResponse])
async def list_executions(
    identity_id: Optional[str] = Query(None, description="Filter by identity id"),
    workflow_id: Optional[str] = Query(None, description="Filter by workflow"),
    status: Optional[ExecutionStatus] = Query(None, description="Filter by status"),
    limit: int = Query(100, description="Maximum number of results"),
):
    """List executions, most recent first."""
    current = _require_runtime()
    records = current.store.list_executions(
        identity_id=identity_id, workflow_id=workflow_id, status=status, limit=limit
    )
    return [create_execution_summary(r) for r in records]


@app.get("/executions/{name}")
async def get_execution(name: str):
    """Get an execution with its step history by name or reference."""
    current = _require_runtime()
    record = current.store.get_execution(name)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Execution {name} not found")
    return record.model_dump(mode="json")


def start_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """Start the FastAPI server."""
    uvicorn.run(
        "account_lifecycle.api.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    start_server()
