"""FastAPI application exposing the delivery gate.

Endpoints:
- GET /health - Health check for load balancers and monitoring
- POST /classify - Classify a title without applying anything (dry run)
- POST /webhooks/github - GitHub webhook receiver:
    pull_request (opened/edited/synchronize) -> label pipeline
    push to the release branch touching the manifest -> release pipeline

Architecture notes:
- The app holds one RunRegistry, so overlapping push deliveries for the
  same ref supersede each other the way CI concurrency groups do
- Pipelines raise GateError subclasses; handlers below map them to HTTP
- Deliveries are authenticated with X-Hub-Signature-256 when
  GITHUB_WEBHOOK_SECRET is set

To run locally:
    uvicorn delivery_gate.main:app --reload --port 8000
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from delivery_gate.concurrency import RunRegistry
from delivery_gate.context.github import GitHubClient, GitHubLabelSink
from delivery_gate.context.publish import CommandPublisher
from delivery_gate.context.versions import HttpVersionSource
from delivery_gate.errors import (
    ActionError,
    ClassificationError,
    FetchError,
    PolicyViolation,
    RunSuperseded,
)
from delivery_gate.logging_config import get_logger, setup_logging
from delivery_gate.pipelines import LabelPipeline, ReleasePipeline
from delivery_gate.policy import PolicyConfig, load_policy_config
from delivery_gate.schemas import Classification, ConcurrencyKey

logger = get_logger(__name__)

LABEL_ACTIONS = {"opened", "edited", "synchronize"}


class ClassifyRequest(BaseModel):
    """Body of POST /classify."""

    title: str = Field(..., description="Pull request title")
    files: list[str] = Field(default_factory=list, description="Changed file paths")


# ---------------------------------------------------------------------------
# Application Lifespan (startup/shutdown)
# ---------------------------------------------------------------------------


def build_release_pipeline(config: PolicyConfig, registry: RunRegistry) -> ReleasePipeline | None:
    rc = config.release
    if rc is None:
        return None
    return ReleasePipeline(
        HttpVersionSource(rc.remote_url, field=rc.version_field),
        CommandPublisher(rc.publish_command, cwd=rc.working_directory),
        registry=registry,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Load configuration and build the pipelines once at startup."""
    setup_logging()
    config = load_policy_config()
    app.state.config = config
    app.state.github = GitHubClient()
    app.state.label_pipeline = LabelPipeline(config)
    app.state.release_pipeline = build_release_pipeline(config, RunRegistry())
    app.state.webhook_secret = os.environ.get("GITHUB_WEBHOOK_SECRET", "")
    logger.info("app_started", release_enabled=config.release is not None)
    yield


app = FastAPI(
    title="Delivery Gate",
    description="Release version gate and pull request classifier",
    version="0.1.0",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


@app.exception_handler(ClassificationError)
async def classification_error_handler(
    request: Request, exc: ClassificationError
) -> JSONResponse:
    content: dict[str, Any] = {"error": exc.__class__.__name__, "detail": str(exc)}
    if isinstance(exc, PolicyViolation):
        content["rule"] = exc.rule_name
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(FetchError)
@app.exception_handler(ActionError)
async def upstream_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("upstream_failed", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=502,
        content={"error": exc.__class__.__name__, "detail": str(exc)},
    )


@app.exception_handler(RunSuperseded)
async def superseded_handler(request: Request, exc: RunSuperseded) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"error": "RunSuperseded", "detail": str(exc)},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"error": "validation_error", "detail": str(exc)},
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers and monitoring."""
    return {"status": "healthy"}


@app.post("/classify", response_model=Classification)
async def classify_title(body: ClassifyRequest, request: Request) -> Classification:
    """Classify a title and report the labels it would get. No side effects."""
    pipeline: LabelPipeline = request.app.state.label_pipeline
    return pipeline.classify(body.title, body.files)


def verify_signature(secret: str, body: bytes, signature: str | None) -> None:
    """Check GitHub's X-Hub-Signature-256 header.

    Raises:
        HTTPException: 401 if the signature is missing or wrong
    """
    if not signature:
        raise HTTPException(status_code=401, detail="Missing signature")
    expected = "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature):
        raise HTTPException(status_code=401, detail="Invalid signature")


@app.post("/webhooks/github")
async def github_webhook(
    request: Request,
    x_github_event: str = Header(""),
    x_hub_signature_256: str | None = Header(None),
) -> dict[str, Any]:
    """Dispatch a GitHub webhook delivery to the matching pipeline."""
    body = await request.body()
    secret: str = request.app.state.webhook_secret
    if secret:
        verify_signature(secret, body, x_hub_signature_256)

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid JSON: {exc.msg}") from exc

    if x_github_event == "ping":
        return {"status": "pong"}
    if x_github_event == "pull_request":
        return await _handle_pull_request(request, payload)
    if x_github_event == "push":
        return await _handle_push(request, payload)
    return {"status": "ignored", "reason": f"unhandled event '{x_github_event}'"}


async def _handle_pull_request(request: Request, payload: dict) -> dict[str, Any]:
    action = payload.get("action")
    if action not in LABEL_ACTIONS:
        return {"status": "ignored", "reason": f"action '{action}'"}

    config: PolicyConfig = request.app.state.config
    github: GitHubClient = request.app.state.github
    pipeline: LabelPipeline = request.app.state.label_pipeline

    repo = payload["repository"]["full_name"]
    number = int(payload["number"])
    title = payload["pull_request"]["title"]

    files = await github.get_pr_files(repo, number) if config.path_labels else []
    sink = GitHubLabelSink(github, repo, number, prefix=config.label_prefix)
    result = await pipeline.run(title, sink, files)
    return {"status": "labeled", "classification": result.model_dump(mode="json")}


async def _handle_push(request: Request, payload: dict) -> dict[str, Any]:
    config: PolicyConfig = request.app.state.config
    pipeline: ReleasePipeline | None = request.app.state.release_pipeline
    rc = config.release
    if rc is None or pipeline is None:
        return {"status": "ignored", "reason": "release pipeline not configured"}

    ref = payload.get("ref", "")
    if ref != f"refs/heads/{rc.branch}":
        return {"status": "ignored", "reason": f"ref '{ref}'"}

    touched = {
        path
        for commit in payload.get("commits", [])
        for path in (*commit.get("added", []), *commit.get("modified", []))
    }
    if rc.manifest not in touched:
        return {"status": "ignored", "reason": f"{rc.manifest} not changed"}

    repo = (payload.get("repository") or {}).get("full_name")
    after = payload.get("after")
    if not repo or not after:
        raise HTTPException(
            status_code=400, detail="push payload needs 'repository.full_name' and 'after'"
        )

    github: GitHubClient = request.app.state.github
    local = await github.get_file_json(repo, rc.manifest, after, rc.version_field)
    result = await pipeline.run(local, ConcurrencyKey.for_ref("release", ref))
    return {"status": result.status.value, "result": result.model_dump(mode="json")}
