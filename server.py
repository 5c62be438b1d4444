"""FastAPI surface for the open exposure pipeline."""

import os
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from exposure.pipeline import ExposurePipeline
from exposure.utils.config import Config
from exposure.utils.errors import (
    ConfigError,
    DependencyError,
    ExposureError,
    InvalidTransitionError,
    ReconciliationError,
    ReviewNotFoundError,
)
from exposure.utils.logging import get_logger, setup_logging
from exposure.workflow import SelectionCriterion, TRANSITIONS

load_dotenv()

APP_TITLE = "Open Exposure Analytics"
CONFIG_PATH = os.getenv("EXPOSURE_CONFIG", "config.yaml")

logger = get_logger(__name__)


class IngestRequest(BaseModel):
    rows: List[Dict[str, Any]]
    column_map: Optional[Dict[str, List[str]]] = None
    snapshot_id: Optional[str] = None


class DeployRequest(BaseModel):
    kind: str = Field(description="age_bucket, queue, coverage or named")
    value: str
    assignee: Optional[str] = None
    notes: Optional[str] = None
    deadline: Optional[date] = None
    notify: Optional[List[str]] = None


class ActionRequest(BaseModel):
    notes: Optional[str] = None


class ReportRequest(BaseModel):
    render: bool = False
    destinations: List[str] = Field(default_factory=list)


def _build_pipeline() -> ExposurePipeline:
    if os.path.exists(CONFIG_PATH):
        return ExposurePipeline.from_config_file(CONFIG_PATH)
    config = Config.default()
    setup_logging(config.logging.level, config.logging.format, config.logging.file)
    logger.warning(f"{CONFIG_PATH} not found, using default configuration")
    return ExposurePipeline(config=config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is None:
        pipeline = app.state.pipeline = _build_pipeline()
    await pipeline.start()
    try:
        yield
    finally:
        await pipeline.stop()


app = FastAPI(title=APP_TITLE, lifespan=lifespan)


def _pipeline(request: Request) -> ExposurePipeline:
    return request.app.state.pipeline


def _criterion(payload: DeployRequest) -> SelectionCriterion:
    if payload.kind == "age_bucket":
        try:
            return SelectionCriterion.age_bucket(payload.value)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
    if payload.kind == "queue":
        return SelectionCriterion.queue(payload.value)
    if payload.kind == "coverage":
        return SelectionCriterion.coverage(payload.value)
    if payload.kind == "named":
        return SelectionCriterion.named(payload.value)
    raise HTTPException(status_code=400, detail=f"Unknown selection kind: {payload.kind}")


def _status_for(error: ExposureError) -> int:
    if isinstance(error, ReviewNotFoundError):
        return 404
    if isinstance(error, (ReconciliationError, InvalidTransitionError)):
        return 409
    if isinstance(error, DependencyError):
        return 503
    if isinstance(error, ConfigError):
        return 400
    return 500


@app.exception_handler(ExposureError)
async def exposure_error_handler(request: Request, exc: ExposureError) -> JSONResponse:
    status_code = _status_for(exc)
    logger.error(f"{request.method} {request.url.path} failed ({status_code}): {exc}")
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


@app.post("/ingest")
async def ingest(payload: IngestRequest, request: Request) -> JSONResponse:
    result = await _pipeline(request).ingest(
        payload.rows, column_map=payload.column_map, snapshot_id=payload.snapshot_id
    )
    return JSONResponse(jsonable_encoder(result.to_dict()))


@app.get("/snapshots/latest")
async def latest_snapshot(request: Request) -> JSONResponse:
    snapshot = await _pipeline(request).snapshots.latest()
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No snapshot has been ingested.")
    payload = snapshot.to_dict()
    payload["cp1_by_coverage"] = snapshot.cp1_by_coverage
    return JSONResponse(jsonable_encoder(payload))


@app.get("/reviews")
async def list_reviews(request: Request, status: Optional[str] = None) -> JSONResponse:
    items = _pipeline(request).workflow.items()
    if status:
        items = [item for item in items if item.status.value == status]
    return JSONResponse(jsonable_encoder([item.to_row() for item in items]))


@app.get("/reviews/summary")
async def review_summary(request: Request) -> JSONResponse:
    return JSONResponse(_pipeline(request).workflow.summary().to_dict())


@app.post("/reviews/deploy")
async def deploy_directive(payload: DeployRequest, request: Request) -> JSONResponse:
    created = await _pipeline(request).deploy_directive(
        _criterion(payload),
        assignee=payload.assignee,
        notes=payload.notes,
        deadline=payload.deadline,
        notify=payload.notify,
    )
    return JSONResponse(
        jsonable_encoder({"assigned": len(created), "items": [item.to_row() for item in created]})
    )


@app.post("/reviews/{review_id}/{action}")
async def review_action(
    review_id: str,
    action: str,
    request: Request,
    payload: Optional[ActionRequest] = None,
) -> JSONResponse:
    if action not in TRANSITIONS:
        raise HTTPException(status_code=404, detail=f"Unknown review action: {action}")
    notes = payload.notes if payload else None
    item = await _pipeline(request).workflow.apply_action(review_id, action, notes)
    return JSONResponse(jsonable_encoder(item.to_row()))


@app.post("/reports/executive")
async def executive_report(request: Request, payload: Optional[ReportRequest] = None) -> JSONResponse:
    payload = payload or ReportRequest()
    pipeline = _pipeline(request)
    try:
        generation = pipeline.compile_report()
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    response: Dict[str, Any] = {
        "model": generation.model.to_dict(),
        "quality": generation.quality.to_dict(),
        "export": None,
    }
    if payload.render or payload.destinations:
        exported = await pipeline.export_report(generation, payload.destinations)
        response["export"] = {
            "artifact": exported.render.artifact_ref,
            "page_count": exported.render.page_count,
            "deliveries": [vars(delivery).copy() for delivery in exported.deliveries],
        }
    return JSONResponse(jsonable_encoder(response))


@app.get("/health")
async def healthcheck(request: Request) -> Dict[str, Any]:
    pipeline = _pipeline(request)
    latest = pipeline.latest
    return {
        "status": "ok",
        "feed_connected": pipeline.workflow.running,
        "latest_snapshot": latest.snapshot.snapshot_id if latest else None,
        "open_reviews": pipeline.workflow.summary().total,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
