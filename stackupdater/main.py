from __future__ import annotations

from typing import Tuple

from fastapi import FastAPI, HTTPException, Query, Response, status

from .backup import render_backup_block
from .check import render_check
from .cli import backup_once, check_once, update_once
from .config import Inventory, Settings, load_inventory, load_settings
from .errors import ConfigError
from .jobs import JobRegistry
from .report import exit_code, render_status_block
from .schemas import CheckReport, JobStartResponse, JobStatusResponse

app = FastAPI(title="Stack Updater")
jobs = JobRegistry()


def _config() -> Tuple[Settings, Inventory]:
    try:
        settings = load_settings()
        return settings, load_inventory(settings.config_path)
    except ConfigError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


async def _start(kind: str) -> Response:
    settings, inventory = _config()

    async def update_body() -> Tuple[str, int]:
        result = await update_once(settings, inventory)
        return render_status_block(result), exit_code(result)

    async def backup_body() -> Tuple[str, int]:
        report = await backup_once(settings, inventory)
        return render_backup_block(report), 0 if report.ok else 1

    sess = await jobs.start(kind, update_body if kind == "update" else backup_body)
    if sess is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"{kind.capitalize()} already in progress")
    payload = JobStartResponse(job_id=sess.id, state="running")
    return Response(content=payload.model_dump_json(), media_type="application/json", status_code=status.HTTP_202_ACCEPTED)


def _status(job_id: str, kind: str) -> Response:
    sess = jobs.get(job_id)
    if sess is None or sess.kind != kind:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown job_id")
    payload = sess.status()
    return Response(content=payload.model_dump_json(), media_type="application/json", status_code=status.HTTP_200_OK)


@app.post("/update/start", response_model=JobStartResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_update() -> Response:
    return await _start("update")


@app.get("/update/status", response_model=JobStatusResponse)
async def update_status(job_id: str = Query(...)) -> Response:
    return _status(job_id, "update")


@app.post("/backup/start", response_model=JobStartResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_backup() -> Response:
    return await _start("backup")


@app.get("/backup/status", response_model=JobStatusResponse)
async def backup_status(job_id: str = Query(...)) -> Response:
    return _status(job_id, "backup")


@app.get("/containers/check", response_model=CheckReport)
async def containers_check(text: bool = Query(False)) -> Response:
    settings, inventory = _config()
    report = await check_once(settings, inventory)
    if text:
        return Response(content=render_check(report) + "\n", media_type="text/plain", status_code=status.HTTP_200_OK)
    return Response(content=report.model_dump_json(), media_type="application/json", status_code=status.HTTP_200_OK)
