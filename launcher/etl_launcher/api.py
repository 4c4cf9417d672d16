from __future__ import annotations
from typing import Optional
from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel
from . import __version__
from .errors import LauncherError
from .log_reader import list_logs, log_index, read_tail, read_from_cursor
from .settings import Settings
from .orchestrator import Orchestrator


class ActionResult(BaseModel):
    ok: bool
    detail: Optional[str] = None
    data: Optional[dict] = None


def create_app(settings: Settings, orch: Optional[Orchestrator] = None) -> FastAPI:
    app = FastAPI(title="ETL Launcher API", version=__version__)
    orch = orch or Orchestrator(settings)

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/config")
    def get_config():
        return settings.public_dump()

    @app.get("/plan")
    def plan():
        # dry-run only
        p = orch.plan().to_dict()
        p["generated_cfg_path"] = str(orch.generate_configs(dry_run=True))
        return p

    @app.post("/sync", response_model=ActionResult)
    def sync(dry_run: bool = Query(default=False, description="If true: return the plan only")):
        if dry_run:
            p = orch.plan().to_dict()
            return ActionResult(ok=bool(p.get("ok", True)), detail="dry-run", data=p)
        try:
            report = orch.sync_content()
            orch.generate_configs()
        except (LauncherError, OSError) as e:
            raise HTTPException(status_code=500, detail=str(e))
        return ActionResult(ok=report.ok, detail="synced", data=report.to_dict())

    @app.get("/status", response_model=ActionResult)
    def status():
        return ActionResult(ok=True, data=orch.status())

    @app.get("/logs")
    def logs():
        return {"ok": True, "logs": list_logs(log_index(orch.layout))}

    @app.get("/logs/{log_id}")
    def get_log(
        log_id: str,
        tail: int = Query(default=200, ge=0, le=5000),
        cursor: Optional[str] = None,
        max_lines: int = Query(default=200, ge=1, le=5000),
    ):
        # ids come from the index only, never joined onto a path
        path = log_index(orch.layout).get(log_id)
        if path is None:
            raise HTTPException(status_code=404, detail="log_not_found")

        if cursor:
            chunk = read_from_cursor(path, cursor=cursor, max_lines=max_lines)
        else:
            chunk = read_tail(path, tail_lines=tail)
        return {
            "ok": True,
            "id": log_id,
            "cursor": chunk.cursor,
            "lines": chunk.entries,
            "truncated": chunk.truncated,
        }

    return app
