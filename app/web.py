from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from services.dashboard import DashboardService, build_default_service


templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))


def get_service() -> DashboardService:
    return build_default_service()


router = APIRouter(include_in_schema=False)


@router.get("/ui", name="ui_index", response_class=HTMLResponse)
async def ui_index(
    request: Request,
    service: DashboardService = Depends(get_service),
) -> HTMLResponse:
    snapshot = service.snapshot()
    readings = service.displayed_readings(snapshot)
    settings = service.store.get()
    # Newest first, like the speed records table.
    rows = list(reversed(readings))

    return templates.TemplateResponse(
        request,
        "ui/index.html",
        {
            "snapshot": snapshot,
            "summary": service.summary(readings),
            "readings": rows,
            "settings": settings,
            "refresh_seconds": max(1, settings.update_interval // 1000),
        },
    )
