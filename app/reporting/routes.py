# ============================================================================
# SERVIX CMMS - Reporting API Routes
# ============================================================================
# FastAPI routes for the report engine.
#
# Two routers:
#   - router:            /api/reports/*   (generate, sections, config, audit)
#   - downloads_router:  /downloads/*     (generated files)
#
# Registration via register_reporting_routes(app).
# ============================================================================

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse
from starlette.concurrency import run_in_threadpool

from .config import DEFAULT_CONFIG, format_time_for_display, get_all_config, get_output_dir, set_config
from .engine import get_engine, parse_report_request
from .errors import ReportError, ReportValidationError
from .models import MIME_TYPES, AuditRepository, OutputFormat
from .sections import section_catalogue

logger = logging.getLogger("reporting.routes")

router = APIRouter(prefix="/api/reports", tags=["reports"])
downloads_router = APIRouter(prefix="/downloads", tags=["downloads"])

_MEDIA_BY_EXT = {fmt.extension: mime for fmt, mime in MIME_TYPES.items()}


def _get_user(request: Request) -> Optional[str]:
    """Acting user from the X-User header, if the client sent one."""
    return request.headers.get("X-User")


def _wants_blob(request: Request) -> bool:
    return request.headers.get("X-Return-Blob", "").strip().lower() in ("1", "true", "yes")


# ============================================================================
# Generate  (/api/reports/generate)
# ============================================================================

@router.post("/generate")
async def generate_report(request: Request):
    """Generate a report file.

    Expects JSON body:
    ```json
    {
        "reports": ["taskManagement", "staffPerformance"],
        "filters": {"dateFrom": "2026-01-01", "dateTo": "2026-01-31",
                    "departments": ["ICU"], "categories": [], "staff": "Ama"},
        "options": {"format": "pdf", "visuals": {"charts": true, "summary": true}},
        "requestedBy": "Jane Doe"
    }
    ```

    With ``X-Return-Blob: 1`` the file itself is returned; otherwise
    ``{success, fileUrl}`` pointing at the download route.
    """
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON")

    try:
        report_request = parse_report_request(data, requested_by=_get_user(request))
        artifact = await run_in_threadpool(get_engine().generate, report_request)
    except ReportValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ReportError as exc:
        logger.error("Report generation failed: %s", exc)
        raise HTTPException(status_code=500, detail=f"Failed to generate report: {exc}")

    if _wants_blob(request):
        return FileResponse(
            path=str(artifact.absolute_path),
            media_type=artifact.mime_type,
            filename=artifact.filename,
        )
    return {"success": True, "fileUrl": f"/downloads/{artifact.filename}"}


@router.get("/sections")
async def list_sections():
    """The report sections a client may request, plus the supported formats."""
    return {
        "sections": section_catalogue(),
        "formats": [fmt.value for fmt in OutputFormat],
    }


# ============================================================================
# Configuration & audit
# ============================================================================

@router.get("/config")
async def get_reporting_config():
    """All reporting configuration values."""
    config = get_all_config()
    config["current_time"] = format_time_for_display()
    return config


@router.patch("/config")
async def update_reporting_config(request: Request):
    """Update known configuration keys."""
    data = await request.json()
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be an object")
    unknown = sorted(k for k in data if k not in DEFAULT_CONFIG)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown config keys: {', '.join(unknown)}")

    user = _get_user(request) or "admin"
    for key, value in data.items():
        try:
            set_config(key, value, user=user)
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail=f"Invalid value for {key}: {value!r}")
    logger.info("Reporting config updated by %s: %s", user, ", ".join(data))
    return {"ok": True, "updated": list(data)}


@router.get("/audit")
async def get_audit_log(limit: int = 100, category: Optional[str] = None):
    """Recent audit log entries."""
    return {"entries": AuditRepository.get_recent(limit, category)}


# ============================================================================
# Downloads  (/downloads/{filename})
# ============================================================================

@downloads_router.get("/{filename}")
async def download_report(filename: str):
    """Serve a generated report from the output directory."""
    out_dir = get_output_dir()
    file_path = (out_dir / filename).resolve()
    if file_path.parent != out_dir or filename.startswith("."):
        raise HTTPException(status_code=404, detail="Report not found")
    if not file_path.is_file():
        raise HTTPException(status_code=404, detail="Report not found")

    media_type = _MEDIA_BY_EXT.get(Path(filename).suffix.lstrip("."), "application/octet-stream")
    return FileResponse(path=str(file_path), media_type=media_type, filename=filename)


# ============================================================================
# Registration function
# ============================================================================

def register_reporting_routes(app):
    """Include both routers and initialise storage when the app starts."""
    from .config import ReportingConfig
    from .models import init_database

    app.include_router(router)
    app.include_router(downloads_router)

    @app.on_event("startup")
    async def _reporting_startup():
        init_database()
        ReportingConfig.init_defaults()
        logger.info("Reporting storage ready (output dir: %s)", get_output_dir())

    logger.info("Reporting module registered: /api/reports, /downloads")
