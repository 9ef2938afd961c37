from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings
from .errors import ServiceError
from .models import (
    ExpandedReport,
    ExpandedReportRequest,
    ExpandedReportResponse,
    LimitStatus,
    ScanRequest,
    ScanResponse,
)
from .pipeline import AppContext, ScanService
from .url_utils import client_ip

# Load environment variables from the repo root .env (local dev).
_HERE = Path(__file__).resolve()
load_dotenv(_HERE.parents[1] / ".env", override=False)

logger = logging.getLogger("quickscan_agent")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_service(request: Request) -> ScanService:
    return request.app.state.service


def create_app(context: AppContext | None = None) -> FastAPI:
    settings = context.settings if context is not None else Settings.from_env()
    _configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "service", None) is None:
            app.state.service = ScanService(AppContext.build(settings))
        yield

    app = FastAPI(title="Quickscan Agent", version="0.1.0", lifespan=lifespan)
    app.state.service = ScanService(context) if context is not None else None

    # In production, set QUICKSCAN_CORS_ORIGINS to the deployed frontend origins.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse(status_code=exc.status_code, content=exc.payload())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request body. Expected JSON."})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        content = {"error": "An unexpected error occurred while processing the request"}
        if settings.is_development:
            content["details"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    @app.post("/scan", response_model=ScanResponse)
    def scan_endpoint(req: ScanRequest, request: Request, service: ScanService = Depends(get_service)):
        peer = request.client.host if request.client else None
        record = service.run_scan(req.url, client_ip(request.headers, peer))
        return ScanResponse.from_record(record)

    # Registered before /scan/{scan_id} so "limit" is not read as an id.
    @app.get("/scan/limit", response_model=LimitStatus)
    def scan_limit_endpoint(
        request: Request, email: str | None = None, service: ScanService = Depends(get_service)
    ):
        peer = request.client.host if request.client else None
        return service.limit_status(email, client_ip(request.headers, peer))

    @app.get("/scan/{scan_id}", response_model=ScanResponse)
    def get_scan_endpoint(scan_id: str, service: ScanService = Depends(get_service)):
        return ScanResponse.from_record(service.get_scan(scan_id))

    @app.post("/expanded-report", response_model=ExpandedReportResponse)
    def expanded_report_endpoint(req: ExpandedReportRequest, service: ScanService = Depends(get_service)):
        result = service.request_expanded_report(req.scan_id, req.email, req.url)
        return ExpandedReportResponse(
            expanded_report_id=result.report.id,
            email_sent=result.report.email_sent,
            scan_count=result.scan_count,
        )

    @app.get("/expanded-report/{report_id}", response_model=ExpandedReport)
    def get_expanded_report_endpoint(report_id: str, service: ScanService = Depends(get_service)):
        return service.get_expanded_report(report_id)

    return app


app = create_app()
