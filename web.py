import json
from typing import Any

from fastapi import FastAPI, Request, APIRouter
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apis.base import error_response
from apis.notice import router as notice_router
from apis.payment import router as payment_router
from apis.usage import router as usage_router
from core.config import cfg, VERSION, API_BASE
from core.db import DB
from core.errors import PlanAccessError, ServiceError
from core.events import log_event, E
from core.log import get_logger, set_trace_id

logger = get_logger(__name__)


class UnicodeJSONResponse(JSONResponse):
    """不转义非 ASCII 字符（₹ 等）"""
    def render(self, content: Any) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


app = FastAPI(
    title="Consult Pay API",
    description="咨询平台支付、订阅与用量服务",
    version=VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    default_response_class=UnicodeJSONResponse,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_trace_id(request: Request, call_next):
    tid = set_trace_id(request.headers.get("X-Request-Id"))
    response = await call_next(request)
    response.headers["X-Request-Id"] = tid
    response.headers["X-Version"] = VERSION
    response.headers["Server"] = str(cfg.get("app_name", "consult-pay"))
    return response


@app.exception_handler(ServiceError)
async def handle_service_error(request: Request, exc: ServiceError):
    level = "error" if exc.status_code >= 500 else "warning"
    getattr(logger, level)("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    details = exc.details
    if isinstance(exc, PlanAccessError):
        details = {"code": exc.code, **(exc.details or {})}
    return error_response(exc.status_code, exc.message, details=details)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    return error_response(400, "Invalid request", details=json.loads(json.dumps(exc.errors(), default=str)))


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("未处理异常: %s %s", request.method, request.url.path)
    return error_response(500, str(exc) or "Internal server error")


api_router = APIRouter(prefix=API_BASE)
api_router.include_router(payment_router)
api_router.include_router(usage_router)
api_router.include_router(notice_router)
app.include_router(api_router)


@app.on_event("startup")
async def ensure_tables():
    DB.create_tables()
    log_event(logger, E.SYSTEM_STARTUP, version=VERSION)
