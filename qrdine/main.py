# qrdine/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from qrdine.middleware import RequestIdMiddleware
from qrdine.db import Base, engine
from qrdine.config import settings
from qrdine.errors import InternalError, OrderingError, ValidationError
from qrdine.events.bus import EventBus
from qrdine.services.payment_gateway import build_gateway
import qrdine.models  # noqa: F401  registers tables

from qrdine.routers import admin, auth, feedback, menu, orders, payments, reports, sse, tables

logger = logging.getLogger(__name__)


def _configure_logging():
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _configure_logging()
    Base.metadata.create_all(bind=engine)
    logger.info("qrdine starting (env=%s, payments=%s)", settings.APP_ENV,
                "mock" if app.state.gateway.mock else "live")
    yield
    app.state.gateway.close()


app = FastAPI(title="QR Dine API", version="0.1.0", lifespan=lifespan)

# Process-local: a restart drops subscribers, the store stays authoritative
app.state.bus = EventBus()
app.state.gateway = build_gateway()

# Middlewares
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Errors: {"error": kind, "detail": message}
def _error(exc: OrderingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.kind, "detail": exc.message})


@app.exception_handler(OrderingError)
async def ordering_error(request: Request, exc: OrderingError):
    return _error(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    errs = exc.errors()
    if errs:
        loc = ".".join(str(p) for p in errs[0].get("loc", ()) if p != "body")
        msg = f"{loc}: {errs[0].get('msg')}" if loc else errs[0].get("msg")
    else:
        msg = None
    return _error(ValidationError(msg))


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return _error(InternalError())


app.include_router(auth.router)
app.include_router(menu.router)
app.include_router(tables.router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(sse.router)
app.include_router(feedback.router)
app.include_router(reports.router)
app.include_router(admin.router)

@app.get("/healthz")
def healthz():
    return {"ok": True}
