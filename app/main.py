from contextlib import asynccontextmanager

import logfire
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError

from app.config.config import settings
from app.database.database import AsyncSessionLocal, create_tables, engine
from app.routes import (
    attendance_routes,
    auth_router,
    customer_router,
    delivery_router,
    inventory_router,
    notification_routes,
    payroll_routes,
    pos_router,
    report_router,
    settings_router,
    user_router,
)
from app.services.auth_service import ensure_first_admin, seed_roles


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    async with AsyncSessionLocal() as db:
        await seed_roles(db)
        await ensure_first_admin(db)
    yield


app = FastAPI(
    title=settings.APP_NAME,
    docs_url="/",
    lifespan=lifespan,
    description="Construction supply back office",
    summary="Inventory, POS, deliveries, attendance, payroll and reports",
)


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT],
    enabled=settings.RATE_LIMIT_ENABLED,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder(
            {"detail": "Validation failed", "errors": exc.errors()},
            custom_encoder={ValueError: str},
        ),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logfire.error(
        "database error on {method} {path}: {error}",
        method=request.method,
        path=request.url.path,
        error=str(exc),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Database error"},
    )


# configure logfire
logfire.configure(token=settings.LOGFIRE_TOKEN, send_to_logfire="if-token-present")
logfire.instrument_sqlalchemy(engine=engine)
logfire.instrument_fastapi(app, capture_headers=True)


app.include_router(auth_router.router)
app.include_router(user_router.router)
app.include_router(user_router.roles_router)
app.include_router(inventory_router.router)
app.include_router(pos_router.router)
app.include_router(delivery_router.router)
app.include_router(customer_router.router)
app.include_router(notification_routes.router)
app.include_router(settings_router.router)
app.include_router(payroll_routes.router)
app.include_router(attendance_routes.router)
app.include_router(attendance_routes.personal_router)
app.include_router(report_router.router)
app.include_router(report_router.dashboard_router)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
