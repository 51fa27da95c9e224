import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.endpoints import account, admin, billing, generations
from app.api.errors import to_http_exception
from app.core.database import engine, Base
from app.core.errors import CreditsEngineError
from app.core.logging_config import setup_logging
from app.core.settings import settings
from app.models import credit_account, credit_package, credit_transaction, generation, profile, purchase  # noqa: F401

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Infographic AI Credits API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def startup() -> None:
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)
    logger.info("app.startup environment=%s db_auto_create=%s", settings.environment, settings.db_auto_create)


@app.exception_handler(CreditsEngineError)
async def credits_engine_error_handler(request: Request, exc: CreditsEngineError):
    http_exc = to_http_exception(exc)
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail}, headers=http_exc.headers)


# API Routes
app.include_router(account.router, prefix="/api", tags=["account"])
app.include_router(billing.router, prefix="/api", tags=["billing"])
app.include_router(generations.router, prefix="/api", tags=["generations"])
app.include_router(admin.router, prefix="/api", tags=["admin"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
