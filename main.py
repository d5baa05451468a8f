import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import CORS_ORIGINS, LOG_LEVEL
from app.database import engine, Base
from app.billing.exceptions import BillingError, ConfigurationError
from app.cases.routes import router as cases_router
from app.approvals.routes import router as approvals_router
from app.billing.routes import router as billing_router
from app.firms.routes import router as firms_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Case Billing API",
    description="Rate resolution, billing models, case approval and billing ledger for law firms",
    version="1.0.0"
)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    if isinstance(exc, ConfigurationError):
        logger.error(f"Configuration error on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "retryable": exc.retryable},
    )


# Include routers
app.include_router(cases_router)
app.include_router(approvals_router)
app.include_router(billing_router)
app.include_router(firms_router)

@app.get("/")
def root():
    return {
        "message": "Case Billing API",
        "version": "1.0.0",
        "status": "running"
    }

@app.get("/health")
def health_check():
    return {"status": "healthy"}
