import logging
from datetime import datetime

from fastapi import FastAPI, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import agent_intelligence.models  # noqa: F401  (tables for create_all)
from agent_intelligence.config import settings, validate_config, get_config_status, ConfigValidationError
from agent_intelligence.database import Base, engine, get_db
from agent_intelligence.dependencies import get_generator
from agent_intelligence.errors import IntelligenceError, status_code_for

from agent_intelligence.api import (
    decisions,
    versions,
    experiments,
    approvals,
    insights,
    cron,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("agent_intelligence.main")

app = FastAPI(title="Agent Intelligence Engine", version="1.0.0")


@app.on_event("startup")
async def startup_event():
    logger.info("Agent Intelligence Engine Starting...")

    # Validate configuration (don't raise in dev mode)
    try:
        result = validate_config(raise_on_error=settings.ENVIRONMENT == "production")
        for warning in result.get("warnings", []):
            logger.warning(f"Config warning: {warning}")
        for error in result.get("errors", []):
            logger.error(f"Config error: {error}")
    except ConfigValidationError as e:
        logger.critical(f"FATAL: {e}")
        raise SystemExit(1)

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")


@app.exception_handler(IntelligenceError)
async def intelligence_error_handler(request: Request, exc: IntelligenceError):
    code = status_code_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(decisions.router)
app.include_router(versions.router)
app.include_router(experiments.router)
app.include_router(approvals.router)
app.include_router(insights.router)
app.include_router(cron.router)  # scheduler trigger


@app.get("/")
async def root():
    return {"message": "Agent Intelligence Engine", "status": "running", "version": "1.0.0"}


@app.get("/health")
async def health(db: Session = Depends(get_db), generator=Depends(get_generator)):
    """
    unhealthy: the store is unreachable.
    degraded: insights would be metrics-only (no API key, or the analysis breaker is open).
    """
    checks = {"config": get_config_status()}

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        checks["database"] = f"error: {str(e)[:100]}"

    breaker = getattr(generator, "breaker", None)
    if breaker is not None:
        checks["analysis_breaker"] = breaker.get_stats()

    if checks["database"] != "ok":
        status = "unhealthy"
    elif not checks["config"]["analysis_configured"] or (breaker is not None and breaker.is_open):
        status = "degraded"
    else:
        status = "healthy"

    return {
        "status": status,
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0",
        "checks": checks,
    }


@app.get("/health/simple")
async def health_simple():
    return {"status": "ok"}
