# backend/agent_intelligence/config.py
import os
from pathlib import Path
from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parents[1]   # backend/
REPO_DIR = BACKEND_DIR.parent                        # repo root

ENV_BACKEND = BACKEND_DIR / ".env"
ENV_REPO = REPO_DIR / ".env"
ENV_FILE = ENV_BACKEND if ENV_BACKEND.exists() else ENV_REPO

load_dotenv(dotenv_path=str(ENV_FILE), override=False)


def _build_database_url() -> str:
    """Use DATABASE_URL directly, or a local SQLite file for development."""
    direct_url = os.getenv("DATABASE_URL")
    if direct_url:
        return direct_url
    return f"sqlite:///{BACKEND_DIR / 'agent_intelligence.db'}"


def _parse_list(raw: str) -> list[str]:
    # split, strip, lowercase, drop empties
    out = []
    for item in (raw or "").split(","):
        item = (item or "").strip().lower()
        if item:
            out.append(item)
    return out


def _parse_origins(raw: str) -> list[str]:
    out = []
    for o in (raw or "").split(","):
        o = (o or "").strip().rstrip("/")
        if o:
            out.append(o)
    return out


def _parse_roster(raw: str) -> dict[str, list[str]]:
    """
    Parse LEARNING_ROSTER into {agent_name: [decision_type, ...]}.

    Format: "agent:type_a|type_b;other_agent:type_c"
    """
    roster: dict[str, list[str]] = {}
    for entry in (raw or "").split(";"):
        entry = entry.strip()
        if not entry or ":" not in entry:
            continue
        agent, types = entry.split(":", 1)
        agent = agent.strip()
        decision_types = [t.strip() for t in types.split("|") if t.strip()]
        if agent and decision_types:
            roster[agent] = decision_types
    return roster


class Settings:
    DATABASE_URL: str = _build_database_url()

    # ================= Analysis dependency (LLM) =================
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    ANALYSIS_MAX_TOKENS: int = int(os.getenv("ANALYSIS_MAX_TOKENS", "4000"))
    ANALYSIS_SAMPLE_SIZE: int = int(os.getenv("ANALYSIS_SAMPLE_SIZE", "20"))

    # ================= Escalation policy =================
    # Decision types whose version changes always need a human reviewer
    SENSITIVE_DECISION_TYPES: list[str] = _parse_list(
        os.getenv("SENSITIVE_DECISION_TYPES", "escalation_decision")
    )
    # Terms that mark a proposed change as touching an escalation topic
    SENSITIVE_TERMS: list[str] = _parse_list(
        os.getenv("SENSITIVE_TERMS", "escalate,escalation")
    )

    # ================= Experiment policy =================
    # Outcome value (0-100) at or above which a decision counts as a success
    SUCCESS_THRESHOLD: float = float(os.getenv("SUCCESS_THRESHOLD", "70"))
    SIGNIFICANCE_THRESHOLD: float = float(os.getenv("SIGNIFICANCE_THRESHOLD", "0.95"))
    # Experiments short of their sample target after this many days are aborted
    EXPERIMENT_MAX_DAYS: int = int(os.getenv("EXPERIMENT_MAX_DAYS", "30"))

    # ================= Scheduler collaborator =================
    CRON_SECRET: str | None = os.getenv("CRON_SECRET")
    LEARNING_ROSTER: dict[str, list[str]] = _parse_roster(
        os.getenv("LEARNING_ROSTER", "")
    )
    LEARNING_WINDOW_DAYS: int = int(os.getenv("LEARNING_WINDOW_DAYS", "7"))

    CORS_ORIGINS: list[str] = _parse_origins(
        os.getenv(
            "CORS_ORIGINS",
            "http://127.0.0.1:3000,http://localhost:3000",
        )
    )

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")


settings = Settings()


# =============================================================================
# CONFIGURATION VALIDATION
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(raise_on_error: bool = True) -> dict:
    """
    Validate all configuration settings.

    Args:
        raise_on_error: If True, raises ConfigValidationError on critical errors.
                       If False, returns dict with errors and warnings.

    Returns:
        Dict with 'errors' (critical) and 'warnings' (non-critical) lists.
    """
    errors = []
    warnings = []

    if not settings.DATABASE_URL:
        errors.append("DATABASE_URL is required")

    if not 0 < settings.SIGNIFICANCE_THRESHOLD < 1:
        errors.append("SIGNIFICANCE_THRESHOLD must be between 0 and 1")
    if not 0 <= settings.SUCCESS_THRESHOLD <= 100:
        errors.append("SUCCESS_THRESHOLD must be between 0 and 100")
    if settings.EXPERIMENT_MAX_DAYS < 1:
        errors.append("EXPERIMENT_MAX_DAYS must be at least 1")

    if not settings.OPENAI_API_KEY:
        warnings.append("OPENAI_API_KEY missing - insights will carry metrics only")
    if not settings.CRON_SECRET:
        warnings.append("CRON_SECRET missing - scheduled learning endpoint is disabled")
    if not settings.LEARNING_ROSTER:
        warnings.append("LEARNING_ROSTER empty - weekly analysis has no agents to analyze")
    if not settings.SENSITIVE_DECISION_TYPES and not settings.SENSITIVE_TERMS:
        warnings.append("No sensitive decision types or terms configured - nothing escalates")

    if settings.ENVIRONMENT == "production":
        if settings.DATABASE_URL.startswith("sqlite"):
            warnings.append("SQLite in production - promotions are only serialized per process")
        if not settings.CORS_ORIGINS or any("localhost" in o for o in settings.CORS_ORIGINS):
            warnings.append("CORS_ORIGINS includes localhost in production - consider restricting")

    result = {"errors": errors, "warnings": warnings}

    if raise_on_error and errors:
        raise ConfigValidationError(f"Configuration errors: {'; '.join(errors)}")

    return result


def get_config_status() -> dict:
    """Configuration presence summary for the health endpoint."""
    return {
        "environment": settings.ENVIRONMENT,
        "database_configured": bool(settings.DATABASE_URL),
        "database_backend": settings.DATABASE_URL.split(":", 1)[0],
        "analysis_configured": bool(settings.OPENAI_API_KEY),
        "cron_configured": bool(settings.CRON_SECRET),
        "roster_agents": sorted(settings.LEARNING_ROSTER.keys()),
        "sensitive_decision_types": settings.SENSITIVE_DECISION_TYPES,
    }
