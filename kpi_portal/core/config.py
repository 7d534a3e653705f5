import os
import logging
from pydantic import BaseModel, Field
from typing import List
from dotenv import load_dotenv

load_dotenv()


class WorkflowSettings(BaseModel):
    # Reminder after this many whole days pending; escalation to the approver's manager after twice that.
    approval_sla_days: int = Field(default=int(os.getenv("APPROVAL_SLA_DAYS", "3")))
    escalation_interval_seconds: int = Field(default=int(os.getenv("ESCALATION_INTERVAL_SECONDS", str(4 * 60 * 60))))
    enable_escalation_job: bool = Field(default=os.getenv("ENABLE_ESCALATION_JOB", "true").lower() == "true")
    # PROCESSING tasks untouched for this long belong to a dead worker and are run again.
    task_stale_after_seconds: int = Field(default=int(os.getenv("TASK_STALE_AFTER_SECONDS", "900")))
    default_total_weight: float = 100.0
    max_overachieve_cap: float = 150.0


class Config(BaseModel):
    app_name: str = "KPI Portal"
    environment: str = os.getenv("APP_ENV", "development")
    api_prefix: str = "/api"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./kpi_portal.db")

    # Auth
    secret_key: str = os.getenv("SECRET_KEY", "dev-only-insecure-key-DO-NOT-USE-IN-PROD")
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 8)))

    # Bootstrap
    bootstrap_admin_email: str = os.getenv("BOOTSTRAP_ADMIN_EMAIL", "")
    bootstrap_admin_password: str = os.getenv("BOOTSTRAP_ADMIN_PASSWORD", "")

    workflow: WorkflowSettings = WorkflowSettings()

    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"

    # CORS: comma-separated origins loaded from env.
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://127.0.0.1:3000",
            ).split(",")
            if o.strip()
        ]
    )

    rate_limit_per_minute: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))

    # Logging: "json" for shipping, "text" for a local console
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format: str = os.getenv("LOG_FORMAT", "json").lower()


settings = Config()

# --- Startup Validation for Production ---
_logger = logging.getLogger(__name__)
if settings.environment not in ("development", "testing"):
    if "dev-only" in settings.secret_key or "change-it" in settings.secret_key:
        raise RuntimeError(
            "FATAL: SECRET_KEY must be set for non-development environments. "
            "Set it as an environment variable."
        )
elif "dev-only" in settings.secret_key:
    _logger.warning("Using insecure default SECRET_KEY; only acceptable in development.")
