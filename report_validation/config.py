from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    app_env: str = os.getenv("APP_ENV", "dev")
    database_url: str = os.getenv(
        "DATABASE_URL",
        "sqlite:///./runtime/report_validation.db",
    )
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    local_api_token: str = os.getenv("LOCAL_API_TOKEN", "dev-token")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Complexity thresholds that route a report through technical review.
    technical_review_result_threshold: int = int(os.getenv("TECHNICAL_REVIEW_RESULT_THRESHOLD", "10"))
    technical_review_conclusion_threshold: int = int(os.getenv("TECHNICAL_REVIEW_CONCLUSION_THRESHOLD", "3"))

    due_hours_routine: int = int(os.getenv("DUE_HOURS_ROUTINE", "72"))
    due_hours_urgent: int = int(os.getenv("DUE_HOURS_URGENT", "24"))
    due_hours_stat: int = int(os.getenv("DUE_HOURS_STAT", "1"))

    signature_secret: str | None = os.getenv("SIGNATURE_SECRET")
    require_signoff_signature: bool = os.getenv("REQUIRE_SIGNOFF_SIGNATURE", "false").lower() == "true"
    auto_validation_fail_on_error: bool = os.getenv("AUTO_VALIDATION_FAIL_ON_ERROR", "true").lower() == "true"
    enforce_assignment_roles: bool = os.getenv("ENFORCE_ASSIGNMENT_ROLES", "false").lower() == "true"
    disabled_bots_raw: str = os.getenv("DISABLED_BOTS", "")

    audit_forward_url: str | None = os.getenv("AUDIT_FORWARD_URL")
    audit_timeout_seconds: float = float(os.getenv("AUDIT_TIMEOUT_SECONDS", "5"))
    audit_max_retries: int = int(os.getenv("AUDIT_MAX_RETRIES", "2"))

    system_actor_id: str = os.getenv("SYSTEM_ACTOR_ID", "system")

    def api_tokens(self) -> list[str]:
        raw = self.local_api_token or ""
        return [token.strip() for token in raw.split(",") if token.strip()]

    def disabled_bots(self) -> set[str]:
        raw = self.disabled_bots_raw or ""
        return {token.strip() for token in raw.split(",") if token.strip()}

    def due_hours(self, priority: str) -> int:
        return {
            "stat": self.due_hours_stat,
            "urgent": self.due_hours_urgent,
        }.get(priority, self.due_hours_routine)


settings = Settings()
