"""Runtime configuration loaded from environment variables.

This module centralizes orchestrator settings such as the decision backend
URL, retry policy, tick cadence, perception radii, and control-surface
binding.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Typed settings object used across the orchestrator."""

    env: str = os.getenv("ENV", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./data/dev.db")

    backend_url: str = os.getenv("BACKEND_URL", "http://localhost:3000").rstrip("/")
    backend_mode: str = os.getenv("BACKEND_MODE", "http").lower()
    backend_max_retries: int = int(os.getenv("BACKEND_MAX_RETRIES", "3"))
    backend_retry_delay_ms: int = int(os.getenv("BACKEND_RETRY_DELAY_MS", "2000"))
    backend_timeout_ms: int = int(os.getenv("BACKEND_TIMEOUT_MS", "30000"))
    backend_health_timeout_ms: int = int(os.getenv("BACKEND_HEALTH_TIMEOUT_MS", "5000"))

    max_agents: int = int(os.getenv("MAX_AGENTS", "20"))
    auto_initialize_agents: bool = _flag("AUTO_INITIALIZE_AGENTS", "0")
    tick_interval_ms: int = int(os.getenv("TICK_INTERVAL_MS", "5000"))
    run_automatically: bool = _flag("RUN_AUTOMATICALLY", "0")
    pause_on_error: bool = _flag("PAUSE_ON_ERROR", "1")

    conversation_rounds: int = int(os.getenv("CONVERSATION_ROUNDS", "4"))
    forward_conversation_opening: bool = _flag("FORWARD_CONVERSATION_OPENING", "1")
    default_task: str = os.getenv("DEFAULT_TASK", "")

    proximity_radius: float = float(os.getenv("PROXIMITY_RADIUS", "30"))
    agent_detection_radius: float = float(os.getenv("AGENT_DETECTION_RADIUS", "30"))
    object_detection_radius: float = float(os.getenv("OBJECT_DETECTION_RADIUS", "15"))
    field_of_view: float = float(os.getenv("FIELD_OF_VIEW", "120"))
    require_line_of_sight: bool = _flag("REQUIRE_LINE_OF_SIGHT", "1")

    speech_duration: float = float(os.getenv("SPEECH_DURATION", "5.0"))
    movement_speed: float = float(os.getenv("MOVEMENT_SPEED", "3.5"))
    arrival_tolerance: float = float(os.getenv("ARRIVAL_TOLERANCE", "0.5"))

    send_environment_updates: bool = _flag("SEND_ENVIRONMENT_UPDATES", "0")
    environment_update_interval_ms: int = int(os.getenv("ENVIRONMENT_UPDATE_INTERVAL_MS", "5000"))

    control_host: str = os.getenv("CONTROL_HOST", "127.0.0.1")
    control_port: int = int(os.getenv("CONTROL_PORT", "8080"))
    cors_origins: list[str] = [x.strip() for x in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if x.strip()]


settings = Settings()
