"""Application configuration and settings management."""

from typing import Any, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SPEED_LIMITS_KMH: dict[str, float] = {
    "filling": 120.0,
    "collection": 120.0,
    "repair": 120.0,
    "maintenance": 120.0,
    "inspection": 120.0,
    "merchandising": 120.0,
    "mixed": 120.0,
    "other": 120.0,
}


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FLEET_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Fleet Trip Tracking API"
    api_prefix: str = "/api"

    # GPS point filter
    gps_max_accuracy_m: float = Field(
        default=50.0,
        ge=0.0,
        description="Samples reporting a worse accuracy than this are stored but filtered.",
    )
    gps_max_plausible_speed_kmh: float = Field(
        default=180.0,
        gt=0.0,
        description="Implied speed above which a hop is treated as a GPS jump.",
    )
    gps_jump_min_distance_m: float = Field(
        default=1000.0,
        ge=0.0,
        description="Hops shorter than this are never classified as jumps.",
    )

    # Anomaly rules
    speed_limits_kmh: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_SPEED_LIMITS_KMH),
        description="Speed ceiling per trip task type.",
    )
    default_speed_limit_kmh: float = Field(default=120.0, gt=0.0)
    max_idle_seconds: int = Field(default=1800, ge=1)
    route_deviation_m: float = Field(default=500.0, gt=0.0)
    mileage_threshold_km: float = Field(default=10.0, ge=0.0)

    # Stop detection
    stop_radius_m: float = Field(default=50.0, gt=0.0)
    stop_min_duration_seconds: int = Field(default=300, ge=0)
    stop_window_points: int = Field(default=50, ge=2)
    geofence_radius_m: float = Field(default=150.0, gt=0.0)

    # Route optimization
    route_average_speed_kmh: float = Field(
        default=40.0,
        gt=0.0,
        description="Average urban speed used to turn saved kilometers into minutes.",
    )
    two_opt_epsilon_km: float = Field(default=0.001, ge=0.0)

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()

    @field_validator("speed_limits_kmh", mode="before")
    @classmethod
    def _parse_speed_limits(cls, value: Any) -> dict[str, float]:
        """Normalise task type keys; accepts a mapping or a JSON object string."""
        if value is None:
            return dict(DEFAULT_SPEED_LIMITS_KMH)
        if isinstance(value, str):
            value = json.loads(value)
        if isinstance(value, dict):
            return {str(key).lower(): float(limit) for key, limit in value.items()}
        raise ValueError(f"Unsupported speed limit configuration: {value!r}")

    def speed_limit_for(self, task_type: str) -> float:
        return self.speed_limits_kmh.get(str(task_type).lower(), self.default_speed_limit_kmh)


settings = Settings()
