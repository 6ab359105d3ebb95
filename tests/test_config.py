import pytest
from pydantic import ValidationError

from fleettrack.config import Settings


def test_defaults():
    settings = Settings()

    assert settings.gps_max_accuracy_m == 50.0
    assert settings.gps_max_plausible_speed_kmh == 180.0
    assert settings.stop_radius_m == 50.0
    assert settings.stop_min_duration_seconds == 300
    assert settings.max_idle_seconds == 1800
    assert settings.mileage_threshold_km == 10.0
    assert settings.route_average_speed_kmh == 40.0
    assert settings.speed_limit_for("filling") == 120.0


def test_speed_limits_from_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("FLEET_SPEED_LIMITS_KMH", '{"Collection": 60, "repair": 90}')
    settings = Settings()

    assert settings.speed_limit_for("collection") == 60.0
    assert settings.speed_limit_for("REPAIR") == 90.0
    assert settings.speed_limit_for("unknown") == settings.default_speed_limit_kmh


def test_allowed_origins_from_json_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("FLEET_FRONTEND_ALLOWED_ORIGINS", '["https://ops.example.com", "https://fleet.example.com"]')
    settings = Settings()

    assert settings.frontend_allowed_origins == ("https://ops.example.com", "https://fleet.example.com")


def test_thresholds_are_validated(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("FLEET_STOP_RADIUS_M", "0")
    with pytest.raises(ValidationError):
        Settings()
