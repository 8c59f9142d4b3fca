"""Tests for settings and logging configuration."""

import logging

import pytest
import structlog
from pydantic import ValidationError

from py_planetmesh.config import MeshSettings, get_settings
from py_planetmesh.utils import FunctionTimer, configure_logging


class TestMeshSettings:
    """Test settings defaults, overrides and validation."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("PLANETMESH_TOLERANCE", raising=False)
        settings = MeshSettings(_env_file=None)
        assert settings.tolerance == 1e-6
        assert settings.fan_max_points == 6
        assert settings.flip_iteration_factor == 3
        assert settings.super_triangle_scale == 10.0
        assert settings.legalize_fan is True

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("PLANETMESH_FAN_MAX_POINTS", "8")
        monkeypatch.setenv("PLANETMESH_PARALLEL_CELLS", "false")
        settings = MeshSettings(_env_file=None)
        assert settings.fan_max_points == 8
        assert settings.parallel_cells is False

    @pytest.mark.parametrize("field, value", [
        ("tolerance", 0.0),
        ("incircle_epsilon", -1.0),
        ("fan_max_points", 2),
        ("max_workers", 0),
        ("log_format", "xml"),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            MeshSettings(_env_file=None, **{field: value})

    def test_log_format_normalized(self):
        assert MeshSettings(_env_file=None, log_format="CONSOLE").log_format == "console"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestFunctionTimer:
    """Test stage timing."""

    def test_runtimes_accumulate(self):
        timer = FunctionTimer()
        with timer.timed("mesh", "stage"):
            sum(range(1000))
        first = timer.get_runtime("mesh", "stage")
        with timer.timed("mesh", "stage"):
            sum(range(1000))
        assert timer.get_runtime("mesh", "stage") >= first > 0.0

    def test_failed_stage_still_recorded(self):
        timer = FunctionTimer()
        with pytest.raises(RuntimeError):
            with timer.timed("mesh", "broken"):
                raise RuntimeError("boom")
        assert "mesh.broken" in timer.get_all_runtimes()

    def test_unknown_stage_and_reset(self):
        timer = FunctionTimer()
        assert timer.get_runtime("mesh", "missing") == 0.0
        with timer.timed("mesh", "stage"):
            pass
        timer.log_all_runtimes()
        timer.reset()
        assert timer.get_all_runtimes() == {}


class TestLogging:
    """Test structlog configuration."""

    @pytest.fixture(autouse=True)
    def restore_structlog(self):
        yield
        structlog.reset_defaults()

    @pytest.mark.parametrize("log_format", ["json", "console"])
    def test_configure_logging(self, log_format):
        configure_logging("DEBUG", log_format)
        assert structlog.is_configured()
        assert logging.getLogger().level == logging.DEBUG

    def test_configure_logging_from_settings(self):
        settings = MeshSettings(_env_file=None, log_level="WARNING", log_format="console")
        configure_logging(settings=settings)
        assert logging.getLogger().level == logging.WARNING
        renderer = structlog.get_config()["processors"][-1]
        assert isinstance(renderer, structlog.dev.ConsoleRenderer)

    def test_explicit_arguments_override_settings(self):
        settings = MeshSettings(_env_file=None, log_level="WARNING", log_format="console")
        configure_logging("ERROR", "json", settings=settings)
        assert logging.getLogger().level == logging.ERROR
        renderer = structlog.get_config()["processors"][-1]
        assert isinstance(renderer, structlog.processors.JSONRenderer)
