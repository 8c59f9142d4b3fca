from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MeshSettings(BaseSettings):
    """Mesh generation settings pulled from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PLANETMESH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Numeric tolerance
    tolerance: float = Field(
        default=1e-6,
        description="Duplicate-point and degenerate-triangle tolerance",
    )
    incircle_epsilon: float = Field(
        default=1e-12,
        description="Relative epsilon below which an in-circle determinant counts as co-circular",
    )

    # Unconstrained triangulation
    fan_max_points: int = Field(default=6, description="Largest point count triangulated as a fan")
    legalize_fan: bool = Field(default=True, description="Run one legality sweep after fan triangulation")
    flip_iteration_factor: int = Field(
        default=3, description="Flip sweeps allowed per triangle before giving up"
    )

    # Constrained triangulation
    legalize_safety_limit: int = Field(
        default=200000, description="Maximum edge checks in a single legalization sweep"
    )
    constraint_recovery_limit: int = Field(
        default=1000, description="Maximum flips while recovering one constrained edge"
    )
    super_triangle_scale: float = Field(
        default=10.0, description="Super-triangle size relative to the input bounding extent"
    )

    # Cell assembly
    parallel_cells: bool = Field(default=True, description="Compute Voronoi cells concurrently")
    max_workers: int = Field(default=4, description="Worker threads for cell assembly")
    validate_topology: bool = Field(default=True, description="Validate the store after each stage")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Logging format (console or json)")

    @field_validator("tolerance", "incircle_epsilon", "super_triangle_scale")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("fan_max_points")
    @classmethod
    def _fan_size(cls, value: int) -> int:
        if value < 3:
            raise ValueError("fan triangulation needs at least 3 points")
        return value

    @field_validator("flip_iteration_factor", "legalize_safety_limit", "constraint_recovery_limit", "max_workers")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("log_format")
    @classmethod
    def _log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return value


@lru_cache(maxsize=1)
def get_settings() -> MeshSettings:
    """Return the process-wide settings instance."""
    return MeshSettings()
