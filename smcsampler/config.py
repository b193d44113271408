"""
Configuration management using Pydantic for type validation.

Loads YAML config and supports dot-notation overrides.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


# ============================================================================
# Enums for config options
# ============================================================================

class ResampleMode(str, Enum):
    MULTINOMIAL = "multinomial"
    RESIDUAL = "residual"
    STRATIFIED = "stratified"
    SYSTEMATIC = "systematic"
    ADAPTIVE = "adaptive"


class HistoryMode(str, Enum):
    NONE = "none"
    RAM = "ram"


DEFAULT_MAX_POPULATION = 100_000


# ============================================================================
# Config sub-models
# ============================================================================

class SystemConfig(BaseModel):
    """System-level configuration."""
    seed: Optional[int] = 42
    log_level: str = "INFO"
    debug: bool = False


class ResampleConfig(BaseModel):
    """Resampling configuration."""
    mode: ResampleMode = ResampleMode.STRATIFIED
    # Values below 1 are a fraction of N, otherwise an absolute ESS
    threshold: float = 0.5

    @field_validator("threshold")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"resampling threshold must be non-negative, got {v}")
        return v

    def resolve_threshold(self, n_particles: int) -> float:
        """Absolute ESS threshold for a population of n_particles."""
        return resolve_threshold(self.threshold, n_particles)


class SamplerConfig(BaseModel):
    """Particle system configuration."""
    n_particles: int = Field(default=1000, ge=1)
    resample: ResampleConfig = Field(default_factory=ResampleConfig)
    history: HistoryMode = HistoryMode.NONE
    n_threads: int = Field(default=1, ge=1)
    max_population: int = Field(default=DEFAULT_MAX_POPULATION, ge=1)
    adaptive_mcmc: bool = True
    lineage: bool = False

    @model_validator(mode="after")
    def _cap_covers_population(self) -> "SamplerConfig":
        if self.max_population < self.n_particles:
            raise ValueError(
                f"max_population ({self.max_population}) must be at least "
                f"n_particles ({self.n_particles})"
            )
        return self


def resolve_threshold(threshold: float, n_particles: int) -> float:
    if threshold < 1:
        return threshold * n_particles
    return float(threshold)


# ============================================================================
# Root config
# ============================================================================

class Config(BaseModel):
    """Root configuration."""
    system: SystemConfig = Field(default_factory=SystemConfig)
    sampler: SamplerConfig = Field(default_factory=SamplerConfig)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "Config":
        """Load config from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls(**data) if data else cls()

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save config to YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)

    def apply_overrides(self, overrides: Dict[str, Any]) -> "Config":
        """
        Apply dot-notation overrides to config.

        Example: {"sampler.resample.mode": "systematic"}
        """
        data = self.model_dump()

        for key, value in overrides.items():
            parts = key.split(".")
            d = data
            for part in parts[:-1]:
                d = d[part]
            d[parts[-1]] = value

        return Config(**data)


def parse_cli_overrides(override_strings: List[str]) -> Dict[str, Any]:
    """
    Parse override strings like "sampler.resample.mode=systematic".

    Handles type conversion for common cases.
    """
    overrides = {}

    for override in override_strings:
        if "=" not in override:
            continue

        key, value = override.split("=", 1)
        key = key.strip()
        value = value.strip()

        # Type conversion
        if value.lower() == "true":
            value = True
        elif value.lower() == "false":
            value = False
        elif value.lower() == "none":
            value = None
        else:
            try:
                if "." in value or "e" in value.lower():
                    value = float(value)
                else:
                    value = int(value)
            except ValueError:
                pass  # Keep as string

        overrides[key] = value

    return overrides


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[List[str]] = None
) -> Config:
    """
    Load config from file with optional overrides.

    Args:
        config_path: Path to YAML config file (optional)
        overrides: List of override strings like "sampler.n_threads=4"

    Returns:
        Validated Config object
    """
    if config_path is not None:
        config = Config.from_yaml(config_path)
    else:
        config = Config()

    if overrides:
        override_dict = parse_cli_overrides(overrides)
        config = config.apply_overrides(override_dict)

    return config
