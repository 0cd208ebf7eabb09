"""Configuration loading and validation for ``.gauntlet/`` project settings."""

from gauntlet_orchestrator.config.loader import ConfigLoadError, find_project_root, load_config
from gauntlet_orchestrator.config.schema import (
    CheckGateConfig,
    CLIConfig,
    ConfigValidationError,
    EntryPointConfig,
    GauntletConfig,
    ProjectConfig,
    ReviewGateConfig,
)

__all__ = [
    "CLIConfig",
    "CheckGateConfig",
    "ConfigLoadError",
    "ConfigValidationError",
    "EntryPointConfig",
    "GauntletConfig",
    "ProjectConfig",
    "ReviewGateConfig",
    "find_project_root",
    "load_config",
]
