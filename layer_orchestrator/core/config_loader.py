"""
Configuration loading utilities.

The orchestrator reads a single JSON document (by default
``config/orchestrator.config.json``):

    {
      "global": {"aws_profile": "...", "aws_region": "us-east-1", ...},
      "layers": {
        "near_base": {
          "enabled": true,
          "depends_on": [],
          "source": {"repo_url": "...", "branch": "main", "cdk_path": "cdk"},
          "config": {}
        }
      }
    }

Loading steps:
    1. Parse JSON (ConfigurationError on missing file or bad JSON)
    2. Interpolate ``${VAR}`` / ``$VAR`` in every string from the environment
    3. Validate with the pydantic schema below
    4. Convert into a frozen GlobalRunConfig and ordered LayerSpecs

Usage:
    from layer_orchestrator.core.config_loader import load_config, apply_overrides

    config = load_config("config/orchestrator.config.json")
    config = apply_overrides(config, continue_on_error=True)
"""

import json
import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

import layer_orchestrator.constants as CONSTANTS
from .exceptions import ConfigurationError
from .models import GlobalRunConfig, LayerSource, LayerSpec

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


# --------------------------------------------------
# Schema
# --------------------------------------------------
class GlobalSettingsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    aws_profile: Optional[str] = None
    aws_region: str = Field(default=CONSTANTS.DEFAULT_AWS_REGION, min_length=1)
    aws_account: Optional[str] = None
    workspace_root: str = CONSTANTS.DEFAULT_WORKSPACE_ROOT
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    continue_on_error: bool = False
    state_file: str = CONSTANTS.DEFAULT_STATE_FILE


class LayerSourceModel(BaseModel):
    repo_url: str = Field(..., min_length=1)
    branch: str = CONSTANTS.DEFAULT_BRANCH
    cdk_path: Optional[str] = None
    script_path: Optional[str] = None

    @model_validator(mode='after')
    def check_entry_point(self):
        if not self.cdk_path and not self.script_path:
            raise ValueError('Either cdk_path or script_path must be specified')
        return self


class LayerConfigModel(BaseModel):
    enabled: bool = True
    depends_on: List[str] = Field(default_factory=list)
    source: Optional[LayerSourceModel] = None
    config: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def check_unique_dependencies(self):
        if len(set(self.depends_on)) != len(self.depends_on):
            raise ValueError('depends_on contains duplicate entries')
        return self


class OrchestratorConfigModel(BaseModel):
    # Named "global" in the JSON document; that is a Python keyword.
    global_settings: GlobalSettingsModel = Field(
        default_factory=GlobalSettingsModel, alias="global"
    )
    layers: Dict[str, LayerConfigModel] = Field(..., min_length=1)

    model_config = ConfigDict(populate_by_name=True)


# --------------------------------------------------
# Loaded config
# --------------------------------------------------
@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Validated configuration for one run.

    Attributes:
        global_config: Process-wide settings
        layers: Layer specs in declaration order
        config_file: Path the config was loaded from, if any
    """
    global_config: GlobalRunConfig
    layers: Tuple[LayerSpec, ...]
    config_file: Optional[str] = None

    def get_layer(self, name: str) -> Optional[LayerSpec]:
        return next((spec for spec in self.layers if spec.name == name), None)

    @property
    def layer_names(self) -> List[str]:
        return [spec.name for spec in self.layers]


def interpolate_env(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """
    Replace ``${VAR}`` and ``$VAR`` references in strings, recursively.

    Unset variables are left verbatim.

    Example:
        >>> interpolate_env({"profile": "${AWS_PROFILE}"}, {"AWS_PROFILE": "dev"})
        {'profile': 'dev'}
    """
    env = os.environ if environ is None else environ

    if isinstance(value, str):
        def _substitute(match: re.Match) -> str:
            name = match.group(1) or match.group(2)
            return env.get(name, match.group(0))
        return _ENV_PATTERN.sub(_substitute, value)
    if isinstance(value, dict):
        return {k: interpolate_env(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate_env(v, env) for v in value]
    return value


def _format_validation_error(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        path = ".".join(str(part) for part in item["loc"]) or "<root>"
        lines.append(f"{path}: {item['msg']}")
    return "; ".join(lines)


def parse_config(
    data: Dict[str, Any],
    config_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None
) -> OrchestratorConfig:
    """
    Validate an already-parsed config document.

    Args:
        data: The raw JSON document
        config_file: Source path, used in error messages
        environ: Environment used for interpolation (defaults to os.environ)

    Returns:
        OrchestratorConfig with layers in declaration order

    Raises:
        ConfigurationError: If the document fails schema validation
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Config root must be a JSON object", config_file=config_file)

    try:
        model = OrchestratorConfigModel.model_validate(interpolate_env(data, environ))
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration: {_format_validation_error(e)}",
            config_file=config_file
        ) from e

    settings = model.global_settings
    global_config = GlobalRunConfig(
        aws_profile=settings.aws_profile,
        aws_region=settings.aws_region,
        aws_account=settings.aws_account,
        workspace_root=settings.workspace_root,
        log_level=settings.log_level,
        continue_on_error=settings.continue_on_error,
        state_file=settings.state_file,
    )

    layers = []
    # dict preserves JSON key order, which is the resolver's tie-breaker
    for name, layer in model.layers.items():
        source = None
        if layer.source is not None:
            source = LayerSource(
                repo_url=layer.source.repo_url,
                branch=layer.source.branch,
                cdk_path=layer.source.cdk_path,
                script_path=layer.source.script_path,
            )
        layers.append(LayerSpec(
            name=name,
            enabled=layer.enabled,
            depends_on=tuple(layer.depends_on),
            source=source,
            config=layer.config,
        ))

    return OrchestratorConfig(
        global_config=global_config,
        layers=tuple(layers),
        config_file=config_file,
    )


def load_config(
    config_path: str | Path = CONSTANTS.DEFAULT_CONFIG_FILE,
    environ: Optional[Mapping[str, str]] = None
) -> OrchestratorConfig:
    """
    Load and validate the orchestrator config file.

    Raises:
        ConfigurationError: If the file is missing, not valid JSON, or invalid
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigurationError("Config file not found", config_file=str(path))

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in config file: {e}", config_file=str(path))

    return parse_config(data, config_file=str(path), environ=environ)


def apply_overrides(
    config: OrchestratorConfig,
    continue_on_error: Optional[bool] = None,
    profile: Optional[str] = None,
    region: Optional[str] = None,
    state_file: Optional[str] = None,
    log_level: Optional[str] = None
) -> OrchestratorConfig:
    """Return a copy of ``config`` with CLI flags applied over file values."""
    changes = {
        key: value for key, value in {
            "continue_on_error": continue_on_error,
            "aws_profile": profile,
            "aws_region": region,
            "state_file": state_file,
            "log_level": log_level,
        }.items() if value is not None
    }
    if not changes:
        return config
    return replace(config, global_config=replace(config.global_config, **changes))
