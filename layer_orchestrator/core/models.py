"""
Data model shared by every part of the orchestrator.

Specs and run configuration are frozen dataclasses loaded once per run.
Outcome objects are plain dataclasses returned by leaf collaborators and
layer lifecycle calls; ordinary failures travel through them instead of
exceptions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from layer_orchestrator.core.exceptions import MissingFieldError


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ==========================================
# Specs (immutable per run)
# ==========================================

@dataclass(frozen=True)
class LayerSource:
    """Where a layer's infrastructure code lives."""
    repo_url: str
    branch: str = "main"
    cdk_path: Optional[str] = None
    script_path: Optional[str] = None


@dataclass(frozen=True)
class LayerSpec:
    """
    Declarative description of one layer.

    Attributes:
        name: Unique layer name (also the default layer type)
        enabled: Disabled layers are excluded from the dependency graph
        depends_on: Names of layers that must be captured first
        source: Repository holding the layer's infrastructure code
        config: Opaque, layer-specific settings (read-only view)
    """
    name: str
    enabled: bool = True
    depends_on: Tuple[str, ...] = ()
    source: Optional[LayerSource] = None
    config: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "depends_on", tuple(self.depends_on))
        object.__setattr__(self, "config", MappingProxyType(dict(self.config)))

    @property
    def layer_type(self) -> str:
        """Registered variant name; ``config.type`` overrides the layer name."""
        return self.config.get("type") or self.name


@dataclass(frozen=True)
class GlobalRunConfig:
    """Process-wide settings for one run."""
    aws_profile: Optional[str] = None
    aws_region: str = "us-east-1"
    aws_account: Optional[str] = None
    workspace_root: str = "./workspace"
    log_level: str = "info"
    continue_on_error: bool = False
    state_file: str = "deployment-state.json"


# ==========================================
# Outputs and state
# ==========================================

@dataclass
class LayerOutput:
    """
    The key/value contract a layer publishes for its dependents.

    Owned by the producing layer; other layers only read it.
    """
    layer_name: str
    deployed: bool
    outputs: Dict[str, str] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_timestamp)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.outputs.get(key, default)

    def require(self, key: str) -> str:
        """
        Read an output that must be present.

        Raises:
            MissingFieldError: If the key is absent or empty
        """
        value = self.outputs.get(key)
        if value is None or value == "":
            raise MissingFieldError(self.layer_name, key)
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layer_name": self.layer_name,
            "deployed": self.deployed,
            "outputs": dict(self.outputs),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LayerOutput":
        return cls(
            layer_name=data["layer_name"],
            deployed=bool(data.get("deployed", False)),
            outputs={str(k): str(v) for k, v in (data.get("outputs") or {}).items()},
            timestamp=data.get("timestamp") or utc_timestamp(),
        )


@dataclass
class DeploymentState:
    """Most recent LayerOutput per layer, plus document metadata."""
    layers: Dict[str, LayerOutput] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_timestamp)
    version: str = "1.0.0"

    def record(self, output: LayerOutput):
        self.layers[output.layer_name] = output
        self.timestamp = utc_timestamp()

    def get(self, layer_name: str) -> Optional[LayerOutput]:
        return self.layers.get(layer_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "layers": {name: out.to_dict() for name, out in self.layers.items()},
            "timestamp": self.timestamp,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentState":
        layers = {
            name: LayerOutput.from_dict({"layer_name": name, **entry})
            for name, entry in (data.get("layers") or {}).items()
        }
        return cls(
            layers=layers,
            timestamp=data.get("timestamp") or utc_timestamp(),
            version=data.get("version", "1.0.0"),
        )


# ==========================================
# Outcomes
# ==========================================

@dataclass
class VerifyOutcome:
    skip: bool
    reason: str
    existing_output: Optional[LayerOutput] = None


@dataclass
class DeployOutcome:
    success: bool
    duration: float = 0.0
    error: Optional[str] = None
    timed_out: bool = False


@dataclass
class DestroyOutcome:
    success: bool
    duration: float = 0.0
    error: Optional[str] = None
    failures: Dict[str, str] = field(default_factory=dict)


@dataclass
class CommandOutcome:
    """Result of running one external program."""
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration: float = 0.0
    timed_out: bool = False

    @property
    def error_text(self) -> str:
        if self.timed_out:
            return f"timed out after {self.duration:.1f}s"
        return (self.stderr or self.stdout).strip() or f"exit code {self.exit_code}"


@dataclass
class HealthOutcome:
    healthy: bool
    response_time: Optional[float] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


# ==========================================
# Run bookkeeping
# ==========================================

class LayerState(str, Enum):
    PENDING = "Pending"
    VERIFYING = "Verifying"
    SKIPPED = "Skipped"
    DEPLOYING = "Deploying"
    DEPLOYED = "Deployed"
    FAILED = "Failed"
    TIMEOUT = "Timeout"
    OUTPUTS_CAPTURED = "OutputsCaptured"
    DESTROYED = "Destroyed"
    SKIPPED_DISABLED = "SkippedDisabled"
    DEPENDENCY_FAILED = "DependencyFailed"


FAILURE_STATES = frozenset({
    LayerState.FAILED,
    LayerState.TIMEOUT,
    LayerState.DEPENDENCY_FAILED,
})

VERIFIED_STATES = frozenset({
    LayerState.OUTPUTS_CAPTURED,
    LayerState.SKIPPED_DISABLED,
})


@dataclass
class LayerRunRecord:
    """Per-layer bookkeeping for one run."""
    name: str
    state: LayerState = LayerState.PENDING
    history: List[LayerState] = field(default_factory=lambda: [LayerState.PENDING])
    reason: Optional[str] = None
    error: Optional[str] = None
    duration: float = 0.0

    def transition(self, state: LayerState, reason: Optional[str] = None):
        self.state = state
        self.history.append(state)
        if reason is not None:
            self.reason = reason


@dataclass
class RunResult:
    """Summary of a run/verify/destroy invocation."""
    operation: str
    records: Dict[str, LayerRunRecord] = field(default_factory=dict)
    state: Optional[DeploymentState] = None
    aborted: bool = False

    @property
    def success(self) -> bool:
        """
        Overall result.

        deploy/destroy: no layer Failed, DependencyFailed or Timeout.
        verify: every enabled layer was confirmed healthy.
        """
        if self.aborted:
            return False
        if self.operation == "verify":
            return all(r.state in VERIFIED_STATES for r in self.records.values())
        return not any(r.state in FAILURE_STATES for r in self.records.values())

    def failed_records(self) -> List[LayerRunRecord]:
        return [r for r in self.records.values() if r.state in FAILURE_STATES]
