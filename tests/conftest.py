import os
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from layer_orchestrator.core.config_loader import parse_config
from layer_orchestrator.core.contracts import OutputContract
from layer_orchestrator.core.models import (
    DeployOutcome,
    DestroyOutcome,
    LayerOutput,
    VerifyOutcome,
)
from layer_orchestrator.orchestrator import Collaborators


@pytest.fixture(scope="function", autouse=True)
def mock_env_vars():
    """Set mock environment variables to prevent accidental cloud calls."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture(autouse=True)
def mock_sleep(monkeypatch):
    """Skip time.sleep calls to speed up tests."""
    monkeypatch.setattr("time.sleep", lambda x: None)


@pytest.fixture
def fake_collaborators():
    """Collaborators made of MagicMocks; fake layers never touch them."""
    return Collaborators(
        runner=MagicMock(),
        stack_reader=MagicMock(),
        health_checker=MagicMock(),
        git=MagicMock(),
        cdk=MagicMock(),
        ssm=MagicMock(),
    )


def make_config(layers: Dict[str, Dict[str, Any]], **global_settings):
    """Build an OrchestratorConfig from a layers mapping (declaration order kept)."""
    document = {"global": {"workspace_root": "./ws", **global_settings}, "layers": layers}
    return parse_config(document, environ={})


class FakeLayer:
    """
    Scriptable layer used to drive the orchestrator.

    Every call is appended to ``calls`` (shared across layers when
    passed in) as ``"<name>.<method>"``.
    """

    def __init__(
        self,
        name: str,
        calls: Optional[List[str]] = None,
        required: tuple = ("endpoint",),
        skip: bool = False,
        deploy_success: bool = True,
        deploy_timed_out: bool = False,
        deploy_raises: Optional[Exception] = None,
        verify_raises: Optional[Exception] = None,
        outputs: Optional[Dict[str, str]] = None,
        destroy_success: bool = True,
        destroy_raises: Optional[Exception] = None,
    ):
        self.name = name
        self.calls = calls if calls is not None else []
        self.contract = OutputContract(required=required)
        self.skip = skip
        self.deploy_success = deploy_success
        self.deploy_timed_out = deploy_timed_out
        self.deploy_raises = deploy_raises
        self.verify_raises = verify_raises
        self.outputs = outputs if outputs is not None else {"endpoint": f"http://{name}:3030"}
        self.destroy_success = destroy_success
        self.destroy_raises = destroy_raises
        self.context = None

    def _output(self) -> LayerOutput:
        return LayerOutput(layer_name=self.name, deployed=True, outputs=dict(self.outputs))

    def verify(self) -> VerifyOutcome:
        self.calls.append(f"{self.name}.verify")
        if self.verify_raises:
            raise self.verify_raises
        if self.skip:
            return VerifyOutcome(skip=True, reason="already healthy", existing_output=self._output())
        return VerifyOutcome(skip=False, reason="not deployed")

    def deploy(self) -> DeployOutcome:
        self.calls.append(f"{self.name}.deploy")
        if self.deploy_raises:
            raise self.deploy_raises
        if not self.deploy_success:
            return DeployOutcome(success=False, error=f"{self.name} exploded",
                                 timed_out=self.deploy_timed_out)
        return DeployOutcome(success=True, duration=1.0)

    def get_outputs(self) -> LayerOutput:
        self.calls.append(f"{self.name}.get_outputs")
        return self._output()

    def destroy(self) -> DestroyOutcome:
        self.calls.append(f"{self.name}.destroy")
        if self.destroy_raises:
            raise self.destroy_raises
        if not self.destroy_success:
            return DestroyOutcome(success=False, error=f"{self.name} would not die")
        return DestroyOutcome(success=True)


def fake_factory(layers: Dict[str, FakeLayer]):
    """Layer factory returning pre-built fakes and remembering their context."""
    def factory(spec, context, toolkit):
        layer = layers[spec.name]
        layer.context = context
        return layer
    return factory
