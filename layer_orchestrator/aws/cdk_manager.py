"""
AWS CDK CLI wrapper.

Runs ``npx cdk deploy`` / ``npx cdk destroy`` inside a layer's CDK app
directory, passed explicitly as the working directory of the child
process.

Usage:
    from layer_orchestrator.aws.cdk_manager import CdkManager

    cdk = CdkManager(runner, profile="dev", region="us-east-1")
    result = cdk.deploy("/work/near-localnet/cdk", stacks=["near-common"])
    if result.success:
        print(result.outputs)
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import layer_orchestrator.constants as CONSTANTS
from layer_orchestrator.command_runner import CommandRunner

logger = logging.getLogger(__name__)


@dataclass
class CdkResult:
    """
    Outcome of a cdk deploy or destroy.

    Attributes:
        success: True if the cdk process exited zero
        stacks: Stacks that were deployed/destroyed (["all"] if none were named)
        outputs: Parsed cdk-outputs.json (deploy only, when present)
        error: Captured diagnostic text on failure
        duration: Wall-clock seconds
        timed_out: True if the hard timeout killed cdk
    """
    success: bool
    stacks: List[str] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    duration: float = 0.0
    timed_out: bool = False


class CdkManager:
    """
    Deploys and destroys CDK stacks for one AWS profile/region.

    Args:
        runner: CommandRunner used to spawn npx
        profile: AWS named profile passed as --profile
        region: AWS region passed as --region
        default_timeout: Hard timeout per cdk invocation (seconds)
    """

    def __init__(
        self,
        runner: CommandRunner,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        default_timeout: float = CONSTANTS.CDK_TIMEOUT
    ):
        self.runner = runner
        self.profile = profile
        self.region = region
        self.default_timeout = default_timeout

    def _base_args(self, command: str) -> List[str]:
        args = ["cdk", command]
        if self.profile:
            args += ["--profile", self.profile]
        if self.region:
            args += ["--region", self.region]
        return args

    def deploy(
        self,
        cdk_path: str | Path,
        stacks: Sequence[str] = (),
        context: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
        require_approval: str = "never"
    ) -> CdkResult:
        """
        Deploy CDK stacks.

        Args:
            cdk_path: Directory containing the CDK app (cdk.json)
            stacks: Stack ids to deploy; empty deploys every stack in the app
            context: Values passed as ``--context key=value``
            timeout: Hard timeout in seconds (default 30 minutes)
            require_approval: Value for --require-approval

        Returns:
            CdkResult with outputs read from cdk-outputs.json when present
        """
        cdk_path = Path(cdk_path)
        args = self._base_args("deploy") + list(stacks)
        for key, value in (context or {}).items():
            args += ["--context", f"{key}={value}"]
        args += ["--require-approval", require_approval]
        args += ["--outputs-file", CONSTANTS.CDK_OUTPUTS_FILE]

        logger.info(f"CDK deploy in {cdk_path}: {', '.join(stacks) or 'all stacks'}")
        outcome = self.runner.run(
            "npx", args,
            cwd=cdk_path,
            timeout=timeout or self.default_timeout,
            stream_output=True,
        )

        if not outcome.success:
            return CdkResult(
                success=False,
                error=outcome.error_text,
                duration=outcome.duration,
                timed_out=outcome.timed_out,
            )

        logger.info(f"✓ CDK deploy finished in {outcome.duration:.0f}s")
        return CdkResult(
            success=True,
            stacks=list(stacks) or ["all"],
            outputs=self._read_outputs_file(cdk_path),
            duration=outcome.duration,
        )

    def destroy(
        self,
        cdk_path: str | Path,
        stacks: Sequence[str] = (),
        force: bool = True,
        timeout: Optional[float] = None
    ) -> CdkResult:
        """
        Destroy CDK stacks.

        Destroy can take as long as deploy (ENI and VPC teardown), so the
        same default timeout applies.
        """
        cdk_path = Path(cdk_path)
        args = self._base_args("destroy") + list(stacks)
        if force:
            args.append("--force")

        logger.info(f"CDK destroy in {cdk_path}: {', '.join(stacks) or 'all stacks'}")
        outcome = self.runner.run(
            "npx", args,
            cwd=cdk_path,
            timeout=timeout or self.default_timeout,
            stream_output=True,
        )

        if not outcome.success:
            return CdkResult(
                success=False,
                error=outcome.error_text,
                duration=outcome.duration,
                timed_out=outcome.timed_out,
            )

        logger.info(f"✓ CDK destroy finished in {outcome.duration:.0f}s")
        return CdkResult(success=True, stacks=list(stacks) or ["all"], duration=outcome.duration)

    @staticmethod
    def _read_outputs_file(cdk_path: Path) -> Dict[str, Any]:
        outputs_path = cdk_path / CONSTANTS.CDK_OUTPUTS_FILE
        if not outputs_path.exists():
            return {}
        try:
            with open(outputs_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read CDK outputs file {outputs_path}: {e}")
            return {}
