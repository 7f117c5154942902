"""
NEAR base layer: the NEAR localnet RPC node.

Deploys the AWSNodeRunner CDK app (common, infrastructure, install and
sync stacks) and publishes the RPC endpoint plus the instance and VPC
details later layers build on.
"""

import logging
from typing import Dict, Optional
from urllib.parse import urlparse

from layer_orchestrator.core.context import LayerContext
from layer_orchestrator.core.contracts import OutputContract
from layer_orchestrator.core.models import (
    DeployOutcome,
    DestroyOutcome,
    LayerOutput,
    VerifyOutcome,
)
from layer_orchestrator.layers.toolkit import LayerToolkit

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_ID = "localnet"
DEFAULT_INSTANCE_TYPE = "m7a.2xlarge"
DEFAULT_NEAR_VERSION = "2.10.1"
RPC_VERIFY_TIMEOUT = 15


class NearBaseLayer:
    """
    NEAR RPC node on EC2.

    Config keys:
        existing_rpc_url: RPC endpoint to probe before deploying
        network_id: Expected chain id (default "localnet")
        instance_type: Reported as node_type
        near_version: Reported as near_version
    """

    contract = OutputContract(
        required=("rpc_url", "network_id"),
        optional=(
            "instance_id", "private_ip", "rpc_ip", "vpc_id",
            "security_group_id", "node_type", "near_version", "access_status",
        ),
    )

    # CDK construct ids, in deployment order
    CDK_STACKS = ("near-common", "near-infrastructure", "near-install", "near-sync")
    # CloudFormation stack names the outputs are read from
    SYNC_STACK = "near-localnet-sync"
    INFRASTRUCTURE_STACK = "near-localnet-infrastructure"
    COMMON_STACK = "near-localnet-common"

    def __init__(self, context: LayerContext, toolkit: LayerToolkit):
        self.context = context
        self.toolkit = toolkit

    @property
    def name(self) -> str:
        return self.context.layer_name

    @property
    def network_id(self) -> str:
        return self.context.config_value("network_id", DEFAULT_NETWORK_ID)

    def verify(self) -> VerifyOutcome:
        rpc_url = self.context.config_value("existing_rpc_url")
        if not rpc_url and self.context.previous_output is not None:
            rpc_url = self.context.previous_output.get("rpc_url")

        if rpc_url:
            logger.info(f"Checking existing NEAR RPC at {rpc_url}")
            health = self.toolkit.run_health_check(
                rpc_url, kind="rpc",
                expected_network_id=self.network_id,
                timeout=RPC_VERIFY_TIMEOUT,
            )
            if health.healthy:
                logger.info(f"✓ Existing NEAR RPC is operational on {self.network_id}")
                return VerifyOutcome(
                    skip=True,
                    reason="Existing RPC endpoint is operational and on the expected network",
                    existing_output=self._accessible_output(rpc_url),
                )
            logger.warning(f"✗ Existing NEAR RPC not usable: {health.error}")
            return VerifyOutcome(
                skip=False,
                reason=f"NEAR RPC at {rpc_url} failed its health check: {health.error}",
            )

        # No endpoint to probe: RPC is usually VPC-only, so a deployed stack
        # with an endpoint counts as existing
        output = self.get_outputs()
        if output.get("rpc_url"):
            logger.info(f"✓ Existing NEAR deployment found via CloudFormation: {output.get('rpc_url')}")
            output.outputs["access_status"] = "secured"
            return VerifyOutcome(
                skip=True,
                reason="Existing NEAR infrastructure found via CloudFormation outputs",
                existing_output=output,
            )

        return VerifyOutcome(skip=False, reason="No existing NEAR RPC found")

    def _accessible_output(self, rpc_url: str) -> LayerOutput:
        previous = self.context.previous_output
        carried: Dict[str, Optional[str]] = {}
        if previous is not None and previous.get("rpc_url") == rpc_url:
            carried = {key: previous.get(key) for key in self.contract.optional}

        return self.toolkit.create_layer_output({
            **carried,
            "rpc_url": rpc_url,
            "network_id": self.network_id,
            "rpc_ip": urlparse(rpc_url).hostname,
            "access_status": "accessible",
        })

    def deploy(self) -> DeployOutcome:
        def _deploy():
            logger.info("Deploying NEAR base layer (AWSNodeRunner)")
            repo_path = self.toolkit.ensure_repository()
            self.toolkit.deploy_cdk_stacks(repo_path, stacks=self.CDK_STACKS)

        return self.toolkit.deploy_step(_deploy)

    def get_outputs(self) -> LayerOutput:
        reader = self.context.stack_reader
        results = reader.read_multiple_stack_outputs(
            [self.SYNC_STACK, self.INFRASTRUCTURE_STACK, self.COMMON_STACK]
        )
        sync = results[self.SYNC_STACK].outputs
        infra = results[self.INFRASTRUCTURE_STACK].outputs
        common = results[self.COMMON_STACK].outputs

        # CDK output keys are lowercased by some CDK versions
        private_ip = infra.get("NearLocalnetInstancePrivateIp") or infra.get("nearinstanceprivateip")
        return self.toolkit.create_layer_output({
            "rpc_url": sync.get("NearLocalnetRpcUrl") or sync.get("nearrpcurl"),
            "network_id": sync.get("NearLocalnetNetworkId") or sync.get("nearnetworkid") or self.network_id,
            "instance_id": infra.get("NearLocalnetInstanceId") or infra.get("nearinstanceid"),
            "private_ip": private_ip,
            "rpc_ip": private_ip,
            "vpc_id": common.get("VpcId"),
            "security_group_id": common.get("SecurityGroupId"),
            "node_type": self.context.config_value("instance_type", DEFAULT_INSTANCE_TYPE),
            "near_version": self.context.config_value("near_version", DEFAULT_NEAR_VERSION),
        })

    def destroy(self) -> DestroyOutcome:
        # CDK expects construct ids; destroy in reverse deployment order
        steps = [
            (f"destroy stack {stack}",
             lambda stack=stack: self.toolkit.destroy_cdk_stacks(self.toolkit.ensure_repository(), stacks=[stack]))
            for stack in reversed(self.CDK_STACKS)
        ]
        return self.toolkit.run_cleanup_steps(steps)
