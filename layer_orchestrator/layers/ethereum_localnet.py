"""
Ethereum localnet layer: a single Geth dev node on EC2.
"""

import logging

import layer_orchestrator.constants as CONSTANTS
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

ETHEREUM_STACK = "ethereum-localnet"
ETHEREUM_CDK_ID = "EthereumLocalnetStack"
DEFAULT_CHAIN_ID = "1337"
DEFAULT_INSTANCE_TYPE = "t3.medium"


class EthereumLocalnetLayer:
    """
    Config keys:
        existing_rpc_url: Geth endpoint to probe before deploying
        vpc_id: Fallback VPC when near_base outputs carry none
        instance_type: EC2 instance type (default t3.medium)
    """

    contract = OutputContract(
        required=("eth_rpc_url", "eth_chain_id"),
        optional=("eth_instance_id", "eth_private_ip"),
    )

    def __init__(self, context: LayerContext, toolkit: LayerToolkit):
        self.context = context
        self.toolkit = toolkit

    @property
    def name(self) -> str:
        return self.context.layer_name

    def verify(self) -> VerifyOutcome:
        rpc_url = self.context.config_value("existing_rpc_url")
        if rpc_url:
            health = self.toolkit.run_health_check(rpc_url, kind="http")
            if health.healthy:
                return VerifyOutcome(
                    skip=True,
                    reason=f"Existing Ethereum RPC {rpc_url} is responding",
                    existing_output=self.toolkit.create_layer_output({
                        "eth_rpc_url": rpc_url,
                        "eth_chain_id": self.context.config_value("chain_id", DEFAULT_CHAIN_ID),
                    }),
                )
            logger.warning(f"Existing Ethereum RPC not healthy: {health.error}")

        if self.context.stack_reader.stack_exists(ETHEREUM_STACK):
            output = self.get_outputs()
            if output.get("eth_rpc_url"):
                return VerifyOutcome(
                    skip=True,
                    reason=f"Stack {ETHEREUM_STACK} exists with an RPC output",
                    existing_output=output,
                )

        return VerifyOutcome(skip=False, reason="No existing Ethereum localnet found")

    def deploy(self) -> DeployOutcome:
        def _deploy():
            repo_path = self.toolkit.ensure_repository()

            vpc_id = self.context.config_value("vpc_id")
            near = self.toolkit.dependency_output(CONSTANTS.LAYER_NEAR_BASE)
            if near is not None and near.get("vpc_id"):
                vpc_id = near.get("vpc_id")
                logger.info(f"Using NEAR base VPC: {vpc_id}")
            if not vpc_id:
                logger.warning("No VPC id from near_base or config; the stack will pick its default")

            cdk_context = {
                "instanceType": self.context.config_value("instance_type", DEFAULT_INSTANCE_TYPE),
                "region": self.context.global_config.aws_region,
            }
            if vpc_id:
                cdk_context["vpcId"] = vpc_id
            if self.context.global_config.aws_account:
                cdk_context["accountId"] = self.context.global_config.aws_account

            self.toolkit.deploy_cdk_stacks(repo_path, stacks=[ETHEREUM_CDK_ID], cdk_context=cdk_context)

        return self.toolkit.deploy_step(_deploy)

    def get_outputs(self) -> LayerOutput:
        outputs = self.toolkit.try_read_stack_outputs(ETHEREUM_STACK)
        return self.toolkit.create_layer_output({
            "eth_rpc_url": outputs.get("GethLocalnetRpcUrl"),
            "eth_chain_id": outputs.get("GethLocalnetChainId") or DEFAULT_CHAIN_ID,
            "eth_instance_id": outputs.get("GethLocalnetInstanceId"),
            "eth_private_ip": outputs.get("GethLocalnetPrivateIp"),
        })

    def destroy(self) -> DestroyOutcome:
        return self.toolkit.run_cleanup_steps([
            ("destroy Ethereum stack", lambda: self.toolkit.destroy_cdk_stacks(
                self.toolkit.ensure_repository(), stacks=[ETHEREUM_CDK_ID]
            )),
        ])
