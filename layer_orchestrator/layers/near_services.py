"""
NEAR services layer: the localnet faucet and core contracts.

The faucet is a CDK stack (Lambda inside the base layer's VPC). Core
contracts are deployed from inside the VPC by an SSM command on the
base layer's NEAR instance, since the RPC is not reachable from here.
"""

import logging
from pathlib import Path

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

FAUCET_STACK = "near-localnet-faucet-v2"
FAUCET_CDK_ID = "NearFaucetStack"
LOCAL_CONFIG_FILE = "config.local.json"

# The contract deployment can take several minutes on a fresh node
CONTRACTS_POLL_INTERVAL = 10
CONTRACTS_MAX_ATTEMPTS = 60

CORE_CONTRACTS_SCRIPT = [
    "set -e",
    'NEAR_CLI_VERSION="v0.23.2"',
    'if [ ! -f /usr/local/bin/near ]; then '
    'cd /tmp && curl -sL -o near-cli-rs.tar.gz '
    '"https://github.com/near/near-cli-rs/releases/download/$NEAR_CLI_VERSION/near-cli-rs-x86_64-unknown-linux-gnu.tar.gz" '
    '&& tar -xzf near-cli-rs.tar.gz && sudo mv near /usr/local/bin/near && rm -f near-cli-rs.tar.gz; fi',
    "near --version",
    'TOKEN=$(curl -sS -X PUT "http://169.254.169.254/latest/api/token" '
    '-H "X-aws-ec2-metadata-token-ttl-seconds: 21600" || true)',
    'AWS_REGION=$(curl -sS -H "X-aws-ec2-metadata-token: $TOKEN" '
    'http://169.254.169.254/latest/meta-data/placement/region)',
    'LOCALNET_KEY=$(aws ssm get-parameter --name "/near-localnet/localnet-account-key" '
    '--with-decryption --query "Parameter.Value" --output text --region "$AWS_REGION")',
    'test -n "$LOCALNET_KEY" || { echo "localnet account key missing" >&2; exit 1; }',
    'CONTRACTS_DIR=/tmp/core-contracts',
    'if [ ! -d "$CONTRACTS_DIR" ]; then '
    'git clone --depth 1 https://github.com/near/core-contracts.git "$CONTRACTS_DIR"; '
    'else cd "$CONTRACTS_DIR" && git pull || true; fi',
    "near config add-connection --network-name localnet --connection-name localnet-deploy "
    "--rpc-url http://127.0.0.1:3030/ --wallet-url http://127.0.0.1:3030/ "
    "--explorer-transaction-url http://127.0.0.1:3030/ || true",
    'echo "$LOCALNET_KEY" | near account import-account using-private-key '
    'network-config localnet-deploy sign-as localnet || true',
    'for CONTRACT in w-near whitelist staking-pool-factory; do '
    'WASM="$CONTRACTS_DIR/$CONTRACT/res/$(echo $CONTRACT | tr - _).wasm"; '
    'ACCOUNT="$CONTRACT.localnet"; '
    'near account view-account-summary "$ACCOUNT" network-config localnet-deploy now >/dev/null 2>&1 || '
    'near account create-account fund-myself "$ACCOUNT" "10 NEAR" autogenerate-new-keypair '
    'save-to-legacy-keychain sign-as localnet network-config localnet-deploy sign-with-legacy-keychain send; '
    'near contract deploy "$ACCOUNT" use-file "$WASM" without-init-call '
    'network-config localnet-deploy sign-with-legacy-keychain send; done',
    'echo "core contracts deployed"',
]


class NearServicesLayer:
    """
    Faucet stack plus core contracts on the NEAR localnet.

    Config keys:
        existing_faucet_endpoint: Faucet URL to probe before deploying
        deploy_core_contracts: Set to false to skip the SSM contract step
        default_amount, max_amount: Faucet limits written to config.local.json
    """

    contract = OutputContract(
        required=("faucet_endpoint",),
        optional=("faucet_lambda_arn", "near_rpc_url"),
    )

    def __init__(self, context: LayerContext, toolkit: LayerToolkit):
        self.context = context
        self.toolkit = toolkit

    @property
    def name(self) -> str:
        return self.context.layer_name

    def verify(self) -> VerifyOutcome:
        endpoint = self.context.config_value("existing_faucet_endpoint")
        if endpoint:
            health = self.toolkit.run_health_check(endpoint, kind="http")
            if health.healthy:
                return VerifyOutcome(
                    skip=True,
                    reason=f"Existing faucet endpoint {endpoint} is responding",
                    existing_output=self._output(endpoint=endpoint),
                )
            logger.warning(f"Existing faucet endpoint not healthy: {health.error}")

        if self.context.stack_reader.stack_exists(FAUCET_STACK):
            output = self.get_outputs()
            if output.get("faucet_endpoint"):
                return VerifyOutcome(
                    skip=True,
                    reason=f"Faucet stack {FAUCET_STACK} exists with an endpoint",
                    existing_output=output,
                )
            logger.warning("Faucet stack exists but has no endpoint output; will deploy")

        return VerifyOutcome(skip=False, reason="No existing faucet found")

    def deploy(self) -> DeployOutcome:
        def _deploy():
            near = self.toolkit.require_dependency(CONSTANTS.LAYER_NEAR_BASE)
            rpc_url = near.require("rpc_url")
            repo_path = self.toolkit.ensure_repository()
            self._write_local_config(repo_path, near)

            cdk_context = {
                "nearNodeUrl": rpc_url,
                "nearNetworkId": near.require("network_id"),
                "ssmLocalnetAccountIdParam": "/near-localnet/localnet-account-id",
                "ssmLocalnetAccountKeyParam": "/near-localnet/localnet-account-key",
                "vpcId": near.get("vpc_id", ""),
            }
            if near.get("security_group_id"):
                cdk_context["securityGroupId"] = near.get("security_group_id")

            self.toolkit.deploy_cdk_stacks(repo_path, stacks=[FAUCET_CDK_ID], cdk_context=cdk_context)

            if self.context.config_value("deploy_core_contracts", True):
                self._deploy_core_contracts(near)

        return self.toolkit.deploy_step(_deploy)

    def _write_local_config(self, repo_path: Path, near: LayerOutput) -> Path:
        config_path = self.toolkit.cdk_path(repo_path) / LOCAL_CONFIG_FILE
        return self.toolkit.write_config_file(config_path, {
            "near": {
                "rpcUrl": near.get("rpc_url"),
                "networkId": near.get("network_id"),
                "vpcId": near.get("vpc_id"),
            },
            "faucet": {
                "defaultAmount": str(self.context.config_value("default_amount", "10")),
                "maxAmount": str(self.context.config_value("max_amount", "100")),
            },
        })

    def _deploy_core_contracts(self, near: LayerOutput):
        instance_id = near.require("instance_id")

        logger.info(f"Deploying core contracts via SSM on {instance_id}...")
        stdout = self.toolkit.run_remote_command(
            instance_id,
            CORE_CONTRACTS_SCRIPT,
            operation="Deploy core contracts",
            poll_interval=CONTRACTS_POLL_INTERVAL,
            max_attempts=CONTRACTS_MAX_ATTEMPTS,
        )
        logger.info("✓ Core contracts deployed")
        logger.debug(stdout[-500:])

    def _output(self, endpoint=None, lambda_arn=None) -> LayerOutput:
        near = self.toolkit.dependency_output(CONSTANTS.LAYER_NEAR_BASE)
        return self.toolkit.create_layer_output({
            "faucet_endpoint": endpoint,
            "faucet_lambda_arn": lambda_arn,
            "near_rpc_url": near.get("rpc_url") if near else None,
        })

    def get_outputs(self) -> LayerOutput:
        outputs = self.toolkit.try_read_stack_outputs(FAUCET_STACK)
        if not outputs:
            logger.warning(f"Could not read outputs of {FAUCET_STACK}")
        return self._output(
            endpoint=outputs.get("FaucetEndpoint"),
            lambda_arn=outputs.get("FaucetLambdaArn"),
        )

    def destroy(self) -> DestroyOutcome:
        def _destroy_faucet():
            self.toolkit.destroy_cdk_stacks(self.toolkit.ensure_repository(), stacks=[FAUCET_CDK_ID])

        def _remove_local_config():
            repo_path = self.toolkit.repository_path()
            if repo_path is not None:
                self.toolkit.remove_file(self.toolkit.cdk_path(repo_path) / LOCAL_CONFIG_FILE)

        return self.toolkit.run_cleanup_steps([
            ("destroy faucet stack", _destroy_faucet),
            ("remove generated config", _remove_local_config),
        ])
