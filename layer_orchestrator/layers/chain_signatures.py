"""
Chain signatures layer: MPC signing nodes and the v1 signer contract.

Optionally provisions the MPC node fleet through CDK (bootstrapped with
the NEAR node key and genesis, fetched over SSM from inside the VPC),
then runs the repository's deployment script, which deploys and
initializes the signer contract.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import layer_orchestrator.constants as CONSTANTS
from layer_orchestrator.core.context import LayerContext
from layer_orchestrator.core.contracts import OutputContract
from layer_orchestrator.core.exceptions import RemoteOperationFailed
from layer_orchestrator.core.models import (
    DeployOutcome,
    DestroyOutcome,
    LayerOutput,
    VerifyOutcome,
)
from layer_orchestrator.layers.toolkit import LayerToolkit

logger = logging.getLogger(__name__)

DEFAULT_CONTRACT_ID = "v1.signer.localnet"
DEFAULT_NODE_COUNT = 3
DEFAULT_DOCKER_IMAGE = "nearone/mpc-node:3.1.0"
MPC_CDK_ID = "MpcStandaloneStack"
NEAR_GENESIS_PATH = "/home/ubuntu/.near/localnet/node0/genesis.json"
NEAR_P2P_PORT = 24567

# Written by the deployment script; read by get_outputs, removed by destroy
OUTPUT_FILES = (
    "chain-signatures-config.json",
    "mpc-deployment-output.json",
    "deployment-output.json",
    ".env.deployed",
)

FILE_KEY_ALIASES = {
    "mpcContractId": "v1_signer_contract_id",
    "mpcNodeCount": "mpc_node_count",
}


def parse_key_value_lines(text: str) -> Dict[str, str]:
    """
    Parse ``KEY=value`` lines from command output.

    Example:
        >>> parse_key_value_lines("NODE_KEY=ed25519:abc\\nGENESIS_B64=e30=")
        {'NODE_KEY': 'ed25519:abc', 'GENESIS_B64': 'e30='}
    """
    values = {}
    for line in text.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep and key:
            values[key] = value
    return values


def parse_env_file(text: str) -> Dict[str, str]:
    """Parse dotenv-style ``KEY=value`` lines, skipping comments and stripping quotes."""
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if sep and key.strip():
            values[key.strip()] = value.strip().strip("\"'")
    return values


def flatten_json(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flatten nested objects into underscore-joined keys.

    Example:
        >>> flatten_json({"mpc": {"node_count": 3}, "ok": True})
        {'mpc_node_count': 3, 'ok': True}
    """
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(flatten_json(value, name))
        else:
            flat[name] = value
    return flat


class ChainSignaturesLayer:
    """
    MPC network plus signer contract.

    Config keys:
        existing_mpc_nodes: Node URLs probed (concurrently) before deploying
        mpc_contract_id: Signer contract account (default v1.signer.localnet)
        mpc_node_count: Number of MPC nodes (default 3)
        mpc_docker_image, auto_generate_keys, deploy_v1_signer_contract,
        initialize_mpc: Passed to the deployment script
        cleanup_script: Script run first on destroy
    """

    contract = OutputContract(
        required=("v1_signer_contract_id", "mpc_node_count"),
        optional=("near_rpc_url", "chain_signatures_config"),
        optional_prefixes=("mpc_node_",),
    )

    def __init__(self, context: LayerContext, toolkit: LayerToolkit):
        self.context = context
        self.toolkit = toolkit

    @property
    def name(self) -> str:
        return self.context.layer_name

    @property
    def contract_id(self) -> str:
        return self.context.config_value("mpc_contract_id", DEFAULT_CONTRACT_ID)

    def _existing_nodes(self) -> List[str]:
        nodes = self.context.config_value("existing_mpc_nodes") or []
        return [str(node) for node in nodes]

    def _near_rpc_url(self):
        near = self.toolkit.dependency_output(CONSTANTS.LAYER_NEAR_BASE)
        return near.get("rpc_url") if near else None

    def verify(self) -> VerifyOutcome:
        nodes = self._existing_nodes()
        if not nodes:
            return VerifyOutcome(skip=False, reason="No existing MPC nodes configured")

        near_rpc_url = self._near_rpc_url()
        logger.info(f"Checking {len(nodes)} existing MPC node(s)...")
        health = self.context.health_checker.check_many({
            f"mpc_node_{index}": (
                lambda url=url: self.toolkit.run_health_check(
                    url, kind="mpc",
                    near_rpc_url=near_rpc_url,
                    expected_contract_id=self.contract_id,
                )
            )
            for index, url in enumerate(nodes)
        })

        if not health.healthy:
            logger.warning(f"Existing MPC nodes not healthy: {health.error}")
            return VerifyOutcome(skip=False, reason=f"MPC nodes unhealthy: {health.error}")

        logger.info(f"✓ All {len(nodes)} MPC nodes are healthy")
        return VerifyOutcome(
            skip=True,
            reason=f"All {len(nodes)} existing MPC nodes are healthy",
            existing_output=self._output(node_urls=nodes, node_count=len(nodes)),
        )

    def deploy(self) -> DeployOutcome:
        def _deploy():
            near = self.toolkit.require_dependency(CONSTANTS.LAYER_NEAR_BASE)
            services = self.toolkit.dependency_output(CONSTANTS.LAYER_NEAR_SERVICES)
            if services is None:
                logger.warning("NEAR services outputs not available, continuing without faucet")

            repo_path = self.toolkit.ensure_repository()
            source = self.context.spec.source

            if source.cdk_path:
                logger.info("Deploying MPC infrastructure (CDK)...")
                bootstrap = self._fetch_bootstrap_info(near)
                self.toolkit.deploy_cdk_stacks(repo_path, stacks=[MPC_CDK_ID], cdk_context={
                    "accountId": self.context.global_config.aws_account or "",
                    "region": self.context.global_config.aws_region,
                    "vpcId": near.get("vpc_id", ""),
                    "nearRpcUrl": near.require("rpc_url"),
                    "nearNetworkId": near.get("network_id", "localnet"),
                    "nearBootNodes": f"{bootstrap['NODE_KEY']}@{near.require('private_ip')}:{NEAR_P2P_PORT}",
                    "nearGenesis": bootstrap["GENESIS_B64"],
                    "mpcContractId": self.contract_id,
                    "nodeCount": str(self._node_count()),
                })

            if not source.script_path:
                raise RemoteOperationFailed(
                    "Chain signatures deployment", "source.script_path is not set", layer=self.name
                )
            self.toolkit.run_script_checked(
                repo_path, source.script_path, env=self._script_env(near, services)
            )

        return self.toolkit.deploy_step(_deploy)

    def _node_count(self) -> int:
        return int(self.context.config_value("mpc_node_count", DEFAULT_NODE_COUNT))

    def _fetch_bootstrap_info(self, near: LayerOutput) -> Dict[str, str]:
        """Read the NEAR node key and base64 genesis from the base instance."""
        stdout = self.toolkit.run_remote_command(
            near.require("instance_id"),
            [
                "set -eu",
                "NODE_KEY=$(curl -sS http://127.0.0.1:3030/status | jq -r .node_key)",
                f"GENESIS_B64=$(base64 -w 0 {NEAR_GENESIS_PATH})",
                "echo NODE_KEY=$NODE_KEY",
                "echo GENESIS_B64=$GENESIS_B64",
            ],
            operation="Fetch NEAR bootstrap info",
        )
        values = parse_key_value_lines(stdout)
        missing = [key for key in ("NODE_KEY", "GENESIS_B64") if not values.get(key)]
        if missing:
            raise RemoteOperationFailed(
                "Fetch NEAR bootstrap info", f"missing {', '.join(missing)} in output", layer=self.name
            )
        return values

    def _script_env(self, near: LayerOutput, services) -> Dict[str, str]:
        config = self.context.spec.config
        global_config = self.context.global_config

        def flag(key: str) -> str:
            return "false" if config.get(key) is False else "true"

        env = {
            "NEAR_RPC_URL": near.require("rpc_url"),
            "NEAR_NETWORK_ID": near.get("network_id", "localnet"),
            "NEAR_VPC_ID": near.get("vpc_id", ""),
            "MPC_NODE_COUNT": str(self._node_count()),
            "MPC_CONTRACT_ID": self.contract_id,
            "MPC_DOCKER_IMAGE": config.get("mpc_docker_image", DEFAULT_DOCKER_IMAGE),
            "AUTO_GENERATE_KEYS": flag("auto_generate_keys"),
            "DEPLOY_V1_SIGNER_CONTRACT": flag("deploy_v1_signer_contract"),
            "INITIALIZE_MPC": flag("initialize_mpc"),
            "MASTER_ACCOUNT_ID": "localnet",
            "AWS_REGION": global_config.aws_region,
            "NODE_ENV": "production",
        }
        if global_config.aws_profile:
            env["AWS_PROFILE"] = global_config.aws_profile
        if global_config.aws_account:
            env["AWS_ACCOUNT_ID"] = global_config.aws_account
        if services is not None and services.get("faucet_endpoint"):
            env["FAUCET_ENDPOINT"] = services.get("faucet_endpoint")
        return env

    def _output(
        self,
        node_urls: List[str],
        node_count: int,
        observed: Optional[Dict[str, Any]] = None
    ) -> LayerOutput:
        near_rpc_url = self._near_rpc_url()
        outputs: Dict[str, Any] = {
            "v1_signer_contract_id": self.contract_id,
            "mpc_node_count": node_count,
        }
        for index, url in enumerate(node_urls):
            outputs[f"mpc_node_{index}_url"] = url
        # What the deployment wrote down wins over configured values
        outputs.update(observed or {})
        outputs["near_rpc_url"] = near_rpc_url
        outputs["chain_signatures_config"] = {
            "rpcUrl": near_rpc_url,
            "mpcContractId": outputs["v1_signer_contract_id"],
            "mpcNodeCount": str(outputs["mpc_node_count"]),
        }
        return self.toolkit.create_layer_output(outputs)

    def _read_deployment_files(self) -> Dict[str, Any]:
        """
        Collect values the deployment script left in the repository.

        JSON files are flattened; keys this layer publishes (or a known
        alias of one) keep their name, anything else is namespaced as
        ``file_<stem>_<key>``. ``.env.deployed`` entries are merged as-is.
        Missing or unreadable files are skipped.
        """
        repo_path = self.toolkit.repository_path()
        if repo_path is None:
            return {}

        observed: Dict[str, Any] = {}
        for filename in OUTPUT_FILES:
            file_path = repo_path / filename
            if not file_path.is_file():
                continue
            logger.debug(f"Reading output file: {file_path}")
            try:
                text = file_path.read_text(encoding="utf-8")
                if filename.endswith(".json"):
                    data = json.loads(text)
                    if not isinstance(data, dict):
                        raise ValueError("top-level value is not an object")
                    prefix = "file_" + filename[: -len(".json")].replace("-", "_")
                    for key, value in flatten_json(data).items():
                        key = FILE_KEY_ALIASES.get(key, key)
                        observed[key if self.contract.declares(key) else f"{prefix}_{key}"] = value
                else:
                    observed.update(parse_env_file(text))
            except (OSError, ValueError) as e:
                logger.warning(f"✗ Could not read output file {file_path}: {e}")
        return observed

    def get_outputs(self) -> LayerOutput:
        return self._output(
            node_urls=self._existing_nodes(),
            node_count=self._node_count(),
            observed=self._read_deployment_files(),
        )

    def destroy(self) -> DestroyOutcome:
        steps = []
        cleanup_script = self.context.config_value("cleanup_script")
        if cleanup_script:
            steps.append(("run cleanup script", lambda: self.toolkit.run_script_checked(
                self.toolkit.ensure_repository(), cleanup_script
            )))

        repo_path = self.toolkit.repository_path()
        if repo_path is not None:
            for filename in OUTPUT_FILES:
                steps.append((f"remove {filename}",
                              lambda path=repo_path / filename: self.toolkit.remove_file(path)))

        return self.toolkit.run_cleanup_steps(steps)

