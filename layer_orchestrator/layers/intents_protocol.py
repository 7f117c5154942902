"""
Intents protocol layer: cross-chain intents simulator configuration.

This layer provisions no cloud resources. It builds the intents
repository and writes ``intents-config.json`` pointing at the chain
signatures layer's signer contract.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

import layer_orchestrator.constants as CONSTANTS
from layer_orchestrator.core.context import LayerContext
from layer_orchestrator.core.contracts import OutputContract
from layer_orchestrator.core.exceptions import RemoteOperationFailed, RemoteOperationTimeout
from layer_orchestrator.core.models import (
    DeployOutcome,
    DestroyOutcome,
    LayerOutput,
    VerifyOutcome,
    utc_timestamp,
)
from layer_orchestrator.layers.toolkit import LayerToolkit

logger = logging.getLogger(__name__)

CONFIG_FILE = "intents-config.json"
BUILD_TIMEOUT = 10 * 60
DEFAULT_MODE = "simulator"
SUPPORTED_ASSETS = (
    "near:native",
    "near:wrap.near",
    "ethereum:native",
    "ethereum:usdc.eth",
    "bitcoin:native",
)


class IntentsProtocolLayer:
    """
    Config keys:
        mode: Simulator mode (default "simulator")
        enable_ethereum, enable_bitcoin: Default on
        enable_dogecoin: Default off
    """

    contract = OutputContract(
        required=("mode", "supported_chains"),
        optional=("supported_assets", "config_path", "chain_signatures_contract_id"),
    )

    def __init__(self, context: LayerContext, toolkit: LayerToolkit):
        self.context = context
        self.toolkit = toolkit

    @property
    def name(self) -> str:
        return self.context.layer_name

    @property
    def mode(self) -> str:
        return self.context.config_value("mode", DEFAULT_MODE)

    def supported_chains(self) -> List[str]:
        config = self.context.spec.config
        chains = ["near"]
        if config.get("enable_ethereum") is not False:
            chains.append("ethereum")
        if config.get("enable_bitcoin") is not False:
            chains.append("bitcoin")
        if config.get("enable_dogecoin") is True:
            chains.append("dogecoin")
        return chains

    def _config_path(self) -> Optional[Path]:
        repo_path = self.toolkit.repository_path()
        return repo_path / CONFIG_FILE if repo_path is not None else None

    def verify(self) -> VerifyOutcome:
        chain = self.toolkit.dependency_output(CONSTANTS.LAYER_CHAIN_SIGNATURES)
        if chain is None:
            return VerifyOutcome(skip=False, reason="Chain signatures outputs not available")

        config_path = self._config_path()
        if config_path is None or not config_path.exists():
            return VerifyOutcome(skip=False, reason=f"{CONFIG_FILE} not generated yet")

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                existing = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            return VerifyOutcome(skip=False, reason=f"Could not read {config_path}: {e}")

        configured_contract = (existing.get("chainSignaturesConfig") or {}).get("mpcContractId")
        expected_contract = chain.get("v1_signer_contract_id")
        if not configured_contract or configured_contract != expected_contract:
            return VerifyOutcome(
                skip=False,
                reason=f"{CONFIG_FILE} references {configured_contract}, expected {expected_contract}",
            )

        logger.info("✓ Intents protocol already configured")
        return VerifyOutcome(
            skip=True,
            reason="Intents configuration matches the current signer contract",
            existing_output=self.toolkit.create_layer_output({
                "mode": existing.get("mode", self.mode),
                "supported_chains": ",".join(existing.get("supportedChains") or self.supported_chains()),
                "supported_assets": ",".join(existing.get("supportedAssets") or SUPPORTED_ASSETS),
                "config_path": str(config_path),
                "chain_signatures_contract_id": configured_contract,
            }),
        )

    def deploy(self) -> DeployOutcome:
        def _deploy():
            chain = self.toolkit.require_dependency(CONSTANTS.LAYER_CHAIN_SIGNATURES)
            repo_path = self.toolkit.ensure_repository()
            self._build(repo_path)
            self.toolkit.write_config_file(repo_path / CONFIG_FILE, self._intents_config(chain))

            script_path = self.context.spec.source.script_path
            if script_path and (repo_path / script_path).exists():
                outcome = self.toolkit.execute_script(repo_path, script_path, env={
                    "NEAR_RPC_URL": chain.get("near_rpc_url", ""),
                    "MPC_CONTRACT_ID": chain.get("v1_signer_contract_id", ""),
                    "INTENTS_MODE": self.mode,
                    "NODE_ENV": "production",
                })
                if not outcome.success:
                    # The setup script is optional tooling around the generated config
                    logger.warning(f"Intents deployment script reported: {outcome.error_text[:500]}")

        return self.toolkit.deploy_step(_deploy)

    def _build(self, repo_path: Path):
        if not (repo_path / "package.json").exists():
            return
        self.context.git.install_node_dependencies(repo_path)
        outcome = self.context.runner.run(
            "npm", ["run", "build"], cwd=repo_path, timeout=BUILD_TIMEOUT
        )
        if outcome.timed_out:
            raise RemoteOperationTimeout("npm run build", BUILD_TIMEOUT, layer=self.name)
        if not outcome.success:
            raise RemoteOperationFailed("npm run build", outcome.error_text[-500:],
                                        exit_code=outcome.exit_code, layer=self.name)

    def _intents_config(self, chain: LayerOutput) -> Dict[str, Any]:
        config = self.context.spec.config
        return {
            "mode": self.mode,
            "chainSignaturesConfig": {
                "rpcUrl": chain.get("near_rpc_url"),
                "mpcContractId": chain.require("v1_signer_contract_id"),
                "mpcNodeCount": chain.get("mpc_node_count"),
            },
            "supportedChains": self.supported_chains(),
            "supportedAssets": list(SUPPORTED_ASSETS),
            "protocols": {
                "ethereum": {"enabled": config.get("enable_ethereum") is not False,
                             "networks": ["mainnet", "sepolia"]},
                "bitcoin": {"enabled": config.get("enable_bitcoin") is not False,
                            "networks": ["mainnet", "testnet"]},
                "dogecoin": {"enabled": config.get("enable_dogecoin") is True,
                             "networks": ["mainnet", "testnet"]},
            },
            "generatedAt": utc_timestamp(),
        }

    def get_outputs(self) -> LayerOutput:
        chain = self.toolkit.dependency_output(CONSTANTS.LAYER_CHAIN_SIGNATURES)
        config_path = self._config_path()
        return self.toolkit.create_layer_output({
            "mode": self.mode,
            "supported_chains": ",".join(self.supported_chains()),
            "supported_assets": ",".join(SUPPORTED_ASSETS),
            "config_path": str(config_path) if config_path and config_path.exists() else None,
            "chain_signatures_contract_id": chain.get("v1_signer_contract_id") if chain else None,
        })

    def destroy(self) -> DestroyOutcome:
        repo_path = self.toolkit.repository_path()
        if repo_path is None:
            return DestroyOutcome(success=True)

        def _remove_dir(path: Path):
            if path.exists():
                shutil.rmtree(path)

        return self.toolkit.run_cleanup_steps([
            (f"remove {CONFIG_FILE}", lambda: self.toolkit.remove_file(repo_path / CONFIG_FILE)),
            ("remove dist/", lambda: _remove_dir(repo_path / "dist")),
            ("remove node_modules/", lambda: _remove_dir(repo_path / "node_modules")),
        ])
