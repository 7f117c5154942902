"""Shared constants for the layer orchestrator."""

from pathlib import Path

# ==========================================
# 1. Configuration
# ==========================================
DEFAULT_CONFIG_FILE = Path("config") / "orchestrator.config.json"
DEFAULT_STATE_FILE = "deployment-state.json"
DEFAULT_WORKSPACE_ROOT = "./workspace"
DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_BRANCH = "main"

LOG_LEVELS = ["debug", "info", "warn", "error"]

STATE_VERSION = "1.0.0"

# ==========================================
# 2. Logging
# ==========================================
LOG_OUTPUT_LIMIT = 500
STATUS_OUTPUT_KEYS = 4

# ==========================================
# 3. Timeouts and polling (seconds)
# ==========================================
COMMAND_TIMEOUT = 5 * 60
CDK_TIMEOUT = 30 * 60
SCRIPT_TIMEOUT = 30 * 60
GIT_TIMEOUT = 5 * 60
NPM_INSTALL_TIMEOUT = 10 * 60

HEALTH_CHECK_TIMEOUT = 10
HEALTH_WAIT_ATTEMPTS = 30
HEALTH_WAIT_INTERVAL = 5

STACK_OUTPUT_RETRIES = 3
STACK_OUTPUT_RETRY_DELAY = 2
STACK_WAIT_TIMEOUT = 15 * 60
STACK_WAIT_INTERVAL = 10

SSM_POLL_INTERVAL = 2
SSM_MAX_ATTEMPTS = 30

CDK_OUTPUTS_FILE = "cdk-outputs.json"

# ==========================================
# 4. CloudFormation statuses
# ==========================================
STACK_DELETE_COMPLETE = "DELETE_COMPLETE"
STACK_IN_PROGRESS_SUFFIX = "_IN_PROGRESS"
ACTIVE_STACK_STATUSES = [
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
    "ROLLBACK_COMPLETE",
    "IMPORT_COMPLETE",
]

# ==========================================
# 5. Layer names
# ==========================================
LAYER_NEAR_BASE = "near_base"
LAYER_NEAR_SERVICES = "near_services"
LAYER_CHAIN_SIGNATURES = "chain_signatures"
LAYER_INTENTS_PROTOCOL = "intents_protocol"
LAYER_ETHEREUM_LOCALNET = "ethereum_localnet"
