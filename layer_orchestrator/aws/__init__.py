"""
AWS collaborators: boto3 clients, CloudFormation reader, SSM poller, CDK wrapper.
"""

from .clients import create_aws_clients
from .stack_reader import StackOutputReader, StackOutputs, WaitResult
from .ssm_poller import SsmCommandPoller, CommandStatus, RemoteCommandResult
from .cdk_manager import CdkManager, CdkResult

__all__ = [
    "create_aws_clients",
    "StackOutputReader",
    "StackOutputs",
    "WaitResult",
    "SsmCommandPoller",
    "CommandStatus",
    "RemoteCommandResult",
    "CdkManager",
    "CdkResult",
]
