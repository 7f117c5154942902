"""
AWS SDK client initialization.

Clients are created from a boto3 Session bound to the configured
profile and region and returned as a dictionary, so tests can swap
them for moto-backed or mock clients in one place.

Usage:
    from layer_orchestrator.aws.clients import create_aws_clients

    clients = create_aws_clients(profile="dev", region="us-east-1")
    # clients["cloudformation"], clients["ssm"]
"""

from typing import Any, Dict, Optional

import boto3


def create_aws_clients(
    profile: Optional[str] = None,
    region: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create the boto3 clients the orchestrator uses.

    Credentials come from the named profile, or from the default
    credential chain when no profile is given.

    Args:
        profile: AWS named profile (e.g., "near-localnet")
        region: AWS region (e.g., "us-east-1")

    Returns:
        Dictionary mapping service names to boto3 client instances.

    Client Keys:
        - cloudformation: Stack outputs and status
        - ssm: Remote command execution on EC2 instances
    """
    session = boto3.Session(profile_name=profile, region_name=region)

    return {
        "cloudformation": session.client("cloudformation"),
        "ssm": session.client("ssm"),
    }
