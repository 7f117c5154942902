"""
StackOutputReader against a moto-backed CloudFormation.
"""

import json

import boto3
import pytest
from moto import mock_aws

from layer_orchestrator.aws.clients import create_aws_clients
from layer_orchestrator.aws.stack_reader import StackOutputReader

pytestmark = pytest.mark.integration

TEMPLATE = {
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "Topic": {"Type": "AWS::SNS::Topic", "Properties": {"TopicName": "near-localnet-topic"}},
    },
    "Outputs": {
        "NearLocalnetRpcUrl": {"Value": "http://10.0.0.5:3030"},
        "NearLocalnetNetworkId": {"Value": "localnet"},
    },
}


@pytest.fixture
def cloudformation():
    with mock_aws():
        yield boto3.client("cloudformation", region_name="us-east-1")


@pytest.fixture
def reader(cloudformation):
    return StackOutputReader(cloudformation, retry_delay=0)


class TestStackOutputReaderMoto:
    def test_reads_outputs_of_existing_stack(self, cloudformation, reader):
        cloudformation.create_stack(StackName="near-localnet-sync", TemplateBody=json.dumps(TEMPLATE))

        result = reader.read_stack_outputs("near-localnet-sync")

        assert result.success
        assert result.outputs["NearLocalnetRpcUrl"] == "http://10.0.0.5:3030"
        assert result.outputs["NearLocalnetNetworkId"] == "localnet"

    def test_missing_stack_is_reported_without_retrying(self, reader):
        result = reader.read_stack_outputs("does-not-exist")

        assert not result.success
        assert "does not exist" in result.error

    def test_stack_exists(self, cloudformation, reader):
        cloudformation.create_stack(StackName="near-localnet-faucet-v2", TemplateBody=json.dumps(TEMPLATE))

        assert reader.stack_exists("near-localnet-faucet-v2")
        assert not reader.stack_exists("ethereum-localnet")

    def test_wait_for_existing_complete_stack(self, cloudformation, reader):
        cloudformation.create_stack(StackName="near-localnet-common", TemplateBody=json.dumps(TEMPLATE))

        result = reader.wait_for_status("near-localnet-common", "CREATE_COMPLETE", timeout=30, poll_interval=1)

        assert result.success


def test_client_factory_builds_working_clients():
    with mock_aws():
        clients = create_aws_clients(region="us-east-1")

        assert set(clients) == {"cloudformation", "ssm"}
        assert clients["cloudformation"].list_stacks()["StackSummaries"] == []
