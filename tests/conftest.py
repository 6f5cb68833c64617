"""
tests/conftest.py — Shared fixtures.

Sample stack: three functions.
  fn1 — S3 + SNS permissions, DynamoDB stream binding
  fn2 — nothing attached
  fn3 — SNS permission
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from tern.core.entities import (
    EventSourceMapping,
    FunctionDescriptor,
    S3Permission,
    SNSPermission,
)

LAMBDA_EXECUTE_ARN = "LambdaExecutor"
S3_BUCKET_SOURCE_ARN = "arn:aws:s3:::sampleBucket"
SNS_TOPIC_SOURCE_ARN = "arn:aws:sns:us-west-2:000000000000:someTopic"
DYNAMODB_TABLE_ARN = "arn:aws:dynamodb:us-west-2:000000000000:table/sampleTable"


def mock_lambda1(event, context):
    return "mockLambda1!"


def mock_lambda2(event, context):
    return "mockLambda2!"


def mock_lambda3(event, context):
    return "mockLambda3!"


def lambda_data() -> list[FunctionDescriptor]:
    fn1 = FunctionDescriptor("fn1", mock_lambda1, LAMBDA_EXECUTE_ARN)
    fn1.permissions.append(S3Permission(
        source_arn=S3_BUCKET_SOURCE_ARN,
        events=["s3:ObjectCreated:*", "s3:ObjectRemoved:*"],
    ))
    fn1.permissions.append(SNSPermission(source_arn=SNS_TOPIC_SOURCE_ARN))
    fn1.event_sources.append(EventSourceMapping(
        starting_position="TRIM_HORIZON",
        event_source_arn=DYNAMODB_TABLE_ARN,
        batch_size=10,
    ))

    fn2 = FunctionDescriptor("fn2", mock_lambda2, LAMBDA_EXECUTE_ARN)

    fn3 = FunctionDescriptor("fn3", mock_lambda3, LAMBDA_EXECUTE_ARN)
    fn3.permissions.append(SNSPermission(source_arn=SNS_TOPIC_SOURCE_ARN))

    return [fn1, fn2, fn3]


@pytest.fixture
def descriptors():
    return lambda_data()
