"""
Pytest configuration and fixtures for all tests.

This file contains fixtures that are automatically available to all test files.
"""

import os
import typing

import boto3
import pytest
from moto import mock_aws

from test_utils.tables import TABLE_NAMES, create_all_tables

REGION = "us-west-1"


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """
    Sets up environment variables required for all tests.

    This fixture runs once per test session and automatically applies to all tests
    (autouse=True). It sets environment variables that the application expects to be
    present at runtime.
    """
    # AWS Configuration
    os.environ["AWS_REGION"] = REGION

    # DynamoDB Table Names
    os.environ["CATALOG_MODULES_TABLE_NAME"] = TABLE_NAMES["modules"]
    os.environ["CATALOG_CONTENT_TABLE_NAME"] = TABLE_NAMES["content"]
    os.environ["USER_PROGRESS_TABLE_NAME"] = TABLE_NAMES["progress"]
    os.environ["ENROLLMENTS_TABLE_NAME"] = TABLE_NAMES["enrollments"]
    os.environ["USER_ACHIEVEMENTS_TABLE_NAME"] = TABLE_NAMES["achievements"]
    os.environ["USERS_TABLE_NAME"] = TABLE_NAMES["users"]

    # Reward policy knobs
    os.environ["XP_PER_LEVEL"] = "500"
    os.environ["VIDEO_COMPLETION_THRESHOLD"] = "90"
    os.environ["METRICS_NAMESPACE"] = "LearningProgress/Test"

    yield


@pytest.fixture(scope="function")
def aws_credentials() -> typing.Iterator[None]:
    """
    Mocks AWS credentials for moto (AWS mocking library).

    - AWS_REGION: Used by application code via get_aws_region()
    - These credentials: Used by moto for AWS service mocking
    """
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = REGION
    yield
    # Clean up after each test
    del os.environ["AWS_ACCESS_KEY_ID"]
    del os.environ["AWS_SECRET_ACCESS_KEY"]
    del os.environ["AWS_SECURITY_TOKEN"]
    del os.environ["AWS_SESSION_TOKEN"]
    del os.environ["AWS_DEFAULT_REGION"]


@pytest.fixture
def dynamodb_tables(aws_credentials) -> typing.Iterator[typing.Any]:
    """
    Every table the engine uses, created inside one moto context.
    """
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name=REGION)
        create_all_tables(dynamodb)
        yield dynamodb
