"""
Central pytest configuration and fixtures for the Salesforce test-identity harness tests.

This module provides reusable fixtures for:
- AWS service mocking (DynamoDB claim ledger, Secrets Manager)
- Gmail and Salesforce REST API mocking
- Environment variable setup
- Deterministic clocks and execution logs
"""
import json
import os
import sys
from pathlib import Path

import pytest

# Add harness directory and tests directory to path for imports
harness_dir = Path(__file__).parent.parent / 'harness'
sys.path.insert(0, str(harness_dir))
sys.path.insert(0, str(Path(__file__).parent))

# AWS mocking
from moto import mock_aws
import boto3
import responses

from fixtures.harness_fakes import (
    FakeClock,
    InMemoryClaimLedger,
    REGION,
    USER_ROSTER,
    GMAIL_SECRET,
    SALESFORCE_SECRET
)


# ==============================================================================
# Environment Setup
# ==============================================================================

@pytest.fixture(scope='session', autouse=True)
def set_test_environment():
    """Set up test environment variables for all tests."""
    os.environ['AWS_DEFAULT_REGION'] = REGION
    os.environ['AWS_REGION'] = REGION
    os.environ['AWS_ACCESS_KEY_ID'] = 'testing'
    os.environ['AWS_SECRET_ACCESS_KEY'] = 'testing'
    os.environ['AWS_SECURITY_TOKEN'] = 'testing'
    os.environ['AWS_SESSION_TOKEN'] = 'testing'
    os.environ.pop('AWS_SECRETS_ROLE_ARN', None)

    # Harness configuration
    os.environ['USER_CREDENTIALS_SECRET_ID'] = 'playwright/test-user-credentials'
    os.environ['GMAIL_SECRET_ID'] = 'playwright/gmail-otp-creds'
    os.environ['SALESFORCE_OAUTH_SECRET_ID'] = 'playwright/salesforce-oauth'
    os.environ['OTP_DDB_TABLE'] = 'OTPClaims'

    yield


@pytest.fixture(autouse=True)
def reset_secrets_cache():
    """The Secrets Manager client and secret values are process-wide; start each test clean."""
    from secrets_utils import reset_secrets_client
    reset_secrets_client()
    yield
    reset_secrets_client()


# ==============================================================================
# AWS Fixtures
# ==============================================================================

@pytest.fixture
def aws_credentials():
    """Mock AWS credentials for moto."""
    os.environ['AWS_ACCESS_KEY_ID'] = 'testing'
    os.environ['AWS_SECRET_ACCESS_KEY'] = 'testing'
    os.environ['AWS_SECURITY_TOKEN'] = 'testing'
    os.environ['AWS_SESSION_TOKEN'] = 'testing'


@pytest.fixture
def mock_claims_table(aws_credentials):
    """Create the OTPClaims table keyed by MessageId."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name=REGION)
        table = dynamodb.create_table(
            TableName='OTPClaims',
            KeySchema=[
                {'AttributeName': 'MessageId', 'KeyType': 'HASH'}
            ],
            AttributeDefinitions=[
                {'AttributeName': 'MessageId', 'AttributeType': 'S'}
            ],
            BillingMode='PAY_PER_REQUEST'
        )
        yield table


@pytest.fixture
def mock_secrets(aws_credentials):
    """Mock Secrets Manager with the roster, Gmail and Salesforce secrets."""
    with mock_aws():
        client = boto3.client('secretsmanager', region_name=REGION)
        client.create_secret(Name='playwright/test-user-credentials', SecretString=json.dumps(USER_ROSTER))
        client.create_secret(Name='playwright/gmail-otp-creds', SecretString=json.dumps(GMAIL_SECRET))
        client.create_secret(Name='playwright/salesforce-oauth', SecretString=json.dumps(SALESFORCE_SECRET))
        yield client


# ==============================================================================
# HTTP API Fixtures
# ==============================================================================

@pytest.fixture
def mock_http():
    """Mock Gmail and Salesforce REST APIs with responses library."""
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


# ==============================================================================
# Clock / Ledger / Log Fixtures
# ==============================================================================

@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def claim_ledger():
    return InMemoryClaimLedger()


@pytest.fixture
def quiet_log():
    """Private execution log so tests do not share the process-wide timeline."""
    from execution_log import ExecutionLog
    return ExecutionLog(echo=False)
