"""
AWS Secrets Manager utilities.
Loads test-user rosters, mailbox OAuth credentials and Salesforce OAuth
credentials. When AWS_SECRETS_ROLE_ARN is set the client is built from an
assumed role.
"""
import json
import os
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from harness_errors import MailboxAuthError, SecretsError
from logging_utils import log_safe


ROLE_SESSION_NAME = 'playwright-test-session'

_client_lock = threading.Lock()
_secrets_client = None


@dataclass(frozen=True)
class MailboxSecrets:
    client_id: str
    client_secret: str
    refresh_token: str


def _region() -> str:
    return os.environ.get('AWS_REGION', 'ap-southeast-2')


def get_secrets_client(role_arn: Optional[str] = None, region: Optional[str] = None):
    """
    Get the process-wide Secrets Manager client.

    Safe to call from many worker threads; the role is assumed once.

    Args:
        role_arn: Role to assume (defaults to AWS_SECRETS_ROLE_ARN)
        region: AWS region (defaults to AWS_REGION)

    Returns:
        boto3 Secrets Manager client
    """
    global _secrets_client
    with _client_lock:
        if _secrets_client is not None:
            return _secrets_client

        role_arn = role_arn or os.environ.get('AWS_SECRETS_ROLE_ARN')
        region = region or _region()

        if not role_arn:
            _secrets_client = boto3.client('secretsmanager', region_name=region)
            return _secrets_client

        try:
            sts = boto3.client('sts', region_name=region)
            assumed = sts.assume_role(RoleArn=role_arn, RoleSessionName=ROLE_SESSION_NAME)
        except (ClientError, BotoCoreError) as e:
            raise SecretsError(f"Failed to assume secrets role {role_arn}: {e}") from e

        credentials = assumed.get('Credentials')
        if not credentials:
            raise SecretsError('No credentials in assumed role response')

        _secrets_client = boto3.client(
            'secretsmanager',
            region_name=region,
            aws_access_key_id=credentials['AccessKeyId'],
            aws_secret_access_key=credentials['SecretAccessKey'],
            aws_session_token=credentials['SessionToken'],
        )
        print(f"[Secrets] Assumed role {role_arn} for Secrets Manager access")
        return _secrets_client


def reset_secrets_client() -> None:
    """Drop the cached client and secret values."""
    global _secrets_client
    with _client_lock:
        _secrets_client = None
    get_secret_json.cache_clear()


@lru_cache(maxsize=32)
def get_secret_json(secret_id: str) -> Dict[str, Any]:
    """
    Get a JSON secret with caching.

    Args:
        secret_id: Secret name (e.g., 'playwright/test-user-credentials')

    Returns:
        Parsed secret payload

    Raises:
        SecretsError: The secret could not be fetched or is not a JSON object
    """
    try:
        response = get_secrets_client().get_secret_value(SecretId=secret_id)
    except (ClientError, BotoCoreError) as e:
        raise SecretsError(f"Failed to fetch secret {secret_id}: {e}") from e

    try:
        payload = json.loads(response.get('SecretString') or '{}')
    except json.JSONDecodeError as e:
        raise SecretsError(f"Secret {secret_id} is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise SecretsError(f"Secret {secret_id} must be a JSON object")

    print(f"[Secrets] Fetched {secret_id} from AWS Secrets Manager")
    return payload


def fetch_roster(environment: str, profile: str, secret_id: Optional[str] = None) -> List[Any]:
    """
    Get the raw roster entries for an (environment, profile) pair.

    The secret is shaped {env: {profile: [ {username, password}, ... ]}}.
    Returns an empty list when either key is missing; shape normalization
    happens in the credential pool.
    """
    secret_id = secret_id or os.environ.get('USER_CREDENTIALS_SECRET_ID', 'playwright/test-user-credentials')
    secret = get_secret_json(secret_id)

    env_section = secret.get(environment) or {}
    if not isinstance(env_section, dict):
        return []

    entries = env_section.get(profile)
    if entries is None:
        normalized = profile.replace(' ', '').lower()
        for key, value in env_section.items():
            if key.replace(' ', '').lower() == normalized:
                entries = value
                break

    if entries is None:
        return []
    return entries if isinstance(entries, list) else [entries]


def fetch_mailbox_secrets(secret_id: Optional[str] = None) -> MailboxSecrets:
    """
    Get the Gmail OAuth client and refresh token for the shared inbox.

    Raises:
        SecretsError: The secret could not be fetched
        MailboxAuthError: The secret is missing a required field
    """
    secret_id = secret_id or os.environ.get('GMAIL_SECRET_ID', 'playwright/gmail-otp-creds')
    secret = get_secret_json(secret_id)

    client_id = secret.get('gmailClientId')
    client_secret = secret.get('gmailClientSecret')
    refresh_token = secret.get('gmailRefreshToken')

    if not client_id or not client_secret or not refresh_token:
        log_safe(f"[Secrets] {secret_id} is incomplete", secret)

    if not client_id or not client_secret:
        raise MailboxAuthError(f"Gmail clientId/clientSecret missing from {secret_id}")
    if not refresh_token:
        raise MailboxAuthError(f"Gmail refresh token missing from {secret_id}, regenerate it")

    return MailboxSecrets(client_id, client_secret, refresh_token)


def fetch_salesforce_oauth_creds(secret_id: Optional[str] = None) -> Dict[str, str]:
    """
    Get the connected-app credentials used by the REST API client.

    Returns:
        Dict with client_id, client_secret and org_url
    """
    secret_id = secret_id or os.environ.get('SALESFORCE_OAUTH_SECRET_ID', 'playwright/salesforce-oauth')
    secret = get_secret_json(secret_id)

    if not secret.get('salesforceClientId') or not secret.get('salesforceClientSecret'):
        log_safe(f"[Secrets] {secret_id} is incomplete", secret)
        raise SecretsError(f"Salesforce client credentials missing from {secret_id}")

    return {
        'client_id': secret['salesforceClientId'],
        'client_secret': secret['salesforceClientSecret'],
        'org_url': secret.get('salesforceOrgUrl') or 'https://login.salesforce.com',
    }
