"""
Harness configuration.
Values come from environment variables, optionally seeded from a .env file.
"""
import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from harness_errors import ConfigError


BASE_URLS: Dict[str, Dict[str, str]] = {
    'dev': {
        'ui': 'https://orgfarm-4a2ccda1cd-dev-ed.develop.lightning.force.com',
        'api': 'https://orgfarm-4a2ccda1cd-dev-ed.develop.lightning.force.com/services/data/v60.0',
    },
    'sit': {
        'ui': 'https://sit-orgfarm-4a2ccda1cd-dev-ed.develop.lightning.force.com',
        'api': 'https://sit-orgfarm-4a2ccda1cd-dev-ed.develop.lightning.force.com/services/data/v60.0',
    },
    'uat': {
        'ui': 'https://uat-orgfarm-4a2ccda1cd-dev-ed.develop.lightning.force.com',
        'api': 'https://uat-orgfarm-4a2ccda1cd-dev-ed.develop.lightning.force.com/services/data/v60.0',
    },
}

DEFAULT_OTP_QUERY = 'from:noreply@salesforce.com subject:"Verify your identity"'


def load_env_file(filepath: str = '.env', environ: Optional[dict] = None) -> Dict[str, str]:
    """
    Read KEY=VALUE lines from a .env file into the environment.

    Variables already present in the environment are left alone.

    Args:
        filepath: Path to the .env file
        environ: Mapping to update (defaults to os.environ)

    Returns:
        Dict of every variable parsed from the file
    """
    environ = os.environ if environ is None else environ
    env_vars = {}
    if os.path.exists(filepath):
        with open(filepath) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    value = value.strip().strip('"').strip("'")
                    env_vars[key.strip()] = value

    for key, value in env_vars.items():
        environ.setdefault(key, value)
    return env_vars


def _millis(environ: Mapping[str, str], name: str, default_ms: int) -> float:
    """Read a millisecond env var and return seconds."""
    raw = environ.get(name)
    if raw is None or raw == '':
        return default_ms / 1000.0
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer number of milliseconds, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{name} must not be negative, got {value}")
    return value / 1000.0


def _int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class HarnessConfig:
    """Resolved settings for one test run. Durations are in seconds."""

    environment: str = 'dev'
    aws_region: str = 'ap-southeast-2'
    secrets_role_arn: Optional[str] = None
    user_credentials_secret_id: str = 'playwright/test-user-credentials'
    gmail_secret_id: str = 'playwright/gmail-otp-creds'
    salesforce_oauth_secret_id: str = 'playwright/salesforce-oauth'
    otp_table: str = 'OTPClaims'
    otp_timeout: float = 120.0
    otp_poll_interval: float = 1.5
    otp_search_query: str = DEFAULT_OTP_QUERY
    lock_timeout: float = 180.0
    lock_poll_interval: float = 0.5
    stale_lock_after: float = 600.0
    stagger_delay: float = 15.0
    stagger_slots: int = 3
    session_validation_timeout: float = 5.0
    authenticated_timeout: float = 30.0
    auth_dir: str = '.auth'
    headless: bool = False

    @property
    def base_url(self) -> str:
        return BASE_URLS.get(self.environment.lower(), BASE_URLS['dev'])['ui']

    @property
    def api_base_url(self) -> str:
        return BASE_URLS.get(self.environment.lower(), BASE_URLS['dev'])['api']

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'HarnessConfig':
        """
        Build the configuration from environment variables.

        Raises:
            ConfigError: A numeric variable could not be parsed
        """
        env = os.environ if environ is None else environ

        stagger_slots = _int(env, 'STAGGER_SLOTS', 3)
        if stagger_slots < 1:
            raise ConfigError(f"STAGGER_SLOTS must be at least 1, got {stagger_slots}")

        return cls(
            environment=env.get('TEST_ENVIRONMENT_VALUE', 'dev'),
            aws_region=env.get('AWS_REGION', 'ap-southeast-2'),
            secrets_role_arn=env.get('AWS_SECRETS_ROLE_ARN') or None,
            user_credentials_secret_id=env.get('USER_CREDENTIALS_SECRET_ID', 'playwright/test-user-credentials'),
            gmail_secret_id=env.get('GMAIL_SECRET_ID', 'playwright/gmail-otp-creds'),
            salesforce_oauth_secret_id=env.get('SALESFORCE_OAUTH_SECRET_ID', 'playwright/salesforce-oauth'),
            otp_table=env.get('OTP_DDB_TABLE', 'OTPClaims'),
            otp_timeout=_millis(env, 'OTP_FETCH_TIMEOUT_MS', 120_000),
            otp_poll_interval=_millis(env, 'OTP_POLL_INTERVAL_MS', 1_500),
            otp_search_query=env.get('OTP_SEARCH_QUERY', DEFAULT_OTP_QUERY),
            lock_timeout=_millis(env, 'USER_LOCK_TIMEOUT_MS', 180_000),
            lock_poll_interval=_millis(env, 'USER_LOCK_POLL_MS', 500),
            stale_lock_after=_millis(env, 'USER_LOCK_STALE_MS', 600_000),
            stagger_delay=_millis(env, 'STAGGER_DELAY_MS', 15_000),
            stagger_slots=stagger_slots,
            session_validation_timeout=_millis(env, 'SESSION_VALIDATION_TIMEOUT_MS', 5_000),
            authenticated_timeout=_millis(env, 'AUTHENTICATED_TIMEOUT_MS', 30_000),
            auth_dir=env.get('AUTH_DIR', '.auth'),
            headless=env.get('HEADLESS', 'false').lower() == 'true',
        )
