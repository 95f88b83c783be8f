"""
Unit tests for harness_config module.

Tests configuration loading including:
- Defaults when nothing is set
- Millisecond environment variables converted to seconds
- Invalid numeric values rejected with ConfigError
- .env file loading that never overrides the real environment
"""
import pytest
import sys
from pathlib import Path

# Add harness directory to path
harness_dir = Path(__file__).parent.parent.parent / 'harness'
sys.path.insert(0, str(harness_dir))

from harness_config import HarnessConfig, load_env_file, BASE_URLS, DEFAULT_OTP_QUERY
from harness_errors import ConfigError


# ==============================================================================
# HarnessConfig.from_env() Tests
# ==============================================================================

@pytest.mark.unit
class TestFromEnv:
    """Tests for HarnessConfig.from_env()."""

    def test_defaults(self):
        config = HarnessConfig.from_env({})

        assert config.environment == 'dev'
        assert config.aws_region == 'ap-southeast-2'
        assert config.secrets_role_arn is None
        assert config.otp_table == 'OTPClaims'
        assert config.otp_timeout == 120.0
        assert config.otp_poll_interval == 1.5
        assert config.otp_search_query == DEFAULT_OTP_QUERY
        assert config.lock_timeout == 180.0
        assert config.lock_poll_interval == 0.5
        assert config.stale_lock_after == 600.0
        assert config.stagger_delay == 15.0
        assert config.stagger_slots == 3
        assert config.session_validation_timeout == 5.0
        assert config.authenticated_timeout == 30.0
        assert config.auth_dir == '.auth'
        assert config.headless is False

    def test_millisecond_values_become_seconds(self):
        config = HarnessConfig.from_env({
            'OTP_FETCH_TIMEOUT_MS': '60000',
            'USER_LOCK_TIMEOUT_MS': '90000',
            'USER_LOCK_POLL_MS': '250',
            'STAGGER_DELAY_MS': '0',
        })
        assert config.otp_timeout == 60.0
        assert config.lock_timeout == 90.0
        assert config.lock_poll_interval == 0.25
        assert config.stagger_delay == 0.0

    def test_string_settings(self):
        config = HarnessConfig.from_env({
            'TEST_ENVIRONMENT_VALUE': 'sit',
            'AWS_SECRETS_ROLE_ARN': 'arn:aws:iam::123456789012:role/reader',
            'OTP_DDB_TABLE': 'OTPClaims-sit',
            'HEADLESS': 'TRUE',
            'AUTH_DIR': '/tmp/auth',
        })
        assert config.environment == 'sit'
        assert config.secrets_role_arn == 'arn:aws:iam::123456789012:role/reader'
        assert config.otp_table == 'OTPClaims-sit'
        assert config.headless is True
        assert config.auth_dir == '/tmp/auth'

    @pytest.mark.parametrize('name,value', [
        ('OTP_FETCH_TIMEOUT_MS', 'soon'),
        ('USER_LOCK_TIMEOUT_MS', '-1'),
        ('STAGGER_SLOTS', 'three'),
        ('STAGGER_SLOTS', '0'),
    ])
    def test_invalid_values_rejected(self, name, value):
        with pytest.raises(ConfigError) as exc_info:
            HarnessConfig.from_env({name: value})
        assert name in str(exc_info.value)

    def test_base_urls(self):
        assert HarnessConfig(environment='uat').base_url == BASE_URLS['uat']['ui']
        assert HarnessConfig(environment='UAT').api_base_url == BASE_URLS['uat']['api']
        # Unknown environments fall back to dev
        assert HarnessConfig(environment='prod').base_url == BASE_URLS['dev']['ui']


# ==============================================================================
# load_env_file() Tests
# ==============================================================================

@pytest.mark.unit
class TestLoadEnvFile:
    """Tests for load_env_file() function."""

    def test_parses_file(self, tmp_path):
        env_file = tmp_path / '.env'
        env_file.write_text(
            '# comment\n'
            'TEST_ENVIRONMENT_VALUE=sit\n'
            'OTP_SEARCH_QUERY="from:noreply@salesforce.com subject:code"\n'
            '\n'
            'not a setting\n'
        )
        environ = {}

        parsed = load_env_file(str(env_file), environ)

        assert parsed == {
            'TEST_ENVIRONMENT_VALUE': 'sit',
            'OTP_SEARCH_QUERY': 'from:noreply@salesforce.com subject:code',
        }
        assert environ == parsed

    def test_existing_environment_wins(self, tmp_path):
        env_file = tmp_path / '.env'
        env_file.write_text('TEST_ENVIRONMENT_VALUE=sit\n')
        environ = {'TEST_ENVIRONMENT_VALUE': 'uat'}

        load_env_file(str(env_file), environ)

        assert environ['TEST_ENVIRONMENT_VALUE'] == 'uat'

    def test_missing_file_is_ignored(self, tmp_path):
        environ = {}
        assert load_env_file(str(tmp_path / 'missing.env'), environ) == {}
        assert environ == {}
