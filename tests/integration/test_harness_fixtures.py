"""
Integration tests for the harness_fixtures pytest plugin.

Runs a small suite through pytester with the browser and orchestrator
replaced by stubs, and checks that:
- login_as hands back the orchestrator's result
- teardown releases the account lock whether the test passed or failed
- the execution log records TEST_START / TEST_END with the right status
- secrets_client assumes the configured role before rosters are read
"""
import pytest
import sys
from pathlib import Path

# Add harness directory to path
harness_dir = Path(__file__).parent.parent.parent / 'harness'
sys.path.insert(0, str(harness_dir))


CONFTEST = """
import pytest
from unittest.mock import MagicMock

from credential_pool import Credential
from harness_config import HarnessConfig
from login_orchestrator import LoginResult, LoginState
from user_lock import LockHandle

pytest_plugins = ['harness_fixtures']


class StubOrchestrator:
    def __init__(self):
        self.released = []

    def login(self, login_page, profile, worker_index, environment=None):
        credential = Credential('cm1@example.com.dev', 'pw', environment or 'dev', profile)
        return LoginResult(LoginState.AUTHENTICATED, credential,
                           LockHandle(credential.username, worker_index, 0.0),
                           history=[LoginState.START, LoginState.AUTHENTICATED])

    def release(self, worker_index):
        self.released.append(worker_index)
        return 'cm1@example.com.dev'


@pytest.fixture(scope='session')
def harness_config():
    return HarnessConfig(environment='dev')


@pytest.fixture(scope='session')
def worker_index():
    return 4


@pytest.fixture(scope='session')
def login_orchestrator():
    return StubOrchestrator()


@pytest.fixture
def worker_page():
    return MagicMock()
"""

SUITE = """
from execution_log import execution_log
from login_orchestrator import LoginState

RESULTS = []


def test_a_passes(login_as):
    result = login_as('casemanager')
    RESULTS.append(result)
    assert result.authenticated


def test_b_fails(login_as):
    RESULTS.append(login_as('casemanager'))
    assert False, 'deliberate failure'


def test_c_teardown_ran(login_orchestrator):
    assert login_orchestrator.released == [4, 4]
    assert all(r.state == LoginState.LOCK_RELEASED for r in RESULTS)
    assert RESULTS[0].history[-1] == LoginState.LOCK_RELEASED

    ends = execution_log.events_for(4, 'TEST_END')
    assert [(e.test_name, e.status) for e in ends[-2:]] == [
        ('test_a_passes', 'SUCCESS'),
        ('test_b_fails', 'FAILED'),
    ]
"""


@pytest.mark.integration
class TestLoginAsFixture:
    """Tests for the login_as fixture teardown."""

    def test_lock_released_on_pass_and_fail(self, pytester):
        pytester.makeconftest(CONFTEST)
        pytester.makepyfile(test_suite=SUITE)

        result = pytester.runpytest('-p', 'no:cacheprovider')

        result.assert_outcomes(passed=2, failed=1)
        result.stdout.fnmatch_lines(['*PARALLEL EXECUTION SUMMARY*'])


ROLE_CONFTEST = """
import pytest

from harness_config import HarnessConfig

pytest_plugins = ['harness_fixtures']


@pytest.fixture(scope='session')
def harness_config():
    return HarnessConfig(
        environment='dev',
        secrets_role_arn='arn:aws:iam::123456789012:role/playwright-secrets-reader',
        aws_region='ap-southeast-2',
    )
"""

ROLE_SUITE = """
def test_roster_read_through_assumed_role(credential_pool):
    assert credential_pool.resolve('dev', 'casemanager', 0).username == 'cm1@example.com.dev'
"""


@pytest.mark.integration
class TestSecretsClientFixture:
    """Tests for the secrets_client fixture."""

    def test_configured_role_is_assumed(self, pytester, mock_secrets):
        pytester.makeconftest(ROLE_CONFTEST)
        pytester.makepyfile(test_roles=ROLE_SUITE)

        result = pytester.runpytest('-s', '-p', 'no:cacheprovider')

        result.assert_outcomes(passed=1)
        result.stdout.fnmatch_lines(['*Assumed role arn:aws:iam::123456789012:role/playwright-secrets-reader*'])
