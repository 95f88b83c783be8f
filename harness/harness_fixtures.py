"""
pytest plugin wiring the harness into UI and API tests.

Enable with `pytest_plugins = ['harness_fixtures']` in a conftest.py.

Fixtures:
- harness_config, secrets_client, lock_coordinator, credential_pool,
  session_store, login_orchestrator: one instance per worker process
- worker_page: fresh Playwright page per test on a per-worker browser context
- login_as: log in as a profile; teardown always releases the account lock
- salesforce_api: authenticated REST client
"""
import functools
from pathlib import Path

import pytest

from claim_ledger import DynamoClaimLedger, get_claims_table
from credential_pool import CredentialPool
from execution_log import execution_log
from harness_config import HarnessConfig, load_env_file
from login_orchestrator import LoginOrchestrator, LoginState
from otp_claims import fetch_salesforce_otp
from salesforce_api import SalesforceApiClient
from secrets_utils import fetch_roster, get_secrets_client
from session_store import SessionStore, get_worker_index
from user_lock import UserLockCoordinator


SCREENSHOT_DIR = Path('test-results') / 'screenshots'


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    """Keep each phase's report on the item so teardown can see pass/fail."""
    outcome = yield
    report = outcome.get_result()
    setattr(item, f"rep_{report.when}", report)


def pytest_terminal_summary(terminalreporter):
    if execution_log.events:
        terminalreporter.write_line(execution_log.generate_summary())


def _test_failed(request) -> bool:
    report = getattr(request.node, 'rep_call', None)
    return report is None or report.failed


@pytest.fixture(scope='session')
def harness_config():
    load_env_file()
    return HarnessConfig.from_env()


@pytest.fixture(scope='session')
def worker_index():
    return get_worker_index()


@pytest.fixture(scope='session')
def lock_coordinator(harness_config):
    coordinator = UserLockCoordinator(
        poll_interval=harness_config.lock_poll_interval,
        stale_after=harness_config.stale_lock_after,
        default_timeout=harness_config.lock_timeout,
    )
    yield coordinator
    coordinator.clear()


@pytest.fixture(scope='session')
def secrets_client(harness_config):
    """Secrets Manager client shared by every secret lookup in this worker."""
    return get_secrets_client(harness_config.secrets_role_arn, harness_config.aws_region)


@pytest.fixture(scope='session')
def credential_pool(harness_config, secrets_client):
    return CredentialPool(functools.partial(fetch_roster, secret_id=harness_config.user_credentials_secret_id))


@pytest.fixture(scope='session')
def session_store(harness_config):
    return SessionStore(harness_config.auth_dir)


@pytest.fixture(scope='session')
def login_orchestrator(harness_config, credential_pool, lock_coordinator, session_store):
    ledger = DynamoClaimLedger(get_claims_table(harness_config.otp_table, harness_config.aws_region))
    return LoginOrchestrator(
        credential_pool=credential_pool,
        lock_coordinator=lock_coordinator,
        session_store=session_store,
        config=harness_config,
        otp_fetcher=functools.partial(fetch_salesforce_otp, ledger=ledger),
    )


@pytest.fixture(scope='session')
def worker_browser_context(harness_config):
    """Browser and context kept for the whole worker so sessions survive between tests."""
    from playwright.sync_api import sync_playwright

    playwright = sync_playwright().start()
    browser = playwright.chromium.launch(headless=harness_config.headless)
    context = browser.new_context(base_url=harness_config.base_url)
    yield context
    try:
        context.close()
        browser.close()
    finally:
        playwright.stop()


@pytest.fixture
def worker_page(worker_browser_context):
    page = worker_browser_context.new_page()
    page.set_viewport_size({'width': 1280, 'height': 720})
    yield page
    try:
        page.close()
    except Exception as e:
        print(f"[Fixtures] Could not close page: {e}")


@pytest.fixture
def login_as(request, worker_page, worker_index, login_orchestrator, harness_config):
    """
    Factory fixture: login_as('casemanager') -> LoginResult.

    The account lock is released in teardown whether the test passed,
    failed or errored.
    """
    from login_page import LoginPage

    test_name = request.node.name
    execution_log.test_start(worker_index, test_name)
    results = []

    def _login(profile: str, environment: str = None):
        login_page = LoginPage(worker_page, harness_config.base_url)
        result = login_orchestrator.login(login_page, profile, worker_index, environment)
        results.append(result)
        return result

    yield _login

    failed = _test_failed(request)
    if failed:
        try:
            SCREENSHOT_DIR.mkdir(parents=True, exist_ok=True)
            worker_page.screenshot(path=str(SCREENSHOT_DIR / f"{test_name}-worker{worker_index}.png"))
        except Exception as e:
            print(f"[Fixtures] Screenshot capture failed: {e}")

    login_orchestrator.release(worker_index)
    for result in results:
        result.state = LoginState.LOCK_RELEASED
        if result.history is not None:
            result.history.append(LoginState.LOCK_RELEASED)
    execution_log.test_end(worker_index, test_name, passed=not failed)


@pytest.fixture(scope='session')
def salesforce_api(harness_config, secrets_client):
    return SalesforceApiClient.create(harness_config.salesforce_oauth_secret_id)
