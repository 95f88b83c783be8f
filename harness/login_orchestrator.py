"""
Login orchestration for one test.

START -> CREDENTIALS_RESOLVED -> LOCK_ACQUIRED -> SESSION_REUSED | FRESH_LOGIN_SUBMITTED
      -> [OTP_CHALLENGE -> OTP_CLAIMED] -> AUTHENTICATED

The account lock taken here is held for the rest of the test and released
by teardown through release(), never inside login().
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from credential_pool import Credential, CredentialPool
from execution_log import execution_log as default_execution_log
from harness_config import HarnessConfig
from harness_errors import AuthenticationError, HarnessError, SessionApplyFailure
from otp_claims import fetch_salesforce_otp, generate_test_run_id
from secrets_utils import fetch_mailbox_secrets
from session_store import SessionStore
from user_lock import LockHandle, UserLockCoordinator
from wait_utils import SystemClock


# URL fragments that mean a reused session landed on setup/onboarding instead of the app
SETUP_REDIRECT_MARKERS = ('/setup', 'developer-edition')


class LoginState(Enum):
    START = 'START'
    CREDENTIALS_RESOLVED = 'CREDENTIALS_RESOLVED'
    LOCK_ACQUIRED = 'LOCK_ACQUIRED'
    SESSION_REUSED = 'SESSION_REUSED'
    FRESH_LOGIN_SUBMITTED = 'FRESH_LOGIN_SUBMITTED'
    OTP_CHALLENGE = 'OTP_CHALLENGE'
    OTP_CLAIMED = 'OTP_CLAIMED'
    AUTHENTICATED = 'AUTHENTICATED'
    CREDENTIAL_ERROR = 'CREDENTIAL_ERROR'
    LOCK_RELEASED = 'LOCK_RELEASED'


@dataclass
class LoginResult:
    state: LoginState
    credential: Credential
    lock: LockHandle
    session_reused: bool = False
    submitted_at: Optional[float] = None
    otp_claimed: bool = False
    error_message: Optional[str] = None
    history: Optional[List[LoginState]] = None

    @property
    def authenticated(self) -> bool:
        return self.state == LoginState.AUTHENTICATED


class LoginOrchestrator:
    """Composes the credential pool, lock coordinator, session store and OTP claim."""

    def __init__(
        self,
        credential_pool: CredentialPool,
        lock_coordinator: UserLockCoordinator,
        session_store: SessionStore,
        config: Optional[HarnessConfig] = None,
        otp_fetcher: Callable[..., str] = fetch_salesforce_otp,
        mailbox_secrets_loader: Callable = fetch_mailbox_secrets,
        clock=None,
        execution_log=None
    ):
        self.credential_pool = credential_pool
        self.lock_coordinator = lock_coordinator
        self.session_store = session_store
        self.config = config or HarnessConfig()
        self.otp_fetcher = otp_fetcher
        self.mailbox_secrets_loader = mailbox_secrets_loader
        self._clock = clock or SystemClock()
        self._log = execution_log or default_execution_log

    def stagger_delay_for(self, worker_index: int) -> float:
        """(worker_index % stagger_slots) * stagger_delay seconds."""
        return (worker_index % self.config.stagger_slots) * self.config.stagger_delay

    def apply_stagger_delay(self, worker_index: int) -> float:
        delay = self.stagger_delay_for(worker_index)
        if delay > 0:
            print(f"[Login] Applying stagger delay: {round(delay)}s for worker {worker_index} "
                  f"(slot {worker_index % self.config.stagger_slots})")
            self._clock.sleep(delay)
        return delay

    def login(self, login_page, profile: str, worker_index: int, environment: Optional[str] = None) -> LoginResult:
        """
        Authenticate the worker's browser as the account assigned to it.

        Args:
            login_page: LoginPage bound to this worker's page
            profile: Role profile to log in as
            worker_index: Worker index
            environment: Target environment (config.environment if None)

        Returns:
            LoginResult in state AUTHENTICATED or CREDENTIAL_ERROR

        Raises:
            CredentialNotFoundError: No roster for (environment, profile)
            LockTimeoutError: Account stayed locked by another worker
            MailboxAuthError / MailboxTransientError / OtpTimeoutError: OTP could not be claimed
            AuthenticationError: Login never reached an authenticated page
        """
        environment = environment or self.config.environment
        history = [LoginState.START]

        credential = self.credential_pool.resolve(environment, profile, worker_index)
        history.append(LoginState.CREDENTIALS_RESOLVED)

        try:
            handle = self.lock_coordinator.acquire(
                credential.username, worker_index, self.config.lock_timeout, profile
            )
        except HarnessError as e:
            e.with_context(worker_index=worker_index, profile=profile)
            raise
        history.append(LoginState.LOCK_ACQUIRED)

        if credential.allow_session_reuse and self.try_reuse_session(login_page, credential, worker_index):
            history.append(LoginState.SESSION_REUSED)
            history.append(LoginState.AUTHENTICATED)
            self._log.session_reused(worker_index, credential.username, profile)
            return LoginResult(LoginState.AUTHENTICATED, credential, handle, session_reused=True, history=history)

        return self._fresh_login(login_page, credential, handle, worker_index, history)

    def _fresh_login(self, login_page, credential: Credential, handle: LockHandle,
                     worker_index: int, history: List[LoginState]) -> LoginResult:
        profile = credential.profile
        self._log.fresh_login(worker_index, credential.username, profile)

        login_page.clear_session_state()
        self.apply_stagger_delay(worker_index)
        login_page.open()

        submitted_at = self._clock.time()
        login_page.submit_credentials(credential.username, credential.password)
        history.append(LoginState.FRESH_LOGIN_SUBMITTED)

        if login_page.has_credential_error():
            message = login_page.get_login_error()
            print(f"[Login] Worker {worker_index} credential error for '{credential.username}': {message}")
            history.append(LoginState.CREDENTIAL_ERROR)
            return LoginResult(LoginState.CREDENTIAL_ERROR, credential, handle,
                               submitted_at=submitted_at, error_message=message, history=history)

        otp_claimed = False
        if login_page.has_otp_challenge():
            history.append(LoginState.OTP_CHALLENGE)
            otp = self._claim_otp(credential, worker_index, submitted_at)
            history.append(LoginState.OTP_CLAIMED)
            login_page.submit_otp(otp)
            otp_claimed = True

        if not login_page.is_authenticated(self.config.authenticated_timeout):
            raise AuthenticationError(
                f"Login for '{credential.username}' did not reach an authenticated page",
                {'worker_index': worker_index, 'profile': profile, 'url': login_page.current_url()},
            )

        history.append(LoginState.AUTHENTICATED)
        if credential.allow_session_reuse:
            self.session_store.save(login_page.page, profile, worker_index, credential.username)

        return LoginResult(LoginState.AUTHENTICATED, credential, handle, submitted_at=submitted_at,
                           otp_claimed=otp_claimed, history=history)

    def _claim_otp(self, credential: Credential, worker_index: int, submitted_at: float) -> str:
        test_run_id = generate_test_run_id()
        try:
            mailbox_secrets = self.mailbox_secrets_loader(self.config.gmail_secret_id)
            return self.otp_fetcher(
                test_run_id=test_run_id,
                mailbox_secrets=mailbox_secrets,
                search_query=self.config.otp_search_query,
                timeout=self.config.otp_timeout,
                poll_interval=self.config.otp_poll_interval,
                login_submitted_at=submitted_at,
                expected_username=credential.username,
                worker_index=worker_index,
            )
        except HarnessError as e:
            e.with_context(worker_index=worker_index, username=credential.username,
                           test_run_id=test_run_id, login_submitted_at=submitted_at)
            raise

    def try_reuse_session(self, login_page, credential: Credential, worker_index: int) -> bool:
        """
        Replay and validate a saved session. Any failure means a fresh login.

        Returns:
            True if the page is authenticated from the saved session
        """
        profile = credential.profile
        if not self.session_store.exists(profile, worker_index):
            return False

        try:
            self._reuse_session(login_page, credential, worker_index)
            print(f"[Login] Reused VALID session for worker {worker_index}")
            return True
        except SessionApplyFailure as e:
            print(f"[Login] {e}, proceeding with fresh login")
            return False
        except Exception as e:
            print(f"[Login] Error during session reuse: {e}, proceeding with fresh login")
            return False

    def _reuse_session(self, login_page, credential: Credential, worker_index: int) -> None:
        profile = credential.profile

        state = self.session_store.load(profile, worker_index) or {}
        saved_for = (state.get('metadata') or {}).get('username')
        if saved_for and saved_for != credential.username:
            self.session_store.delete(profile, worker_index)
            raise SessionApplyFailure(f"Session belongs to '{saved_for}', not '{credential.username}'")

        if not self.session_store.apply(login_page.page, profile, worker_index):
            raise SessionApplyFailure('Session file exists but cannot be reused')

        login_page.go_home()
        current_url = login_page.current_url()
        if any(marker in current_url for marker in SETUP_REDIRECT_MARKERS):
            self.session_store.delete(profile, worker_index)
            raise SessionApplyFailure(f"Session redirected to setup page ({current_url}), session is stale")

        if not login_page.is_authenticated(self.config.session_validation_timeout):
            self.session_store.delete(profile, worker_index)
            raise SessionApplyFailure('Session exists but is stale (user logged out)')

    def logout(self, login_page, profile: str, worker_index: int) -> None:
        """Log out and invalidate the stored session. The lock stays held."""
        login_page.logout()
        self.session_store.delete(profile, worker_index)

    def release(self, worker_index: int) -> Optional[str]:
        """Teardown hook: release the worker's account lock. Never raises."""
        return self.lock_coordinator.release(worker_index)
