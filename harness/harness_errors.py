"""
Error taxonomy for the test-identity harness.

Errors raised by the lock, mailbox and ledger layers carry a context dict
(worker index, username, timestamps) so cross-worker races can be diagnosed
from a single failure message.
"""
from typing import Any, Dict, Optional


class HarnessError(Exception):
    """Base class for all harness errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def with_context(self, **context: Any) -> 'HarnessError':
        """
        Attach diagnostic context and return the same exception.

        Existing keys are kept so the innermost layer wins.
        """
        for key, value in context.items():
            self.context.setdefault(key, value)
        return self

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ', '.join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{self.message} [{details}]"


class ConfigError(HarnessError):
    """Invalid harness configuration value."""


class SecretsError(HarnessError):
    """A secret could not be fetched or parsed."""


class CredentialNotFoundError(HarnessError):
    """No roster exists for the (environment, profile) pair, or it is empty."""


class LockTimeoutError(HarnessError):
    """An account lock could not be acquired before the timeout."""

    def __init__(self, username: str, worker_index: int, holder: Optional[int], waited: float):
        super().__init__(
            f"Timeout waiting for lock on '{username}' "
            f"(locked by worker {holder}, waited {waited:.1f}s)",
            {'username': username, 'worker_index': worker_index},
        )
        self.username = username
        self.worker_index = worker_index
        self.holder = holder
        self.waited = waited


class MailboxAuthError(HarnessError):
    """Mailbox refresh credential is invalid or expired. Never retried."""


class MailboxTransientError(HarnessError):
    """Network or API failure talking to the mailbox provider."""


class ClaimLedgerError(HarnessError):
    """Claim ledger failure other than a key conflict."""


class OtpTimeoutError(HarnessError):
    """No claimable verification code was found within the timeout."""

    def __init__(self, elapsed: float, timeout: float, username: str, candidates_seen: int = 0):
        super().__init__(
            f"No claimable OTP for '{username}' after {elapsed:.1f}s (timeout {timeout:.1f}s, "
            f"{candidates_seen} matching candidate(s) seen, all already claimed)"
            if candidates_seen else
            f"No OTP for '{username}' arrived after {elapsed:.1f}s (timeout {timeout:.1f}s)",
            {'username': username},
        )
        self.elapsed = elapsed
        self.timeout = timeout
        self.candidates_seen = candidates_seen


class SessionApplyFailure(HarnessError):
    """A stored session could not be reused. Always degrades to a fresh login."""


class AuthenticationError(HarnessError):
    """Login finished without reaching an authenticated state."""


class SalesforceApiError(HarnessError):
    """Salesforce REST API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, {'status_code': status_code} if status_code else None)
        self.status_code = status_code


class WaitTimeoutError(Exception):
    """Raised by poll_until; callers translate it into a domain error."""

    def __init__(self, elapsed: float, timeout: float):
        super().__init__(f"Condition not met after {elapsed:.1f}s (timeout {timeout:.1f}s)")
        self.elapsed = elapsed
        self.timeout = timeout
