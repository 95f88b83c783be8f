"""
OTP claiming from the shared Gmail inbox.

- Every verification code for every test account lands in ONE inbox
- Each email body carries "Username: <account>" naming the recipient
- A worker only accepts codes sent after its own login submission, addressed
  to its own account, and only after winning the conditional insert in the
  claim ledger
"""
import re
import secrets
import time
from dataclasses import dataclass
from typing import List, Optional

from claim_ledger import DynamoClaimLedger, OtpClaimRecord
from execution_log import execution_log as default_execution_log
from gmail_api import GmailMailbox, extract_body
from harness_config import DEFAULT_OTP_QUERY
from harness_errors import (
    HarnessError,
    MailboxAuthError,
    MailboxTransientError,
    OtpTimeoutError,
    WaitTimeoutError
)
from logging_utils import mask_otp
from wait_utils import SystemClock, poll_until


OTP_REGEX = re.compile(r'\b\d{6}\b')
USERNAME_REGEX = re.compile(r'Username:\s*([^\n]+)', re.IGNORECASE)

DEFAULT_POLL_INTERVAL = 1.5
MAX_MESSAGES_TO_FETCH = 10
MAX_CONSECUTIVE_ERRORS = 3


def generate_test_run_id() -> str:
    """Unique id for one logical login attempt, e.g. run_1718000000000_4821."""
    return f"run_{int(time.time() * 1000)}_{secrets.randbelow(10000)}"


@dataclass(frozen=True)
class CandidateOtpMessage:
    message_id: str
    body: str
    received_at: float


def parse_candidate(message_id: str, body: str, received_at: float,
                    login_submitted_at: float, expected_username: str) -> Optional[str]:
    """
    Apply the candidate filters to one message.

    Args:
        message_id: Gmail message id (for logging)
        body: Decoded body text
        received_at: Message timestamp, epoch seconds
        login_submitted_at: Login submission time, epoch seconds
        expected_username: Account this worker logged in as

    Returns:
        The 6-digit code if the message is usable by this worker, else None
    """
    if received_at < login_submitted_at:
        print(f"[OTP] Message {message_id} is OLDER than the login attempt, skipping (stale OTP)")
        return None

    otp_match = OTP_REGEX.search(body)
    if not otp_match:
        print(f"[OTP] Message {message_id} has no 6-digit OTP, skipping")
        return None

    username_match = USERNAME_REGEX.search(body)
    if not username_match:
        print(f"[OTP] Message {message_id} has no Username field, skipping")
        return None

    otp_username = username_match.group(1).strip()
    if otp_username != expected_username.strip():
        print(f"[OTP] Message {message_id} is for user '{otp_username}', not '{expected_username}', skipping")
        return None

    return otp_match.group(0)


class OtpClaimService:
    """Polls the mailbox and claims exactly one code per login attempt."""

    def __init__(
        self,
        mailbox,
        ledger=None,
        clock=None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_messages: int = MAX_MESSAGES_TO_FETCH,
        max_consecutive_errors: int = MAX_CONSECUTIVE_ERRORS,
        execution_log=None
    ):
        self.mailbox = mailbox
        self.ledger = ledger or DynamoClaimLedger()
        self._clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self.max_messages = max_messages
        self.max_consecutive_errors = max_consecutive_errors
        self._log = execution_log or default_execution_log

    def _fetch_candidates(self, search_query: str) -> List[CandidateOtpMessage]:
        """One listing plus body fetches. Listing errors propagate."""
        message_ids = self.mailbox.list_recent_matching(search_query, self.max_messages)
        candidates = []
        for message_id in message_ids:
            try:
                message = self.mailbox.get_full_message(message_id)
            except MailboxAuthError:
                raise
            except MailboxTransientError as e:
                print(f"[OTP] Failed to fetch message {message_id}: {e}")
                continue

            body = extract_body(message.get('payload'))
            if body.strip():
                candidates.append(CandidateOtpMessage(
                    message_id=message_id,
                    body=body,
                    received_at=int(message.get('internalDate') or 0) / 1000.0,
                ))
        return candidates

    def claim(
        self,
        test_run_id: str,
        search_query: str = DEFAULT_OTP_QUERY,
        timeout: float = 60.0,
        login_submitted_at: Optional[float] = None,
        expected_username: str = '',
        worker_index: int = -1
    ) -> str:
        """
        Find and atomically claim the verification code for this login.

        Args:
            test_run_id: Id of this logical login attempt
            search_query: Gmail search query selecting OTP emails
            timeout: Seconds to keep polling
            login_submitted_at: Epoch seconds when credentials were submitted;
                codes received earlier are never accepted
            expected_username: This worker's account; must match the body's Username field
            worker_index: Worker index, for logging

        Returns:
            The claimed 6-digit code

        Raises:
            MailboxAuthError: Refresh credential invalid (never retried)
            MailboxTransientError: Too many consecutive mailbox failures
            ClaimLedgerError: Ledger write failed for a reason other than a conflict
            OtpTimeoutError: Nothing claimable within the timeout
        """
        if not test_run_id:
            raise ValueError('test_run_id is required')
        if not expected_username:
            raise ValueError("expected_username (this worker's account) is required for shared inbox matching")

        if login_submitted_at is None:
            login_submitted_at = self._clock.time()

        started = self._clock.time()
        state = {'consecutive_errors': 0, 'claimed_elsewhere': set()}

        print(f"[OTP] testRunId: {test_run_id}")
        print(f"[OTP] Worker {worker_index} username: {expected_username}")
        print("[OTP] Fetching OTP from shared inbox (matching username, sent after login)...")

        def attempt() -> Optional[str]:
            try:
                candidates = self._fetch_candidates(search_query)
                state['consecutive_errors'] = 0
            except MailboxAuthError:
                raise
            except MailboxTransientError as e:
                state['consecutive_errors'] += 1
                print(f"[OTP] Gmail API error (attempt {state['consecutive_errors']}/"
                      f"{self.max_consecutive_errors}): {e}")
                if state['consecutive_errors'] >= self.max_consecutive_errors:
                    raise MailboxTransientError(f"Too many Gmail API errors: {e}") from e
                return None

            for candidate in candidates:
                if candidate.message_id in state['claimed_elsewhere']:
                    continue
                otp = parse_candidate(candidate.message_id, candidate.body, candidate.received_at,
                                      login_submitted_at, expected_username)
                if otp is None:
                    continue

                record = OtpClaimRecord.create(
                    message_id=candidate.message_id,
                    test_run_id=test_run_id,
                    otp=otp,
                    username=expected_username.strip(),
                    message_timestamp=candidate.received_at,
                )
                if self.ledger.put_if_absent(record):
                    print(f"[OTP] Claimed OTP {mask_otp(otp)} from message {candidate.message_id}")
                    return otp

                state['claimed_elsewhere'].add(candidate.message_id)
                print(f"[OTP] Message {candidate.message_id} already claimed by another worker, trying next...")

            return None

        def on_wait(elapsed: float) -> None:
            self._log.otp_wait(worker_index, expected_username, elapsed, timeout)

        try:
            otp = poll_until(attempt, timeout, self.poll_interval, self._clock, on_wait)
        except WaitTimeoutError as e:
            raise OtpTimeoutError(
                e.elapsed, timeout, expected_username, len(state['claimed_elsewhere'])
            ).with_context(test_run_id=test_run_id, worker_index=worker_index,
                           login_submitted_at=login_submitted_at) from e
        except HarnessError as e:
            e.with_context(test_run_id=test_run_id, worker_index=worker_index,
                           username=expected_username)
            raise

        self._log.otp_claimed(worker_index, expected_username, otp, self._clock.time() - started)
        return otp


def fetch_salesforce_otp(
    test_run_id: str,
    mailbox_secrets,
    search_query: str = DEFAULT_OTP_QUERY,
    timeout: float = 60.0,
    login_submitted_at: Optional[float] = None,
    expected_username: str = '',
    worker_index: int = -1,
    ledger=None,
    poll_interval: float = DEFAULT_POLL_INTERVAL
) -> str:
    """
    Claim a Salesforce OTP using mailbox credentials from the secret store.

    Args:
        test_run_id: Id of this logical login attempt
        mailbox_secrets: MailboxSecrets (client_id, client_secret, refresh_token)
        search_query: Gmail search query
        timeout: Seconds to keep polling
        login_submitted_at: Epoch seconds of the credential submission
        expected_username: This worker's account
        worker_index: Worker index, for logging
        ledger: Claim ledger (DynamoDB by default)
        poll_interval: Seconds between polls

    Returns:
        The claimed code
    """
    mailbox = GmailMailbox(mailbox_secrets.client_id, mailbox_secrets.client_secret,
                           mailbox_secrets.refresh_token)
    service = OtpClaimService(mailbox, ledger=ledger, poll_interval=poll_interval)
    return service.claim(test_run_id, search_query, timeout, login_submitted_at,
                         expected_username, worker_index)
