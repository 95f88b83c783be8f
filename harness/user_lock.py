"""
User lock coordinator.

Prevents two DIFFERENT workers from being logged in as the same account at
the same time. The same worker may acquire an account it already holds
without waiting (it logs in, out and back in across tests).

Locks are released at test teardown (pass or fail), not on logout: the
locked resource is "this account is in use by this worker for this test".
One coordinator instance per process.
"""
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from execution_log import execution_log as default_execution_log
from harness_errors import LockTimeoutError, WaitTimeoutError
from wait_utils import SystemClock, poll_until


DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_STALE_AFTER = 10 * 60
DEFAULT_TIMEOUT = 3 * 60


@dataclass
class UserLock:
    username: str
    locked_by_worker: int
    locked_at: float


@dataclass
class QueuedWorker:
    worker_index: int
    profile: str
    queued_at: float


@dataclass(frozen=True)
class LockHandle:
    username: str
    worker_index: int
    acquired_at: float
    waited: float = 0.0

    @property
    def lock_id(self) -> str:
        return f"{self.worker_index}-{self.username}-{int(self.acquired_at * 1000)}"


class UserLockCoordinator:
    """
    Process-wide registry of account locks with FIFO wait queues.

    State per username: FREE -> LOCKED(worker) -> FREE. Release hands the
    lock straight to the head of the queue, so contenders acquire in
    arrival order.
    """

    def __init__(
        self,
        clock=None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stale_after: float = DEFAULT_STALE_AFTER,
        default_timeout: float = DEFAULT_TIMEOUT,
        execution_log=None
    ):
        self._clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self.stale_after = stale_after
        self.default_timeout = default_timeout
        self._log = execution_log or default_execution_log

        self._mutex = threading.RLock()
        self._locks: Dict[str, UserLock] = {}
        self._queues: Dict[str, Deque[QueuedWorker]] = {}
        self._worker_users: Dict[int, str] = {}

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def holder_of(self, username: str) -> Optional[int]:
        with self._mutex:
            lock = self._locks.get(username)
            return lock.locked_by_worker if lock else None

    def held_by(self, worker_index: int) -> Optional[str]:
        with self._mutex:
            return self._worker_users.get(worker_index)

    def queued_workers(self, username: str) -> List[int]:
        with self._mutex:
            return [q.worker_index for q in self._queues.get(username, ())]

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    def acquire(
        self,
        username: str,
        worker_index: int,
        timeout: Optional[float] = None,
        profile: str = ''
    ) -> LockHandle:
        """
        Acquire the lock for an account.

        Args:
            username: Account to lock
            worker_index: Worker asking for it
            timeout: Seconds to wait behind another worker (default_timeout if None)
            profile: Profile name, for logging only

        Returns:
            LockHandle describing the held lock

        Raises:
            LockTimeoutError: Another worker kept the account for the whole timeout
        """
        timeout = self.default_timeout if timeout is None else timeout
        started = self._clock.time()

        with self._mutex:
            self._drop_other_account(worker_index, username)
            handle = self._try_take(username, worker_index, started)
            if handle is not None:
                self._log.lock_acquired(worker_index, username, profile, immediate=True)
                return handle
            self._enqueue(username, worker_index, profile)

        def attempt() -> Optional[LockHandle]:
            with self._mutex:
                now = self._clock.time()
                lock = self._locks.get(username)

                if lock and lock.locked_by_worker == worker_index:
                    return LockHandle(username, worker_index, lock.locked_at, waited=now - started)

                if lock and now - lock.locked_at > self.stale_after:
                    print(
                        f"[UserLock] STALE LOCK detected for '{username}' "
                        f"(held by worker {lock.locked_by_worker} for {now - lock.locked_at:.0f}s), force-releasing"
                    )
                    self._release_username(username, reason='stale')
                    lock = self._locks.get(username)
                    if lock and lock.locked_by_worker == worker_index:
                        return LockHandle(username, worker_index, lock.locked_at, waited=now - started)

                # Free with nobody ahead of us in the queue
                if lock is None and self._is_queue_head(username, worker_index):
                    self._dequeue(username, worker_index)
                    return self._take(username, worker_index, now, waited=now - started)

                return None

        try:
            handle = poll_until(attempt, timeout, self.poll_interval, self._clock)
        except WaitTimeoutError as e:
            with self._mutex:
                lock = self._locks.get(username)
                # Handed off between the last poll and the timeout
                if lock and lock.locked_by_worker == worker_index:
                    handle = LockHandle(username, worker_index, lock.locked_at, waited=e.elapsed)
                else:
                    self._dequeue(username, worker_index)
                    holder = lock.locked_by_worker if lock else None
                    raise LockTimeoutError(username, worker_index, holder, e.elapsed).with_context(
                        profile=profile
                    ) from e

        self._log.lock_acquired(worker_index, username, profile, immediate=False)
        return handle

    def release(self, worker_index: int) -> Optional[str]:
        """
        Release whatever account the worker holds.

        Never raises; teardown calls this on every exit path.

        Args:
            worker_index: Worker whose lock should be released

        Returns:
            The released username, or None when the worker held nothing
        """
        try:
            with self._mutex:
                username = self._worker_users.get(worker_index)
                if not username:
                    return None
                lock = self._locks.get(username)
                if not lock or lock.locked_by_worker != worker_index:
                    self._worker_users.pop(worker_index, None)
                    return None
                self._release_username(username, reason='released')
                return username
        except Exception as e:
            print(f"[UserLock] Error releasing lock for worker {worker_index}: {e}")
            return None

    def clear(self) -> None:
        """Forget every lock and queue."""
        with self._mutex:
            self._locks.clear()
            self._queues.clear()
            self._worker_users.clear()

    # ------------------------------------------------------------------
    # Internals (caller holds self._mutex)
    # ------------------------------------------------------------------

    def _try_take(self, username: str, worker_index: int, now: float) -> Optional[LockHandle]:
        lock = self._locks.get(username)
        if lock is None and not self._queues.get(username):
            return self._take(username, worker_index, now)
        if lock is not None and lock.locked_by_worker == worker_index:
            return LockHandle(username, worker_index, lock.locked_at)
        return None

    def _take(self, username: str, worker_index: int, now: float, waited: float = 0.0) -> LockHandle:
        self._locks[username] = UserLock(username, worker_index, now)
        self._worker_users[worker_index] = username
        return LockHandle(username, worker_index, now, waited=waited)

    def _enqueue(self, username: str, worker_index: int, profile: str) -> QueuedWorker:
        queue = self._queues.setdefault(username, deque())
        for queued in queue:
            if queued.worker_index == worker_index:
                return queued

        entry = QueuedWorker(worker_index, profile, self._clock.time())
        queue.append(entry)
        lock = self._locks.get(username)
        self._log.lock_wait(worker_index, username, profile, lock.locked_by_worker if lock else -1)
        return entry

    def _is_queue_head(self, username: str, worker_index: int) -> bool:
        queue = self._queues.get(username)
        return bool(queue) and queue[0].worker_index == worker_index

    def _dequeue(self, username: str, worker_index: int) -> None:
        queue = self._queues.get(username)
        if not queue:
            return
        for queued in list(queue):
            if queued.worker_index == worker_index:
                queue.remove(queued)
        if not queue:
            self._queues.pop(username, None)

    def _release_username(self, username: str, reason: str) -> None:
        lock = self._locks.pop(username, None)
        if lock is None:
            return
        if self._worker_users.get(lock.locked_by_worker) == username:
            self._worker_users.pop(lock.locked_by_worker, None)
        self._log.lock_released(lock.locked_by_worker, username, reason)

        queue = self._queues.get(username)
        if queue:
            nxt = queue.popleft()
            if not queue:
                self._queues.pop(username, None)
            self._take(username, nxt.worker_index, self._clock.time())

    def _drop_other_account(self, worker_index: int, username: str) -> None:
        current = self._worker_users.get(worker_index)
        if current and current != username:
            print(f"[UserLock] Worker {worker_index} switching from '{current}' to '{username}', releasing '{current}'")
            self._release_username(current, reason='switched account')
