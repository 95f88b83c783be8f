"""
Parallel execution timeline.

Records which worker ran which test, which account each worker locked,
session reuse vs fresh login, and OTP claims. Every line is printed with a
[Worker N] prefix so interleaved output can be filtered per worker.
"""
import json
import threading
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from logging_utils import mask_otp


EVENT_TYPES = (
    'TEST_START', 'TEST_END',
    'USER_LOCK_ACQUIRE', 'USER_LOCK_RELEASE', 'USER_LOCK_WAIT',
    'SESSION_REUSE', 'FRESH_LOGIN',
    'OTP_CLAIM', 'OTP_WAIT',
)


@dataclass
class ExecutionEvent:
    timestamp: float
    worker_index: int
    event_type: str
    test_name: Optional[str] = None
    username: Optional[str] = None
    profile: Optional[str] = None
    details: Optional[str] = None
    status: Optional[str] = None


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class ExecutionLog:
    """Thread-safe event recorder shared by all components in a process."""

    def __init__(self, clock=None, echo: bool = True):
        self._clock = clock
        self._echo = echo
        self._lock = threading.Lock()
        self._events: List[ExecutionEvent] = []
        self._running: Dict[int, dict] = {}

    def _now(self) -> float:
        return self._clock.time() if self._clock else time.time()

    def _record(self, line: str, event: ExecutionEvent) -> None:
        with self._lock:
            self._events.append(event)
        if self._echo:
            print(f"[Worker {event.worker_index}] {line}")

    @property
    def events(self) -> List[ExecutionEvent]:
        with self._lock:
            return list(self._events)

    def events_for(self, worker_index: int, event_type: Optional[str] = None) -> List[ExecutionEvent]:
        return [
            e for e in self.events
            if e.worker_index == worker_index and (event_type is None or e.event_type == event_type)
        ]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._running.clear()

    def test_start(self, worker_index: int, test_name: str) -> None:
        now = self._now()
        with self._lock:
            self._running[worker_index] = {'test_name': test_name, 'started': now}
        self._record(
            f"[TEST START] {test_name} at {_iso(now)}",
            ExecutionEvent(now, worker_index, 'TEST_START', test_name=test_name),
        )

    def test_end(self, worker_index: int, test_name: str, passed: bool = True) -> None:
        now = self._now()
        with self._lock:
            running = self._running.pop(worker_index, None)
        duration = now - running['started'] if running else 0
        status = 'PASSED' if passed else 'FAILED'
        self._record(
            f"[TEST END] {test_name} - {status} ({round(duration)}s)",
            ExecutionEvent(now, worker_index, 'TEST_END', test_name=test_name,
                           status='SUCCESS' if passed else 'FAILED'),
        )

    def lock_acquired(self, worker_index: int, username: str, profile: str, immediate: bool = True) -> None:
        how = 'immediate' if immediate else 'after wait'
        self._record(
            f'[USER LOCK] ACQUIRED "{username}" for {profile} ({how})',
            ExecutionEvent(self._now(), worker_index, 'USER_LOCK_ACQUIRE', username=username,
                           profile=profile, details=how, status='SUCCESS'),
        )

    def lock_wait(self, worker_index: int, username: str, profile: str, blocked_by: int) -> None:
        self._record(
            f'[USER LOCK] WAITING for "{username}" (blocked by Worker {blocked_by})',
            ExecutionEvent(self._now(), worker_index, 'USER_LOCK_WAIT', username=username,
                           profile=profile, details=f"blocked by Worker {blocked_by}", status='WAITING'),
        )

    def lock_released(self, worker_index: int, username: str, reason: str = 'released') -> None:
        self._record(
            f'[USER LOCK] RELEASED "{username}" ({reason})',
            ExecutionEvent(self._now(), worker_index, 'USER_LOCK_RELEASE', username=username,
                           details=reason, status='SUCCESS'),
        )

    def session_reused(self, worker_index: int, username: str, profile: str) -> None:
        self._record(
            f'[SESSION] REUSED for "{username}" ({profile}) - no OTP needed',
            ExecutionEvent(self._now(), worker_index, 'SESSION_REUSE', username=username,
                           profile=profile, status='SUCCESS'),
        )

    def fresh_login(self, worker_index: int, username: str, profile: str) -> None:
        self._record(
            f'[SESSION] FRESH LOGIN required for "{username}" ({profile})',
            ExecutionEvent(self._now(), worker_index, 'FRESH_LOGIN', username=username,
                           profile=profile, status='SUCCESS'),
        )

    def otp_claimed(self, worker_index: int, username: str, otp: str, waited: float = 0) -> None:
        wait_str = f"(waited {round(waited)}s)" if waited > 0 else '(immediate)'
        self._record(
            f'[OTP] CLAIMED {mask_otp(otp)} for "{username}" {wait_str}',
            ExecutionEvent(self._now(), worker_index, 'OTP_CLAIM', username=username,
                           details=f"OTP: {mask_otp(otp)}, wait: {round(waited)}s", status='SUCCESS'),
        )

    def otp_wait(self, worker_index: int, username: str, elapsed: float, timeout: float) -> None:
        self._record(
            f'[OTP] WAITING for "{username}" ({round(elapsed)}s / {round(timeout)}s)',
            ExecutionEvent(self._now(), worker_index, 'OTP_WAIT', username=username,
                           details=f"{round(elapsed)}s / {round(timeout)}s", status='WAITING'),
        )

    def generate_summary(self) -> str:
        """Render a per-worker timeline of every recorded event."""
        lines = ['', '=' * 80, 'PARALLEL EXECUTION SUMMARY', '=' * 80]

        by_worker: Dict[int, List[ExecutionEvent]] = {}
        for event in self.events:
            by_worker.setdefault(event.worker_index, []).append(event)

        for worker_index in sorted(by_worker):
            lines.append(f"\nWORKER {worker_index}:")
            lines.append('-' * 80)
            for event in by_worker[worker_index]:
                clock_time = _iso(event.timestamp)[11:19]
                test_str = f" [{event.test_name}]" if event.test_name else ''
                user_str = f' "{event.username}"' if event.username else ''
                profile_str = f" ({event.profile})" if event.profile else ''
                lines.append(
                    f"  {clock_time} | {event.event_type:<20} | {event.status}{test_str}{user_str}{profile_str}"
                )

        lines.append('\n' + '=' * 80)
        return '\n'.join(lines)

    def export_json(self) -> str:
        return json.dumps([asdict(e) for e in self.events], indent=2)


# Process-wide default instance
execution_log = ExecutionLog()
