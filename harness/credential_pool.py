"""
Credential pool.
Maps (environment, profile, worker index) to one account from the roster.
"""
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple

from harness_errors import CredentialNotFoundError


@dataclass(frozen=True)
class Credential:
    username: str
    password: str
    environment: str
    profile: str
    allow_session_reuse: bool = True

    def __repr__(self) -> str:
        return (f"Credential(username={self.username!r}, environment={self.environment!r}, "
                f"profile={self.profile!r}, allow_session_reuse={self.allow_session_reuse})")


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ('false', '0', 'no', '')
    return bool(value)


def normalize_roster(entries: Any, environment: str, profile: str) -> List[Credential]:
    """
    Turn a raw roster payload into a list of credentials.

    Accepts a single object or a list of objects. Entries without a
    username or password are dropped.

    Args:
        entries: Raw roster from the secret store
        environment: Environment the roster belongs to
        profile: Profile the roster belongs to

    Returns:
        List of Credential, in roster order
    """
    if entries is None:
        return []
    if isinstance(entries, dict):
        entries = [entries]

    roster = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        username = entry.get('username')
        password = entry.get('password')
        if not username or not password:
            print(f"[CredentialPool] Skipping roster entry without username/password for {environment}/{profile}")
            continue
        roster.append(Credential(
            username=username,
            password=password,
            environment=environment,
            profile=profile,
            allow_session_reuse=_to_bool(entry.get('allowSessionReuse', True)),
        ))
    return roster


class CredentialPool:
    """
    Deterministic account selection for parallel workers.

    The roster for each (environment, profile) is fetched once and kept for
    the rest of the run, so a worker keeps the same identity across tests.
    """

    def __init__(self, fetch_roster: Callable[[str, str], Any]):
        self._fetch_roster = fetch_roster
        self._lock = threading.Lock()
        self._rosters: Dict[Tuple[str, str], List[Credential]] = {}

    def roster(self, environment: str, profile: str) -> List[Credential]:
        key = (environment, profile)
        with self._lock:
            if key not in self._rosters:
                self._rosters[key] = normalize_roster(self._fetch_roster(environment, profile), environment, profile)
            return list(self._rosters[key])

    def resolve(self, environment: str, profile: str, worker_index: int) -> Credential:
        """
        Get the account assigned to a worker.

        Args:
            environment: Target environment (e.g., 'dev')
            profile: Role profile (e.g., 'casemanager')
            worker_index: Zero-based worker index

        Returns:
            roster[worker_index % len(roster)]

        Raises:
            CredentialNotFoundError: No roster, or an empty one
        """
        roster = self.roster(environment, profile)
        if not roster:
            raise CredentialNotFoundError(
                f"No users found for {environment}/{profile}",
                {'environment': environment, 'profile': profile, 'worker_index': worker_index},
            )

        slot = worker_index % len(roster)
        credential = roster[slot]
        print(f"[CredentialPool] Worker {worker_index} -> '{profile}' -> user #{slot} ({credential.username})")
        return credential
