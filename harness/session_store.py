"""
Per-worker Playwright session storage.

- One JSON file per (profile, worker) under the auth directory
- Files carry Playwright's storage_state() plus a metadata block
- Metadata (profileName) is checked before a session is applied, so a
  session saved for one profile is never replayed for another
"""
import json
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


MIN_SESSION_FILE_BYTES = 100
ORIGIN_NAVIGATION_TIMEOUT_MS = 10_000


def get_worker_index(default: int = 0) -> int:
    """
    Worker index of the current test process.

    pytest-xdist sets PYTEST_XDIST_WORKER=gw<N>; WORKER_INDEX overrides it.
    """
    raw = os.environ.get('WORKER_INDEX')
    if raw is None:
        xdist = os.environ.get('PYTEST_XDIST_WORKER', '')
        match = re.fullmatch(r'gw(\d+)', xdist)
        raw = match.group(1) if match else None
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        return default


def normalize_profile(profile_name: str) -> str:
    """'Case Manager' -> 'casemanager'."""
    return re.sub(r'\s+', '', profile_name or '').lower()


class SessionStore:
    """Save, validate and replay browser sessions for (profile, worker) pairs."""

    def __init__(self, auth_dir: str = '.auth'):
        self.auth_dir = Path(auth_dir)

    def path_for(self, profile_name: str, worker_index: int) -> Path:
        """
        Storage file for a profile and worker, e.g. .auth/casemanager-worker0.json
        """
        return self.auth_dir / f"{normalize_profile(profile_name)}-worker{worker_index}.json"

    def exists(self, profile_name: str, worker_index: int) -> bool:
        """True if a session file exists and is big enough to be a real session."""
        path = self.path_for(profile_name, worker_index)
        try:
            return path.is_file() and path.stat().st_size > MIN_SESSION_FILE_BYTES
        except OSError:
            return False

    def load(self, profile_name: str, worker_index: int) -> Optional[Dict[str, Any]]:
        """Parsed session file, or None if missing or unreadable."""
        path = self.path_for(profile_name, worker_index)
        try:
            if not path.exists():
                return None
            with open(path, encoding='utf-8') as f:
                state = json.load(f)
            return state if isinstance(state, dict) else None
        except (OSError, ValueError) as e:
            print(f"[SessionStore] Could not read {path}: {e}")
            return None

    def metadata_matches(self, state: Dict[str, Any], profile_name: str) -> bool:
        metadata = state.get('metadata')
        if not isinstance(metadata, dict) or not metadata.get('profileName'):
            print(f"[SessionStore] Session for '{profile_name}' has no ownership metadata, rejecting")
            return False

        stored = metadata['profileName']
        if normalize_profile(stored) != normalize_profile(profile_name):
            print(
                f"[SessionStore] SECURITY: Profile mismatch detected! Session is for '{stored}' "
                f"but trying to load for '{profile_name}'. Rejecting session."
            )
            return False
        return True

    def apply(self, page, profile_name: str, worker_index: int) -> bool:
        """
        Replay a saved session into the page's browser context.

        A metadata mismatch rejects the session but keeps the file: a file
        owned by another profile is not stale.

        Args:
            page: Playwright Page whose context receives the session
            profile_name: Profile being requested
            worker_index: Worker index

        Returns:
            True only if cookies were added or at least one localStorage item was set
        """
        state = self.load(profile_name, worker_index)
        if not state:
            return False

        if not self.metadata_matches(state, profile_name):
            return False

        cookies = state.get('cookies')
        origins = state.get('origins')
        if not isinstance(cookies, list) or not isinstance(origins or [], list):
            print(f"[SessionStore] Session file for '{profile_name}' worker {worker_index} is malformed")
            return False

        context = page.context
        if cookies:
            try:
                context.add_cookies(cookies)
            except Exception as e:
                print(f"[SessionStore] Failed to add cookies: {e}")
                return False

        restored = 0
        for origin in origins or []:
            restored += self._restore_local_storage(context, origin)

        if not cookies and not restored:
            print(f"[SessionStore] Nothing could be applied from session for '{profile_name}' worker {worker_index}")
            return False
        return True

    def _restore_local_storage(self, context, origin: Dict[str, Any]) -> int:
        """
        Best effort: open the origin in a short-lived page and set each item.

        Returns:
            Number of localStorage items actually set
        """
        origin_url = origin.get('origin') if isinstance(origin, dict) else None
        items = origin.get('localStorage') if isinstance(origin, dict) else None
        if not origin_url or not items:
            return 0

        restored = 0
        temp = None
        try:
            temp = context.new_page()
            try:
                temp.goto(origin_url, wait_until='domcontentloaded', timeout=ORIGIN_NAVIGATION_TIMEOUT_MS)
            except Exception as e:
                print(f"[SessionStore] Navigation to {origin_url} failed, continuing: {e}")

            for item in items:
                try:
                    temp.evaluate('([k, v]) => localStorage.setItem(k, v)', [item['name'], item['value']])
                    restored += 1
                except Exception as e:
                    print(f"[SessionStore] Could not restore localStorage key on {origin_url}: {e}")
        except Exception as e:
            print(f"[SessionStore] Could not restore localStorage for {origin_url}: {e}")
        finally:
            if temp is not None:
                try:
                    temp.close()
                except Exception as e:
                    print(f"[SessionStore] Could not close temporary page: {e}")
        return restored

    def save(self, page, profile_name: str, worker_index: int, username: Optional[str] = None) -> Path:
        """
        Snapshot the context's storage and write it with ownership metadata.

        Always overwrites the previous file for this (profile, worker).

        Returns:
            Path of the written file
        """
        self.auth_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(profile_name, worker_index)
        state = page.context.storage_state()

        enriched = dict(state)
        enriched['metadata'] = {
            'profileName': profile_name,
            'username': username,
            'savedAt': datetime.now(timezone.utc).isoformat(),
            'workerIndex': worker_index,
        }

        tmp_path = path.with_suffix('.json.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(enriched, f, indent=2)
        os.replace(tmp_path, path)

        print(f"[SessionStore] Saved session for '{profile_name}' worker {worker_index} ({username})")
        return path

    def delete(self, profile_name: str, worker_index: int) -> None:
        """Remove the session file. Never raises."""
        try:
            path = self.path_for(profile_name, worker_index)
            if path.exists():
                path.unlink()
                print(f"[SessionStore] Deleted session for '{profile_name}' worker {worker_index}")
        except Exception as e:
            print(f"[SessionStore] Could not delete session for '{profile_name}' worker {worker_index}: {e}")
