"""
Unit tests for credential_pool module.

Tests deterministic account selection including:
- Roster normalization (single object, list, incomplete entries)
- worker_index % len(roster) assignment
- Roster caching per (environment, profile)
- Missing and empty rosters
"""
import pytest
import sys
from pathlib import Path
from unittest.mock import MagicMock

# Add harness directory to path
harness_dir = Path(__file__).parent.parent.parent / 'harness'
sys.path.insert(0, str(harness_dir))

from credential_pool import CredentialPool, Credential, normalize_roster
from harness_errors import CredentialNotFoundError


THREE_USERS = [
    {'username': 'u0@example.com', 'password': 'p0'},
    {'username': 'u1@example.com', 'password': 'p1'},
    {'username': 'u2@example.com', 'password': 'p2'},
]


# ==============================================================================
# normalize_roster() Tests
# ==============================================================================

@pytest.mark.unit
class TestNormalizeRoster:
    """Tests for normalize_roster() function."""

    def test_list_of_entries(self):
        roster = normalize_roster(THREE_USERS, 'dev', 'casemanager')
        assert [c.username for c in roster] == ['u0@example.com', 'u1@example.com', 'u2@example.com']
        assert all(c.environment == 'dev' and c.profile == 'casemanager' for c in roster)

    def test_single_object_becomes_one_entry(self):
        roster = normalize_roster({'username': 'solo@example.com', 'password': 'p'}, 'dev', 'admin')
        assert len(roster) == 1
        assert roster[0].username == 'solo@example.com'

    def test_incomplete_entries_are_dropped(self):
        roster = normalize_roster([
            {'username': 'ok@example.com', 'password': 'p'},
            {'username': 'nopass@example.com'},
            {'password': 'nouser'},
            'not-a-dict',
        ], 'dev', 'casemanager')
        assert [c.username for c in roster] == ['ok@example.com']

    def test_none_is_empty(self):
        assert normalize_roster(None, 'dev', 'casemanager') == []

    @pytest.mark.parametrize('raw,expected', [
        (None, True), (True, True), (False, False), ('false', False), ('no', False), ('yes', True),
    ])
    def test_allow_session_reuse_flag(self, raw, expected):
        entry = {'username': 'u@example.com', 'password': 'p'}
        if raw is not None:
            entry['allowSessionReuse'] = raw
        assert normalize_roster([entry], 'dev', 'x')[0].allow_session_reuse is expected


# ==============================================================================
# CredentialPool.resolve() Tests
# ==============================================================================

@pytest.mark.unit
class TestResolve:
    """Tests for CredentialPool.resolve()."""

    @pytest.mark.parametrize('worker_index,expected', [
        (0, 'u0@example.com'), (1, 'u1@example.com'), (2, 'u2@example.com'),
        (3, 'u0@example.com'), (7, 'u1@example.com'),
    ])
    def test_assignment_wraps_around_roster(self, worker_index, expected):
        pool = CredentialPool(lambda env, profile: THREE_USERS)
        assert pool.resolve('dev', 'casemanager', worker_index).username == expected

    def test_assignment_is_stable_across_calls(self):
        pool = CredentialPool(lambda env, profile: THREE_USERS)
        first = pool.resolve('dev', 'casemanager', 4)
        second = pool.resolve('dev', 'casemanager', 4)
        assert first == second

    def test_roster_fetched_once_per_profile(self):
        fetch = MagicMock(return_value=THREE_USERS)
        pool = CredentialPool(fetch)

        pool.resolve('dev', 'casemanager', 0)
        pool.resolve('dev', 'casemanager', 1)
        pool.resolve('sit', 'casemanager', 0)

        assert fetch.call_count == 2
        fetch.assert_any_call('dev', 'casemanager')
        fetch.assert_any_call('sit', 'casemanager')

    def test_missing_roster_raises(self):
        pool = CredentialPool(lambda env, profile: None)

        with pytest.raises(CredentialNotFoundError) as exc_info:
            pool.resolve('dev', 'ghost', 2)

        assert exc_info.value.context == {'environment': 'dev', 'profile': 'ghost', 'worker_index': 2}
        assert 'dev/ghost' in str(exc_info.value)

    def test_empty_roster_raises(self):
        pool = CredentialPool(lambda env, profile: [])
        with pytest.raises(CredentialNotFoundError):
            pool.resolve('dev', 'casemanager', 0)


@pytest.mark.unit
def test_credential_repr_hides_password():
    credential = Credential('u@example.com', 'Sup3rS3cret!', 'dev', 'casemanager')
    assert 'Sup3rS3cret!' not in repr(credential)
    assert 'u@example.com' in repr(credential)
