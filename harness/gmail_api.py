"""
Gmail REST API operations for the shared OTP inbox.
Handles the refresh-token exchange, message listing and message fetch.
"""
import base64
import threading
from typing import Any, Dict, List, Optional

import requests

from harness_errors import MailboxAuthError, MailboxTransientError
from logging_utils import log_api_error, log_safe, sanitized_response_body


TOKEN_URL = 'https://oauth2.googleapis.com/token'
GMAIL_API = 'https://gmail.googleapis.com/gmail/v1/users/me'
REQUEST_TIMEOUT = 15


def _decode(data: str) -> str:
    padded = data + '=' * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode('ascii')).decode('utf-8', errors='replace')


def extract_body(payload: Optional[Dict[str, Any]]) -> str:
    """
    Get the plain-text body of a Gmail message payload.

    Prefers the first text/plain part (searching nested multiparts), then
    falls back to the payload's own body.

    Args:
        payload: 'payload' object from messages.get?format=full

    Returns:
        Decoded body text, or '' when none is present
    """
    if not payload:
        return ''

    for part in payload.get('parts') or []:
        if part.get('mimeType') == 'text/plain' and (part.get('body') or {}).get('data'):
            return _decode(part['body']['data'])
        if part.get('parts'):
            nested = extract_body({'parts': part['parts']})
            if nested:
                return nested

    data = (payload.get('body') or {}).get('data')
    if data:
        return _decode(data)

    return ''


class GmailMailbox:
    """
    Read-only view of the shared inbox.

    The access token is cached and shared by every caller of this instance.
    """

    def __init__(self, client_id: str, client_secret: str, refresh_token: str,
                 session: Optional[requests.Session] = None):
        if not client_id or not client_secret:
            raise MailboxAuthError('Google clientId/clientSecret required')
        if not refresh_token:
            raise MailboxAuthError('Google refreshToken required, regenerate it in AWS Secrets Manager')

        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._session = session or requests.Session()
        self._token_lock = threading.Lock()
        self._access_token: Optional[str] = None

    def _get_access_token(self) -> str:
        with self._token_lock:
            if self._access_token:
                return self._access_token

            try:
                response = self._session.post(TOKEN_URL, data={
                    'client_id': self._client_id,
                    'client_secret': self._client_secret,
                    'refresh_token': self._refresh_token,
                    'grant_type': 'refresh_token',
                }, timeout=REQUEST_TIMEOUT)
            except requests.RequestException as e:
                raise MailboxTransientError(f"Token refresh failed: {e}") from e

            if response.status_code == 200:
                self._access_token = response.json().get('access_token')
                if not self._access_token:
                    raise MailboxTransientError('Token response missing access_token')
                return self._access_token

            detail = sanitized_response_body(response)
            error_code = detail.get('error') if isinstance(detail, dict) else None

            log_api_error('gmail_token_refresh', response.status_code, error_code)
            log_safe('[Gmail] Token refresh error response', detail)
            if error_code == 'invalid_grant':
                print('[Gmail] CRITICAL: refresh token is INVALID or EXPIRED. Re-authorize the app and '
                      'update the gmailRefreshToken secret.')
                raise MailboxAuthError('Gmail token invalid: invalid_grant')
            raise MailboxTransientError(f"Token refresh failed with HTTP {response.status_code}")

    def _get(self, path: str, params: Dict[str, Any], operation: str) -> Dict[str, Any]:
        headers = {'Authorization': f"Bearer {self._get_access_token()}"}
        try:
            response = self._session.get(f"{GMAIL_API}/{path}", headers=headers, params=params,
                                         timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise MailboxTransientError(f"Gmail {operation} failed: {e}") from e

        if response.status_code == 200:
            return response.json()

        if response.status_code == 401:
            with self._token_lock:
                self._access_token = None

        log_api_error(operation, response.status_code)
        log_safe(f"[Gmail] {operation} error response", sanitized_response_body(response))
        raise MailboxTransientError(f"Gmail {operation} failed with HTTP {response.status_code}")

    def list_recent_matching(self, query: str, max_results: int = 10) -> List[str]:
        """
        List ids of the newest messages matching a search query.

        Args:
            query: Gmail search query
            max_results: Maximum number of ids to return

        Returns:
            Message ids, newest first (Gmail order)
        """
        data = self._get('messages', {'q': query, 'maxResults': max_results}, 'gmail_list')
        return [m['id'] for m in data.get('messages') or [] if m.get('id')]

    def get_full_message(self, message_id: str) -> Dict[str, Any]:
        """
        Fetch one message.

        Returns:
            Dict with id, payload and internalDate (epoch milliseconds, int)
        """
        data = self._get(f"messages/{message_id}", {'format': 'full'}, 'gmail_get')
        return {
            'id': data.get('id', message_id),
            'payload': data.get('payload'),
            'internalDate': int(data.get('internalDate') or 0),
        }
