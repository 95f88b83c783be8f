"""
Salesforce REST API client.
OAuth2 client-credentials flow plus SOQL and sObject CRUD calls.
"""
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from harness_errors import SalesforceApiError
from logging_utils import log_api_error, log_safe, sanitized_response_body
from secrets_utils import fetch_salesforce_oauth_creds


API_VERSION = 'v60.0'
REQUEST_TIMEOUT = 30


class SalesforceApiClient:
    """Server-to-server Salesforce client. Authenticates on first use."""

    def __init__(self, client_id: str, client_secret: str, org_url: str,
                 session: Optional[requests.Session] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.org_url = org_url.rstrip('/')
        self._session = session or requests.Session()
        self.access_token: Optional[str] = None
        self.instance_url: Optional[str] = None

    @classmethod
    def create(cls, secret_id: Optional[str] = None) -> 'SalesforceApiClient':
        """Build a client from the connected-app secret."""
        creds = fetch_salesforce_oauth_creds(secret_id)
        return cls(creds['client_id'], creds['client_secret'], creds['org_url'])

    def authenticate(self) -> None:
        try:
            response = self._session.post(
                f"{self.org_url}/services/oauth2/token",
                data={
                    'grant_type': 'client_credentials',
                    'client_id': self.client_id,
                    'client_secret': self.client_secret,
                },
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise SalesforceApiError(f"Authentication failed: {e}") from e

        if response.status_code != 200:
            log_api_error('sf_token', response.status_code)
            detail = sanitized_response_body(response)
            log_safe('[Salesforce] Token error response', detail)
            raise SalesforceApiError(f"Auth failed: {detail}", response.status_code)

        data = response.json()
        self.access_token = data.get('access_token')
        self.instance_url = (data.get('instance_url') or self.org_url).rstrip('/')
        if not self.access_token:
            raise SalesforceApiError('Auth response missing access_token')

    def _request(self, method: str, path: str, operation: str, **kwargs) -> requests.Response:
        if not self.access_token:
            self.authenticate()

        headers = {
            'Authorization': f"Bearer {self.access_token}",
            'Content-Type': 'application/json',
        }
        headers.update(kwargs.pop('headers', {}))

        url = f"{self.instance_url}/services/data/{API_VERSION}{path}"
        try:
            response = self._session.request(method, url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            raise SalesforceApiError(f"{operation} failed: {e}") from e

        if response.status_code >= 400:
            log_api_error(operation, response.status_code)
            detail = sanitized_response_body(response)
            log_safe(f"[Salesforce] {operation} error response", detail)
            raise SalesforceApiError(f"{operation} failed: {detail}", response.status_code)
        return response

    def execute_query(self, soql: str) -> List[Dict[str, Any]]:
        """
        Run a SOQL query.

        Args:
            soql: Query text

        Returns:
            The 'records' array (first page only)
        """
        response = self._request('GET', f"/query?q={quote(soql)}", 'soql_query')
        return response.json().get('records') or []

    def create_record(self, sobject_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a record; duplicate rules are told to allow the save."""
        response = self._request(
            'POST', f"/sobjects/{sobject_type}", 'create_record', json=data,
            headers={'Sforce-Duplicate-Rule-Header': 'allowSave=true'},
        )
        return response.json()

    def get_record(self, sobject_type: str, record_id: str, fields: Optional[List[str]] = None) -> Dict[str, Any]:
        params = {'fields': ','.join(fields)} if fields else None
        response = self._request('GET', f"/sobjects/{sobject_type}/{record_id}", 'get_record', params=params)
        return response.json()

    def update_record(self, sobject_type: str, record_id: str, data: Dict[str, Any]) -> None:
        self._request('PATCH', f"/sobjects/{sobject_type}/{record_id}", 'update_record', json=data)

    def delete_record(self, sobject_type: str, record_id: str) -> None:
        self._request('DELETE', f"/sobjects/{sobject_type}/{record_id}", 'delete_record')
