"""
Logging utilities with sensitive data sanitization.
"""
import re
import json
from typing import Any


# Sensitive keys that should be redacted
SENSITIVE_KEYS = {
    'password', 'otp', 'code', 'token', 'secret',
    'authorization', 'access_token', 'refresh_token',
    'client_secret', 'gmailclientsecret', 'gmailrefreshtoken',
    'salesforceclientsecret', 'cookies', 'api_key', 'private_key'
}


def sanitize_for_logging(data: Any) -> Any:
    """
    Sanitize sensitive data before logging.

    Recursively processes dictionaries, lists, and strings to remove
    passwords, tokens and verification codes.

    Args:
        data: Data to sanitize (dict, str, list, or other types)

    Returns:
        Sanitized data safe for logging
    """
    if isinstance(data, dict):
        sanitized = {}
        for key, value in data.items():
            if str(key).lower() in SENSITIVE_KEYS:
                sanitized[key] = '***REDACTED***'
            elif isinstance(value, (dict, list)):
                sanitized[key] = sanitize_for_logging(value)
            elif isinstance(value, str):
                sanitized[key] = sanitize_string(value)
            else:
                sanitized[key] = value
        return sanitized

    elif isinstance(data, list):
        return [sanitize_for_logging(item) for item in data]

    elif isinstance(data, str):
        return sanitize_string(data)

    return data


def sanitize_string(text: str) -> str:
    """
    Sanitize sensitive patterns in strings.

    Email addresses are left intact: usernames are the only way to follow a
    worker's identity through the logs.

    Args:
        text: String to sanitize

    Returns:
        Sanitized string with sensitive patterns redacted
    """
    if not isinstance(text, str):
        return text

    # Bearer / OAuth access tokens
    text = re.sub(
        r'Bearer\s+[A-Za-z0-9._~+/=!-]+',
        'Bearer ***TOKEN***',
        text
    )

    # Google refresh tokens (1//...) and access tokens (ya29....)
    text = re.sub(r'\b1//[A-Za-z0-9_-]{20,}', '***REFRESH_TOKEN***', text)
    text = re.sub(r'\bya29\.[A-Za-z0-9._-]+', '***TOKEN***', text)

    # AWS access keys
    text = re.sub(
        r'(AKIA|ASIA)[0-9A-Z]{16}',
        '***AWS_KEY***',
        text
    )

    # Verification codes (6 digit numbers in isolation)
    text = re.sub(
        r'\b\d{6}\b',
        '***CODE***',
        text
    )

    return text


def mask_otp(otp: str) -> str:
    """Show the first two digits of a code and hide the rest."""
    if not otp:
        return ''
    return otp[:2] + '*' * max(len(otp) - 2, 0)


def log_safe(message: str, data: Any = None) -> None:
    """
    Log a message with automatically sanitized data.

    Args:
        message: Log message
        data: Optional data to include (will be sanitized)
    """
    if data is not None:
        sanitized_data = sanitize_for_logging(data)
        if isinstance(sanitized_data, (dict, list)):
            print(f"{message}: {json.dumps(sanitized_data, default=str)}")
        else:
            print(f"{message}: {sanitized_data}")
    else:
        print(message)


def sanitized_response_body(response) -> Any:
    """
    Decode an HTTP error response body for logging, with secrets redacted.

    Args:
        response: requests.Response (or anything with json() and text)

    Returns:
        Sanitized JSON body, or sanitized text when the body is not JSON
    """
    try:
        body = response.json()
    except ValueError:
        body = getattr(response, 'text', '') or ''
    return sanitize_for_logging(body)


def log_api_error(operation: str, status_code: int, error_code: str = None) -> None:
    """
    Log REST API errors without exposing response bodies.

    Args:
        operation: Operation that failed (e.g., "gmail_list", "soql_query")
        status_code: HTTP status code
        error_code: Provider error code if available
    """
    error_info = {
        'operation': operation,
        'status_code': status_code,
        'error_code': error_code
    }
    print(f"API error: {json.dumps(error_info)}")
