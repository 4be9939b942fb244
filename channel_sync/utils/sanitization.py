"""
Sanitization Utilities

1. Escaping values interpolated into XML / SOAP payloads
2. Redacting secrets before credentials or payloads reach logs or API responses
"""

import html
from typing import Any, Dict, Optional


SENSITIVE_KEYS = ("password", "secret", "token", "api_key", "apikey", "authorization")
REDACTED = "[REDACTED]"


def escape_xml(value: Optional[Any]) -> str:
    """
    Entity-escape a value for an XML text node or attribute.

    Replaces & < > " ' with their entities. None becomes an empty string.
    """
    if value is None:
        return ""

    if not isinstance(value, str):
        value = str(value)

    return html.escape(value, quote=True)


def redact(data: Any) -> Any:
    """Recursively replace values of sensitive keys with a placeholder"""
    if isinstance(data, dict):
        result = {}
        for k, v in data.items():
            if any(sk in str(k).lower() for sk in SENSITIVE_KEYS):
                result[k] = REDACTED
            else:
                result[k] = redact(v)
        return result
    elif isinstance(data, list):
        return [redact(item) for item in data]
    return data


def mask_credentials(credentials: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """
    Credentials as shown to operators: every key present, no value exposed.
    Non-secret identifiers keep their last 4 characters.
    """
    masked = {}
    for key, value in (credentials or {}).items():
        if value in (None, ""):
            masked[key] = ""
        elif any(sk in key.lower() for sk in SENSITIVE_KEYS):
            masked[key] = REDACTED
        else:
            text = str(value)
            masked[key] = "*" * max(len(text) - 4, 0) + text[-4:]
    return masked
