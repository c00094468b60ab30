import logging
from typing import Any, Dict

import requests

from registration.errors import NetworkUnavailable, ServerError

logger = logging.getLogger(__name__)


def post(session: requests.Session, url: str, timeout: float, **kwargs) -> requests.Response:
    """POST once. Transport failures come back as NetworkUnavailable or ServerError."""
    try:
        return session.post(url, timeout=timeout, **kwargs)
    except (requests.ConnectionError, requests.Timeout) as e:
        logger.error("no response from %s: %s", url, e)
        raise NetworkUnavailable() from e
    except requests.RequestException as e:
        logger.error("request to %s could not be sent: %s", url, e)
        raise ServerError(f"Error setting up request: {e}") from e


def response_body(response: requests.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def is_success_status(status_code: int) -> bool:
    return 200 <= status_code < 300


def server_message(body: Dict[str, Any], default: str) -> str:
    msg = body.get("message")
    if isinstance(msg, str) and msg.strip():
        return msg.strip()
    return default
