# possync/terminal/transport.py
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from possync.core.exceptions import BatchRejectedError, ConfigurationError, TransportError

logger = logging.getLogger(__name__)

# model name -> (endpoint path, body key)
MODEL_ENDPOINTS: Dict[str, Tuple[str, str]] = {
    "user": ("/api/sync/users", "users"),
    "product": ("/api/sync/inventory", "products"),
    "sale": ("/api/sync/sales", "sales"),
}
CLEANUP_PATH = "/api/sync/cleanup-placeholders"
TERMINAL_ID_HEADER = "X-Terminal-Id"

# 4xx codes that still mean "try again later"
RETRYABLE_STATUS = {408, 425, 429}

def endpoint_for(model_name: str) -> Tuple[str, str]:
    try:
        return MODEL_ENDPOINTS[model_name]
    except KeyError:
        raise ConfigurationError(f"No sync endpoint for model '{model_name}'")

def _response_detail(response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]

class CentralClient:
    """
    HTTP transport to the central service.

    `session` is anything with a requests-style `post(url, json=..., headers=..., timeout=...)`;
    a `requests.Session` by default.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        terminal_id: Optional[str] = None,
        session=None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.terminal_id = terminal_id
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config, session=None) -> "CentralClient":
        return cls(
            config.endpoint_url,
            timeout=config.request_timeout,
            terminal_id=config.terminal_id,
            session=session
        )

    def post_batch(self, model_name: str, records: List[Dict[str, Any]]) -> Dict[str, Any]:
        path, key = endpoint_for(model_name)
        body: Dict[str, Any] = {key: records}
        if self.terminal_id:
            body["terminalId"] = self.terminal_id
        return self._post(path, body)

    def trigger_cleanup(self) -> Dict[str, Any]:
        return self._post(CLEANUP_PATH, None)

    def _headers(self) -> Dict[str, str]:
        return {TERMINAL_ID_HEADER: self.terminal_id} if self.terminal_id else {}

    def _post(self, path: str, body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(url, json=body, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"POST {path} failed: {e}") from e

        status = response.status_code
        if status >= 500 or status in RETRYABLE_STATUS:
            raise TransportError(
                f"POST {path} returned {status}",
                code=str(status),
                details={"response": _response_detail(response)}
            )
        if status >= 400:
            raise BatchRejectedError(
                f"POST {path} rejected with {status}: {_response_detail(response)}",
                status_code=status,
                details={"response": _response_detail(response)}
            )

        logger.debug(f"POST {path} -> {status}")
        try:
            return response.json()
        except ValueError:
            return {}
