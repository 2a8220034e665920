"""
Employee directory collaborator.

Assignment needs to know which employees currently belong to the caller's
company. The user service answers that for the bearer token it is given.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol, Set

import httpx

from exam_engine.core.config import settings
from exam_engine.core.errors import UpstreamError

logger = logging.getLogger(__name__)


class EmployeeDirectory(Protocol):
    def lookup_employees_for_company(self) -> List[Dict[str, Any]]:
        ...


def employee_ids(directory: EmployeeDirectory) -> Set[str]:
    ids = set()
    for row in directory.lookup_employees_for_company():
        if not isinstance(row, dict) or row.get("id") is None:
            raise UpstreamError("Employee directory returned a malformed entry")
        ids.add(str(row["id"]))
    return ids


class HttpEmployeeDirectory:
    """Lists the caller's company employees through the user service."""

    def __init__(self, token: str, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 client: Optional[httpx.Client] = None):
        self.token = token
        self.base_url = (base_url or settings.USER_SERVICE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.USER_SERVICE_TIMEOUT
        self._client = client

    def lookup_employees_for_company(self) -> List[Dict[str, Any]]:
        url = f"{self.base_url}{settings.USER_SERVICE_EMPLOYEES_PATH}"
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            if self._client is not None:
                r = self._client.get(url, headers=headers, timeout=self.timeout)
            else:
                r = httpx.get(url, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            payload = r.json()
        except httpx.HTTPStatusError as e:
            logger.error("Employee lookup failed with status %s", e.response.status_code)
            raise UpstreamError("Employee directory unavailable") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Employee lookup failed: %s", e)
            raise UpstreamError("Employee directory unavailable") from e
        # Some deployments wrap the list in an envelope.
        if isinstance(payload, dict):
            payload = payload.get("data")
        if not isinstance(payload, list):
            raise UpstreamError("Employee directory returned a malformed response")
        return payload
