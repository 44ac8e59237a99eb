"""
HTTP client for the Molted marketplace API
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from molted.errors import AuthError, MoltedError, NetworkError, ValidationError
from molted.payments import PAYMENT_HEADER

logger = structlog.get_logger()


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return default


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    """Decode a success or 402 body; anything but a JSON object is a network fault"""
    try:
        data = response.json()
    except ValueError as e:
        raise NetworkError(
            f"Invalid response from API (status {response.status_code}): expected JSON"
        ) from e
    if not isinstance(data, dict):
        raise NetworkError(f"Invalid response from API (status {response.status_code}): expected a JSON object")
    return data


class ApiClient:
    """
    Thin async wrapper around the marketplace endpoints.

    A 402 is not an error here: approve() returns the Payment Required body
    so the payment orchestrator can act on it.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        require_auth: bool = False,
    ) -> Dict[str, Any]:
        request_headers = dict(headers or {})
        if require_auth:
            if not self.api_key:
                raise AuthError("API key required but not provided")
            request_headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = await self.client.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers=request_headers,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {self.base_url}{path} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Failed to connect to API at {self.base_url}: {e}") from e

        if response.status_code == 401:
            raise AuthError("Invalid API key or unauthorized")

        if response.status_code == 403:
            raise AuthError(_error_message(response, "Access forbidden"))

        if response.status_code == 402:
            logger.debug("payment_required_response", path=path)
            return _json_body(response)

        if response.status_code == 400:
            try:
                data = response.json()
            except ValueError:
                data = {}
            raise ValidationError(data.get("error") or "Validation failed", data.get("details"))

        if response.status_code == 404:
            raise NetworkError(_error_message(response, "Resource not found"))

        if response.status_code == 409:
            raise MoltedError(_error_message(response, "Conflict"))

        if not response.is_success:
            raise NetworkError(
                _error_message(response, f"Request failed with status {response.status_code}")
            )

        return _json_body(response)

    async def health(self) -> Dict[str, Any]:
        return await self._request("GET", "/health")

    async def submit_completion(self, job_id: str, proof_text: str) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/complete",
            json={"job_id": job_id, "proof_text": proof_text},
            require_auth=True,
        )

    async def approve(
        self,
        job_id: str,
        approved: bool,
        payment_proof: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        POST /approve, optionally carrying a payment proof in the x-payment header.
        Returns either the approval result or the 402 Payment Required body.
        """
        headers = {PAYMENT_HEADER: payment_proof} if payment_proof else None
        return await self._request(
            "POST",
            "/approve",
            json={"job_id": job_id, "approved": approved},
            headers=headers,
            require_auth=True,
        )

    async def close(self):
        if self._owns_client:
            await self.client.aclose()
