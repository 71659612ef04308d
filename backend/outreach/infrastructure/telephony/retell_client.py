"""
Retell Call Origination Client
Creates outbound phone calls via the Retell voice-AI REST API
"""
import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from outreach.domain.errors import UpstreamProviderError
from outreach.domain.interfaces.voice_provider import VoiceProvider

logger = logging.getLogger(__name__)


class RetellClient(VoiceProvider):
    """
    Retell API client for outbound call creation.

    Responsibilities:
    - POST /v2/create-phone-call with agent override and dynamic variables
    - Translate HTTP/transport failures into UpstreamProviderError

    Without an API key calls are simulated (development only).
    """

    CREATE_CALL_PATH = "/v2/create-phone-call"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = "https://api.retellai.com",
        timeout: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = http_client

        if not self._api_key:
            logger.warning("Retell API key not configured - calls will be simulated")

    @property
    def name(self) -> str:
        return "retell"

    @property
    def is_simulated(self) -> bool:
        return not self._api_key

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def create_phone_call(
        self,
        to_number: str,
        from_number: Optional[str],
        agent_id: Optional[str],
        dynamic_variables: Dict[str, str],
        metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Create an outbound call.

        Args:
            to_number: Destination phone number (normalized to E.164)
            from_number: Organization caller ID
            agent_id: Campaign agent (override_agent_id)
            dynamic_variables: retell_llm_dynamic_variables
            metadata: Correlation data echoed in webhooks

        Returns:
            Retell call object (contains call_id)
        """
        to_number = self._normalize_number(to_number)

        if self.is_simulated:
            call_id = f"sim_{uuid.uuid4().hex}"
            logger.warning(f"Retell not configured - simulating call {call_id} to {to_number}")
            return {"call_id": call_id, "call_status": "registered", "metadata": metadata}

        if not from_number:
            raise UpstreamProviderError("No from_number configured for organization")

        body: Dict[str, Any] = {
            "from_number": self._normalize_number(from_number),
            "to_number": to_number,
            "retell_llm_dynamic_variables": dynamic_variables,
            "metadata": metadata,
        }
        if agent_id:
            body["override_agent_id"] = agent_id

        logger.info(f"Initiating call: {body['from_number']} -> {to_number} (agent={agent_id})")

        try:
            response = await self._get_client().post(self.CREATE_CALL_PATH, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = e.response.text[:500] if e.response is not None else str(e)
            logger.error(f"Retell rejected call to {to_number}: {e.response.status_code} {message}")
            raise UpstreamProviderError(f"Retell API error {e.response.status_code}: {message}") from e
        except httpx.HTTPError as e:
            logger.error(f"Retell request failed: {e}")
            raise UpstreamProviderError(f"Retell request failed: {e}") from e

        return response.json()

    def _normalize_number(self, number: str) -> str:
        """
        Normalize phone number to E.164 format.

        Args:
            number: Phone number in various formats

        Returns:
            Normalized number
        """
        number = number.strip().replace(" ", "").replace("-", "").replace("(", "").replace(")", "").replace(".", "")

        # Assume US/Canada when the country code is missing
        if not number.startswith("+"):
            if len(number) == 10:
                number = "+1" + number
            else:
                number = "+" + number

        return number

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
