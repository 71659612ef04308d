"""
Voice Provider Interface
Abstract base class for voice-AI call providers
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class VoiceProvider(ABC):
    """Abstract base class for voice-AI providers"""

    @abstractmethod
    async def create_phone_call(
        self,
        to_number: str,
        from_number: Optional[str],
        agent_id: Optional[str],
        dynamic_variables: Dict[str, str],
        metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Create an outbound phone call.

        Args:
            to_number: Destination phone number
            from_number: Caller ID number
            agent_id: Voice agent override
            dynamic_variables: String variables injected into the agent prompt
            metadata: Correlation data echoed back in webhooks

        Returns:
            Provider call payload; must contain "call_id"

        Raises:
            UpstreamProviderError: If the provider rejects the request
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release resources"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
