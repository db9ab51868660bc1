"""
OpenAI-compatible provider for Ollama, LM Studio, vLLM, DashScope compatible
mode and other OpenAI-compatible APIs, called directly without the relay.
"""

import httpx
from typing import Optional

from yspeaking.providers.base import OpenAIFormatProvider
from yspeaking.services.request_executor import RequestExecutor


class OpenAICompatibleProvider(OpenAIFormatProvider):
    """Provider for OpenAI-compatible APIs.

    Accepts the base_url and name at runtime.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        base_url: str,
        name: str,
        client: Optional[httpx.AsyncClient] = None,
        executor: Optional[RequestExecutor] = None,
    ):
        """
        Initialize an OpenAI-compatible provider.

        Args:
            api_key: Optional API key (some local servers don't require auth)
            model: The model to use
            base_url: The base URL of the API (e.g., http://localhost:11434/v1)
            name: The unique name for this provider instance
            client: Optional preconfigured httpx client
            executor: Optional request executor for non-streaming calls
        """
        super().__init__(api_key, model, client=client, executor=executor)
        self.name = name
        self.base_url = base_url.rstrip("/")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"
