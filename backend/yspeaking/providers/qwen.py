from typing import Optional

import httpx

from yspeaking.config import require_proxy_url, settings
from yspeaking.providers.base import OpenAIFormatProvider
from yspeaking.services.request_executor import RequestExecutor


class QwenProxyProvider(OpenAIFormatProvider):
    """Qwen models reached through the CORS relay.

    The relay holds the upstream credential, so no API key is sent from here.
    """

    name = "qwen"

    def __init__(
        self,
        model: Optional[str] = None,
        proxy_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        executor: Optional[RequestExecutor] = None,
    ):
        super().__init__(None, model or settings.qwen_model, client=client, executor=executor)
        self.proxy_url = proxy_url

    @property
    def endpoint(self) -> str:
        return self.proxy_url or require_proxy_url()
