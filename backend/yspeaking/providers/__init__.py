from yspeaking.providers.base import BaseProvider, OpenAIFormatProvider
from yspeaking.providers.openai_compatible import OpenAICompatibleProvider
from yspeaking.providers.qwen import QwenProxyProvider

__all__ = ["BaseProvider", "OpenAIFormatProvider", "OpenAICompatibleProvider", "QwenProxyProvider"]
