"""
Google Gemini LLM
Text generation through the google-genai SDK (Gemini and Gemma models)
"""
from typing import List, Optional, Tuple
import logging

from .base import BaseLLM, Message, MessageRole, LLMResponse


logger = logging.getLogger(__name__)


class GeminiLLM(BaseLLM):
    """
    Google Gemini LLM

    Supported models include:
    - gemini-2.5-flash (default)
    - gemini-2.5-pro
    - gemma-3-27b-it (no native JSON mode; JSON is requested in the prompt)
    """

    def __init__(
        self,
        model: str = "gemini-2.5-flash",
        api_key: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        timeout: float = 60.0,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key
        self._client = None

    @property
    def provider(self) -> str:
        return "gemini"

    def _get_client(self):
        """Lazily built SDK client"""
        if self._client is None:
            from google import genai
            from google.genai import types

            self._client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
            )
        return self._client

    def _convert_messages(self, messages: List[Message]) -> Tuple[Optional[str], list]:
        """
        Split into (system_instruction, contents)

        Gemini has no system role inside contents; assistant turns map to "model".
        """
        from google.genai import types

        system_parts = []
        contents = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_parts.append(msg.content)
                continue
            role = "model" if msg.role == MessageRole.ASSISTANT else "user"
            contents.append(types.Content(role=role, parts=[types.Part(text=msg.content)]))

        system_instruction = "\n\n".join(system_parts) if system_parts else None
        return system_instruction, contents

    async def acomplete(
        self,
        messages: List[Message],
        *,
        json_mode: bool = False,
        **kwargs,
    ) -> LLMResponse:
        """Generate a response"""
        from google.genai import types

        client = self._get_client()
        system_instruction, contents = self._convert_messages(messages)

        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=kwargs.get("temperature", self.temperature),
            max_output_tokens=kwargs.get("max_tokens", self.max_tokens),
            response_mime_type="application/json" if json_mode and not self.model.startswith("gemma") else None,
        )

        response = await client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=config,
        )

        usage = {}
        meta = getattr(response, "usage_metadata", None)
        if meta is not None:
            usage = {
                "prompt_tokens": meta.prompt_token_count or 0,
                "completion_tokens": meta.candidates_token_count or 0,
                "total_tokens": meta.total_token_count or 0,
            }

        finish_reason = None
        if response.candidates and response.candidates[0].finish_reason is not None:
            finish_reason = str(response.candidates[0].finish_reason)

        return LLMResponse(
            content=response.text or "",
            model=self.model,
            usage=usage,
            finish_reason=finish_reason,
            raw_response=response,
        )

    async def aclose(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return
        aclose = getattr(client.aio, "aclose", None)
        if callable(aclose):
            await aclose()
