"""
Model provider integrations for planrunner.

WHAT THIS FILE DOES:
-------------------
Two layers:

1. ModelProvider subclasses (Anthropic, OpenAI, Ollama) talk to an LLM API
   over httpx; stream() yields the reply in chunks.

2. ChatClient wraps one provider in the chat contract the engine consumes:

       async for frame in chat.complete(prompt, history):
           ...   # frame == 'data: {"content": "..."}\\n\\n'

   The engine never looks at provider payloads. It accumulates the
   "content" fields of those Server-Sent-Events frames with collect_stream().

WHY SSE FRAMES:
--------------
Recovery and analysis prompts are answered through the same chat endpoint a
UI would use. Keeping the frame format means any chat backend that emits
`data: {"content": ...}` lines can be plugged in, not only these providers.
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import AsyncGenerator, AsyncIterable, Optional

import httpx


logger = logging.getLogger("planrunner.providers")

SSE_DONE = "[DONE]"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def extract_json_from_text(text: str) -> str:
    """
    Extract JSON from text that might have markdown code blocks or extra content.

    Models sometimes return:
        Here's the fix:
        ```json
        {"fixedContent": "..."}
        ```

    This extracts just the JSON part.
    """
    code_block_match = re.search(r'```(?:json)?\s*([\s\S]*?)```', text)
    if code_block_match:
        candidate = code_block_match.group(1).strip()
        if candidate.startswith("{") or candidate.startswith("["):
            return candidate

    json_match = re.search(r'(\{[\s\S]*\}|\[[\s\S]*\])', text)
    if json_match:
        return json_match.group(1)

    # Return original text and let JSON parser fail with good error
    return text


def _ollama_prompt(messages: list[dict], system: Optional[str]) -> str:
    """Flatten chat messages into Ollama's single-prompt format."""
    prompt = f"System: {system}\n\n" if system else ""
    for msg in messages:
        prompt += f"{msg['role'].capitalize()}: {msg['content']}\n\n"
    return prompt + "Assistant: "


# =============================================================================
# BASE PROVIDER CLASS
# =============================================================================

class ModelProvider(ABC):
    """
    Base class for model providers.

    Providers implement stream(), yielding text chunks of the reply.
    """

    model: str

    @abstractmethod
    async def stream(
        self,
        messages: list[dict],
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7
    ) -> AsyncGenerator[str, None]:
        """Stream a completion, yielding text chunks."""
        pass


# =============================================================================
# ANTHROPIC PROVIDER (Claude)
# =============================================================================

class AnthropicProvider(ModelProvider):
    """Anthropic Claude provider (Messages API)."""

    def __init__(self, model: str = "claude-sonnet-4-20250514", api_key: Optional[str] = None):
        self.model = model
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError("ANTHROPIC_API_KEY not set")
        self.base_url = "https://api.anthropic.com/v1"

    def _headers(self) -> dict:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json"
        }

    def _payload(self, messages, system, max_tokens, temperature) -> dict:
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages
        }
        if system:
            payload["system"] = system
        return payload

    async def stream(
        self,
        messages: list[dict],
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7
    ) -> AsyncGenerator[str, None]:
        payload = self._payload(messages, system, max_tokens, temperature)
        payload["stream"] = True

        async with httpx.AsyncClient() as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/messages",
                headers=self._headers(),
                json=payload,
                timeout=120.0
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if line.startswith("data: "):
                        data = json.loads(line[6:])
                        if data.get("type") == "content_block_delta":
                            yield data["delta"].get("text", "")


# =============================================================================
# OPENAI PROVIDER (GPT)
# =============================================================================

class OpenAIProvider(ModelProvider):
    """OpenAI chat-completions provider."""

    def __init__(self, model: str = "gpt-5.2", api_key: Optional[str] = None):
        self.model = model
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OPENAI_API_KEY not set")
        self.base_url = "https://api.openai.com/v1"

    def _get_token_param(self, max_tokens: int) -> dict:
        """GPT-5.x models use 'max_completion_tokens', older models use 'max_tokens'."""
        if self.model.startswith("gpt-5"):
            return {"max_completion_tokens": max_tokens}
        return {"max_tokens": max_tokens}

    def _payload(self, messages, system, max_tokens, temperature) -> dict:
        all_messages = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)
        return {
            "model": self.model,
            "messages": all_messages,
            "temperature": temperature,
            **self._get_token_param(max_tokens)
        }

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    async def stream(
        self,
        messages: list[dict],
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7
    ) -> AsyncGenerator[str, None]:
        payload = self._payload(messages, system, max_tokens, temperature)
        payload["stream"] = True

        async with httpx.AsyncClient() as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                headers=self._headers(),
                json=payload,
                timeout=120.0
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if line.startswith("data: ") and line != f"data: {SSE_DONE}":
                        data = json.loads(line[6:])
                        if not data.get("choices"):
                            continue
                        content = data["choices"][0]["delta"].get("content", "")
                        if content:
                            yield content


# =============================================================================
# OLLAMA PROVIDER (local models)
# =============================================================================

class OllamaProvider(ModelProvider):
    """Ollama local model provider (DeepSeek, Llama, etc.)."""

    def __init__(self, model: str = "deepseek-coder-v2:16b", base_url: str = "http://localhost:11434"):
        self.model = model
        self.base_url = base_url

    async def stream(
        self,
        messages: list[dict],
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7
    ) -> AsyncGenerator[str, None]:
        async with httpx.AsyncClient() as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/api/generate",
                json={
                    "model": self.model,
                    "prompt": _ollama_prompt(messages, system),
                    "options": {
                        "num_predict": max_tokens,
                        "temperature": temperature
                    },
                    "stream": True
                },
                timeout=300.0
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if line:
                        data = json.loads(line)
                        if "response" in data:
                            yield data["response"]


# =============================================================================
# FACTORY FUNCTION
# =============================================================================

def get_provider(config: dict, provider_name: str) -> ModelProvider:
    """
    Get a provider instance from config.

    Example config:
        models:
          claude:
            provider: "anthropic"
            model: "claude-sonnet-4-20250514"
          deepseek:
            provider: "ollama"
            model: "deepseek-coder-v2:16b"
    """
    provider_config = config.get("models", {}).get(provider_name, {})

    if not provider_config:
        available = list(config.get("models", {}).keys())
        raise ValueError(
            f"Model '{provider_name}' not found in config. "
            f"Available models: {', '.join(available) or 'none'}"
        )

    provider_type = provider_config.get("provider", "")

    if provider_type not in ("anthropic", "openai", "ollama"):
        raise ValueError(
            f"Model '{provider_name}' has invalid provider type: '{provider_type}'. "
            f"Must be one of: anthropic, openai, ollama"
        )

    if provider_type == "ollama":
        return OllamaProvider(
            model=provider_config.get("model", "deepseek-coder-v2:16b"),
            base_url=provider_config.get("base_url", "http://localhost:11434")
        )

    default_env = "ANTHROPIC_API_KEY" if provider_type == "anthropic" else "OPENAI_API_KEY"
    api_key_env = provider_config.get("api_key_env", default_env)
    api_key = os.environ.get(api_key_env)
    if not api_key:
        raise ValueError(
            f"Model '{provider_name}' requires {api_key_env} but it's not set"
        )

    if provider_type == "anthropic":
        return AnthropicProvider(
            model=provider_config.get("model", "claude-sonnet-4-20250514"),
            api_key=api_key
        )
    return OpenAIProvider(
        model=provider_config.get("model", "gpt-5.2"),
        api_key=api_key
    )


# =============================================================================
# CHAT CONTRACT
# =============================================================================

def sse_frame(content: str) -> str:
    """One Server-Sent-Events frame carrying a content chunk."""
    return f"data: {json.dumps({'content': content}, ensure_ascii=False)}\n\n"


class ChatClient:
    """
    Streams a provider's reply as SSE frames.

    Usage:
        chat = ChatClient(get_provider(config, "claude"))
        text = await collect_stream(chat.complete("Fix this file..."))
    """

    def __init__(
        self,
        provider: ModelProvider,
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.3
    ):
        self.provider = provider
        self.system = system
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def complete(
        self,
        prompt: str,
        history: Optional[list[dict]] = None
    ) -> AsyncGenerator[str, None]:
        """Yield `data: {"content": ...}` frames, then `data: [DONE]`."""
        messages = list(history or [])
        messages.append({"role": "user", "content": prompt})

        logger.debug(f"Chat request to {self.provider.model} ({len(prompt)} chars)")

        async for chunk in self.provider.stream(
            messages,
            system=self.system,
            max_tokens=self.max_tokens,
            temperature=self.temperature
        ):
            if chunk:
                yield sse_frame(chunk)

        yield f"data: {SSE_DONE}\n\n"


async def collect_stream(frames: AsyncIterable[str]) -> str:
    """
    Concatenate the "content" fields of an SSE frame stream.

    Frames may split lines arbitrarily; lines are reassembled before parsing.
    Lines that aren't `data: ` JSON objects (keep-alives, [DONE], garbage)
    are skipped.
    """
    buffer = ""
    parts: list[str] = []

    def consume(line: str) -> None:
        line = line.strip()
        if not line.startswith("data: "):
            return
        payload = line[6:]
        if payload == SSE_DONE:
            return
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            return
        if isinstance(data, dict) and data.get("content"):
            parts.append(str(data["content"]))

    async for frame in frames:
        buffer += frame
        *lines, buffer = buffer.split("\n")
        for line in lines:
            consume(line)

    if buffer:
        consume(buffer)

    return "".join(parts)
