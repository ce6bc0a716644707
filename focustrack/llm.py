"""Client for an OpenAI-compatible chat completions API.

Prompts go out as ``{"model", "messages", "stream": false}`` and the first
choice's message content comes back trimmed. Every failure (connection
error, timeout, non-2xx status, malformed JSON) is logged and reported as
``None``; callers decide what an absent answer means. One attempt per call,
no retries.

The API key is read from the environment variable named in the config
(``FOCUSTRACK_API_KEY`` by default), never stored in the config file.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

import requests

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://api.greenpt.ai/v1/chat/completions"
DEFAULT_MODEL = "green-l"
DEFAULT_API_KEY_ENV = "FOCUSTRACK_API_KEY"


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


class TextGenerator(Protocol):
    """Anything that turns chat messages into a reply (or None on failure)."""

    def complete(self, messages: Sequence[ChatMessage]) -> Optional[str]: ...


def user_prompt(prompt: str) -> List[ChatMessage]:
    return [ChatMessage(role="user", content=prompt)]


class ChatCompletionClient:
    """
    Calls a chat completions endpoint over HTTP.

    Attributes:
        endpoint: Full URL of the chat completions endpoint.
        model: Model identifier sent with each request.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        api_key_env: str = DEFAULT_API_KEY_ENV,
        timeout: float = 60,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            endpoint: Chat completions URL.
            model: Model identifier.
            api_key: Bearer token; falls back to the ``api_key_env`` variable.
            api_key_env: Environment variable holding the key.
            timeout: Request timeout in seconds.
            session: Optional requests session (connection reuse, testing).
        """
        self.endpoint = endpoint
        self.model = model
        self.api_key = api_key if api_key is not None else os.environ.get(api_key_env)
        self.timeout = timeout
        self._http = session or requests.Session()

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def complete(self, messages: Sequence[ChatMessage]) -> Optional[str]:
        """
        Send messages and return the first choice's content.

        Returns:
            The trimmed reply, or None if the call failed in any way.
        """
        payload = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "stream": False,
        }

        start_time = time.time()
        try:
            response = self._http.post(
                self.endpoint,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            logger.warning(f"Text generation timed out after {time.time() - start_time:.2f}s")
            return None
        except requests.exceptions.RequestException as e:
            logger.warning(f"Cannot reach text generation endpoint {self.endpoint}: {e}")
            return None

        if not 200 <= response.status_code < 300:
            logger.warning(f"Text generation error {response.status_code}: {response.text[:200]}")
            return None

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning(f"Malformed text generation response: {e}")
            return None
        if not isinstance(content, str):
            logger.warning("Text generation response content is not a string")
            return None

        logger.info(f"Text generation completed in {time.time() - start_time:.2f}s")
        return content.strip()

    def is_available(self) -> bool:
        """Probe the API's model listing next to the completions endpoint."""
        models_url = self.endpoint.rsplit("/chat/completions", 1)[0] + "/models"
        try:
            response = self._http.get(models_url, headers=self._headers(), timeout=5)
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as e:
            logger.warning(f"Text generation API check failed: {e}")
            return False

    def send_hello(self) -> Optional[str]:
        """Round-trip a trivial prompt (connectivity smoke test)."""
        return self.complete(user_prompt("Hello, how are you?"))
