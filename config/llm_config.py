"""
LLM Configuration for Mind Map Platform

OpenAI-compatible chat completion client used by the idea pipeline.
One synchronous request per call, bounded by a timeout, never retried.
"""

from __future__ import annotations

import logging
import requests
from typing import Dict, List, Optional, Any
from dataclasses import dataclass

from core.exceptions import UpstreamError, NoCredential
from .app_config import LLMConfig, get_config

logger = logging.getLogger(__name__)


@dataclass
class LLMEndpoint:
    """Chat completion endpoint configuration"""
    name: str
    api_base: str
    model: str
    timeout: float = 60.0


class LLMClient:
    """
    LLM chat completion client

    The API key is passed per call, since it is resolved per user.
    """

    def __init__(self, config: Optional[LLMConfig] = None, session: Optional[requests.Session] = None):
        """
        Initialize the client

        Args:
            config: LLM settings. Uses the global configuration when omitted.
            session: Optional requests session (connection reuse, testing)
        """
        self.config = config or get_config().llm
        self.endpoint = LLMEndpoint(
            name=self.config.service,
            api_base=self.config.api_base,
            model=self.config.model,
            timeout=self.config.timeout_seconds,
        )
        self.http = session or requests.Session()

    def completion(
        self,
        messages: List[Dict[str, str]],
        api_key: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Execute LLM completion

        Args:
            messages: Message list (role/content dicts)
            api_key: Bearer credential for this call
            model: Override the configured model
            temperature: Override the configured temperature
            max_tokens: Override the configured output token cap

        Returns:
            Dict with `content`, `model`, `usage` and `raw_response`

        Raises:
            NoCredential: api_key is empty
            UpstreamError: transport failure, timeout, non-2xx status or
                a body without `choices[0].message.content`
        """
        if not api_key:
            raise NoCredential("No API key provided")

        model_id = model or self.endpoint.model
        url = f"{self.endpoint.api_base.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json"
        }
        payload = {
            "model": model_id,
            "messages": messages,
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": self.config.max_tokens if max_tokens is None else max_tokens,
        }

        logger.info(f"Sending chat completion request: model={model_id}")
        try:
            response = self.http.post(url, headers=headers, json=payload, timeout=self.endpoint.timeout)
        except requests.Timeout as e:
            raise UpstreamError(f"LLM request timed out after {self.endpoint.timeout}s: {e}") from e
        except requests.RequestException as e:
            raise UpstreamError(f"Cannot connect to LLM: {e}") from e

        if not 200 <= response.status_code < 300:
            logger.error(f"LLM API error: {response.status_code}")
            raise UpstreamError(
                f"LLM API error: {response.status_code} - {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(f"LLM returned a non-JSON body: {e}", status_code=response.status_code) from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise UpstreamError("No ideas generated", status_code=response.status_code)
        if not isinstance(choices, list) or not isinstance(choices[0], dict):
            raise UpstreamError("LLM response has malformed choices", status_code=response.status_code)

        message = choices[0].get("message")
        if not isinstance(message, dict):
            raise UpstreamError("LLM response is missing message content", status_code=response.status_code)
        content = message.get("content")
        if not isinstance(content, str):
            raise UpstreamError("LLM response is missing message content", status_code=response.status_code)

        return {
            "content": content,
            "model": data.get("model", model_id),
            "usage": data.get("usage", {}),
            "raw_response": data
        }


# Global instance
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get LLM client instance"""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
