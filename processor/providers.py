"""Language-model providers used by the AI parser."""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from processor.errors import ProviderError, response_error_message

logger = logging.getLogger(__name__)


class AIProvider(ABC):
    """Completion interface shared by all language-model providers."""

    name = 'provider'
    TEMPERATURE = 0.1
    MAX_TOKENS = 2000

    def __init__(self, api_key: str, model: str, timeout: int = 30):
        """
        Initialize the provider.

        Args:
            api_key: Provider API key
            model: Model identifier
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    async def complete(self, prompt: str, system_prompt: str) -> str:
        """
        Send one prompt to the provider and return the text of its reply.

        Raises:
            ProviderError: On transport failure, non-2xx status or a
                response without content
        """
        return await asyncio.to_thread(self._complete, prompt, system_prompt)

    @abstractmethod
    def _complete(self, prompt: str, system_prompt: str) -> str:
        """Blocking implementation of complete()."""

    def _post(self, url: str, payload: Dict[str, Any],
              headers: Dict[str, str], params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        logger.info(f"Sending request to {self.name} model {self.model}")
        try:
            response = requests.post(
                url,
                json=payload,
                headers=headers,
                params=params,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise ProviderError(f"{self.name} request failed: {e}") from e

        if not response.ok:
            raise ProviderError(
                f"{self.name} API error: {response.status_code} {response.reason} - "
                f"{response_error_message(response) or 'Unknown error'}",
                status_code=response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{self.name} returned a non-JSON response") from e


class OpenAIProvider(AIProvider):
    """OpenAI chat-completion provider."""

    name = 'OpenAI'
    API_URL = 'https://api.openai.com/v1/chat/completions'
    DEFAULT_MODEL = 'gpt-3.5-turbo'

    def _complete(self, prompt: str, system_prompt: str) -> str:
        payload = {
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': system_prompt},
                {'role': 'user', 'content': prompt}
            ],
            'temperature': self.TEMPERATURE,
            'max_tokens': self.MAX_TOKENS
        }
        headers = {
            'Authorization': f"Bearer {self.api_key}",
            'Content-Type': 'application/json'
        }
        data = self._post(self.API_URL, payload, headers)

        try:
            content = data['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise ProviderError('No response from OpenAI')
        return content


class GeminiProvider(AIProvider):
    """Google Gemini generate-content provider."""

    name = 'Gemini'
    API_URL = 'https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent'
    DEFAULT_MODEL = 'gemini-pro'

    def _complete(self, prompt: str, system_prompt: str) -> str:
        payload = {
            'contents': [{
                'parts': [{'text': f"{system_prompt}\n\n{prompt}"}]
            }],
            'generationConfig': {
                'temperature': self.TEMPERATURE,
                'maxOutputTokens': self.MAX_TOKENS
            }
        }
        data = self._post(
            self.API_URL.format(model=self.model),
            payload,
            headers={'Content-Type': 'application/json'},
            params={'key': self.api_key}
        )

        try:
            content = data['candidates'][0]['content']['parts'][0]['text']
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise ProviderError('No response from Gemini')
        return content


def create_ai_provider(openai_api_key: Optional[str] = None,
                       gemini_api_key: Optional[str] = None,
                       openai_model: Optional[str] = None,
                       gemini_model: Optional[str] = None,
                       timeout: int = 30) -> Optional[AIProvider]:
    """
    Select the AI provider from whichever credential is present.

    OpenAI is preferred when both keys are set.

    Returns:
        Configured provider, or None when no key is available
    """
    if openai_api_key:
        return OpenAIProvider(
            openai_api_key, openai_model or OpenAIProvider.DEFAULT_MODEL, timeout
        )
    if gemini_api_key:
        return GeminiProvider(
            gemini_api_key, gemini_model or GeminiProvider.DEFAULT_MODEL, timeout
        )

    logger.info("No AI provider key configured")
    return None
