"""
AI extraction client for the Scholarship Pipeline.

This module asks an OpenAI-compatible chat completions endpoint (Groq by
default) to extract a scholarship from page text. The reply is returned as
an untrusted mapping; the extraction engine validates and coerces it.
"""

import json
import re
from typing import Any, Dict, Optional

import requests

from scholarship_pipeline.utils import DEFAULT_AI_API_URL, DEFAULT_AI_MODEL, get_logger


# Module logger
logger = get_logger("ai")

DEFAULT_TIMEOUT = 30  # seconds
MAX_PAGE_CHARS = 12000

SYSTEM_PROMPT = (
    "You are a precise scholarship information extractor. Extract ONLY "
    "information that is explicitly stated in the provided page text. Never "
    "guess, infer or invent values."
)

USER_PROMPT_TEMPLATE = """Extract the scholarship described on the page at {url}.

Reply with a single JSON object and nothing else, in this shape:
{{
  "is_scholarship": true,
  "name": "Full scholarship name",
  "deadline": "Application deadline as written",
  "amount": "Award amount as written, with currency",
  "description": "One or two sentence summary",
  "requirements": ["Each eligibility requirement"]
}}

Rules:
- If a field is not stated on the page, use exactly "Not specified". Do not fabricate values.
- If the page is not about a scholarship, grant, award or fellowship, reply {{"is_scholarship": false}}.

PAGE TEXT:
{page_text}
"""


class AIUnavailableError(Exception):
    """Raised when the AI endpoint cannot produce a usable reply."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def create_ai_session(api_key: str) -> requests.Session:
    """
    Create a requests session configured for the AI endpoint.

    Args:
        api_key: Bearer token for the endpoint.

    Returns:
        Configured requests.Session instance.
    """
    session = requests.Session()
    session.headers.update({
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "User-Agent": "ScholarshipPipeline/1.0"
    })
    return session


def build_messages(url: str, page_text: str, max_chars: int = MAX_PAGE_CHARS) -> list:
    """Build the chat messages for one extraction request."""
    text = (page_text or "")[:max_chars]
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": USER_PROMPT_TEMPLATE.format(url=url, page_text=text)},
    ]


def parse_reply(content: str) -> Dict[str, Any]:
    """
    Parse the model's reply into a mapping.

    Tolerates Markdown code fences and text around the JSON object.

    Raises:
        AIUnavailableError: If no JSON object can be read.
    """
    if not content or not content.strip():
        raise AIUnavailableError("Empty reply from AI")

    text = content.strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise AIUnavailableError("Malformed JSON in AI reply")
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise AIUnavailableError(f"Malformed JSON in AI reply: {e}")

    if not isinstance(data, dict):
        raise AIUnavailableError("AI reply is not a JSON object")
    return data


class AIExtractor:
    """Client for the external AI extraction call."""

    def __init__(
        self,
        api_key: Optional[str],
        api_url: str = DEFAULT_AI_API_URL,
        model: str = DEFAULT_AI_MODEL,
        fallback_model: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.fallback_model = fallback_model
        self.timeout = timeout
        self.session = session or (create_ai_session(api_key) if api_key else None)

    @property
    def is_configured(self) -> bool:
        return self.session is not None

    def extract(self, url: str, page_text: str) -> Dict[str, Any]:
        """
        Ask the model to extract a scholarship from page text.

        When the primary model fails for any reason other than a rate limit,
        the fallback model (if configured) is tried once.

        Args:
            url: Source URL, included in the prompt.
            page_text: Linearized page text.

        Returns:
            The reply as an untrusted mapping.

        Raises:
            AIUnavailableError: If the call fails or the reply is unusable.
        """
        if not self.is_configured:
            raise AIUnavailableError("AI extraction is not configured")

        messages = build_messages(url, page_text)

        try:
            return self._complete(self.model, messages)
        except AIUnavailableError as e:
            if e.status_code == 429 or not self.fallback_model or self.fallback_model == self.model:
                raise
            logger.warning(f"Primary model {self.model} failed ({e}), trying {self.fallback_model}")
            return self._complete(self.fallback_model, messages)

    def _complete(self, model: str, messages: list) -> Dict[str, Any]:
        payload = {
            "model": model,
            "messages": messages,
            "temperature": 0.1,
            "max_tokens": 1000,
            "response_format": {"type": "json_object"},
        }

        logger.debug(f"Calling AI model {model}")

        try:
            response = self.session.post(self.api_url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise AIUnavailableError("AI request timed out")
        except requests.exceptions.RequestException as e:
            raise AIUnavailableError(f"AI request failed: {e}")

        if response.status_code == 429:
            raise AIUnavailableError("AI rate limit exceeded", status_code=429)

        if response.status_code != 200:
            raise AIUnavailableError(
                f"AI request failed with HTTP {response.status_code}",
                status_code=response.status_code
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            raise AIUnavailableError("Invalid response structure from AI", status_code=200)

        return parse_reply(content)
