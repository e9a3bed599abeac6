import logging

import httpx
from google import genai
from google.genai import types
from google.genai.errors import APIError

import config
from errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)


class GeminiJudge:
    """Judgment collaborator: one generate_content call per request, text out."""

    def __init__(self, api_key: str | None = None, model: str | None = None):
        self._api_key = api_key or config.GEMINI_API_KEY
        self.model = model or config.JUDGE_MODEL
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise CollaboratorUnavailable("judgment", "GEMINI_API_KEY not set. Add it to your .env file.")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def judge(self, system_instructions: str, prompt: str, max_output_tokens: int) -> str:
        client = self._get_client()
        logger.info("requesting judgment from %s", self.model)
        try:
            resp = client.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=system_instructions,
                    max_output_tokens=max_output_tokens,
                    temperature=0.0,
                ),
            )
        except (APIError, httpx.HTTPError) as exc:
            raise CollaboratorUnavailable("judgment", str(exc)) from exc
        return resp.text or ""
