import logging
import re
import time

import httpx
from google import genai
from google.genai.errors import APIError, ClientError

import config
from errors import CollaboratorUnavailable

logger = logging.getLogger(__name__)

# Gemini free/paid tier: 3000 texts/min via embed_content
# Keep batches small and add backoff to stay within quota
BATCH_SIZE = 80
MAX_RETRIES = 5


class GeminiEmbedder:
    """Embedding collaborator backed by the Gemini embed_content endpoint."""

    def __init__(self, api_key: str | None = None, model: str | None = None):
        self._api_key = api_key or config.GEMINI_API_KEY
        self.model = model or config.EMBEDDING_MODEL
        self._client: genai.Client | None = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise CollaboratorUnavailable("embedding", "GEMINI_API_KEY not set. Add it to your .env file.")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def _embed_chunk(self, client: genai.Client, texts: list[str], retry: int = 0) -> list[list[float]]:
        """Embed one batch with exponential backoff on rate-limit errors."""
        try:
            resp = client.models.embed_content(model=self.model, contents=texts)
            return [list(v.values) for v in resp.embeddings]
        except ClientError as exc:
            if exc.code == 429 and retry < MAX_RETRIES:
                # Parse suggested retry delay from error, default to 30s
                wait = 30
                m = re.search(r"retry[^\d]*(\d+)", str(exc), re.IGNORECASE)
                if m:
                    wait = int(m.group(1)) + 2
                logger.warning("embedding rate limited, retrying in %ds (%d/%d)", wait, retry + 1, MAX_RETRIES)
                time.sleep(wait)
                return self._embed_chunk(client, texts, retry + 1)
            raise CollaboratorUnavailable("embedding", str(exc)) from exc
        except (APIError, httpx.HTTPError) as exc:
            raise CollaboratorUnavailable("embedding", str(exc)) from exc

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed a list of texts. Returns one vector per text, in input order.
        Batches requests to stay within API limits, retrying on rate-limit errors.
        """
        client = self._get_client()
        vectors: list[list[float]] = []

        for i in range(0, len(texts), BATCH_SIZE):
            batch = texts[i : i + BATCH_SIZE]
            vectors.extend(self._embed_chunk(client, batch))
            # Small sleep between batches to stay under 3000 texts/min
            if i + BATCH_SIZE < len(texts):
                time.sleep(1.6)

        return vectors

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]
