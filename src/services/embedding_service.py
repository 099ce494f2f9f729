"""OpenAI embedding provider with retry logic."""

import asyncio
import logging
import time
from typing import List

import openai
from openai import OpenAI

from utils.errors import ConfigurationError, EmbeddingError, ValidationError


logger = logging.getLogger("workspace-runtime.embedding")


class EmbeddingService:
    """OpenAI embedding provider used by the hybrid search index."""

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: int = 1536,
        timeout: int = 30,
        max_retries: int = 3
    ):
        """
        Initialize embedding service.

        Args:
            api_key: OpenAI API key
            model: Embedding model name
            dimensions: Embedding dimensions
            timeout: Request timeout (seconds)
            max_retries: Max retry attempts for transient failures
        """
        if not api_key:
            raise ConfigurationError("OpenAI API key is required")

        self.client = OpenAI(api_key=api_key, timeout=timeout)
        self.model = model
        self.dimensions = dimensions
        self.max_retries = max_retries
        self.timeout = timeout

    async def embed(self, text: str) -> List[float]:
        """Embed text without blocking the event loop."""
        return await asyncio.to_thread(self.generate_embedding, text)

    def generate_embedding(self, text: str) -> List[float]:
        """
        Generate single embedding with retry logic.

        Args:
            text: Text to embed

        Returns:
            Embedding vector (dimensions as configured)

        Raises:
            ValidationError: Invalid input (empty, too long)
            ConfigurationError: Invalid API key
            EmbeddingError: Generation failed after retries
        """
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")

        try:
            start_time = time.time()

            response = self._call_with_retry(
                self.client.embeddings.create,
                input=[text],
                model=self.model,
                dimensions=self.dimensions
            )

            embedding = response.data[0].embedding
            latency_ms = int((time.time() - start_time) * 1000)

            logger.debug(
                f"Generated embedding: model={self.model}, "
                f"dims={self.dimensions}, latency={latency_ms}ms"
            )

            return embedding

        except (ValidationError, ConfigurationError, EmbeddingError):
            raise
        except Exception as e:
            logger.error(f"Embedding generation failed: {e}")
            raise EmbeddingError(f"Failed to generate embedding: {e}") from e

    def _call_with_retry(self, func, *args, **kwargs):
        """
        Execute function with exponential backoff retry logic.

        Raises:
            ConfigurationError: For auth errors (no retry)
            ValidationError: For invalid input (no retry)
            EmbeddingError: After max retries exceeded
        """
        attempts = 0
        backoff = 1.0  # seconds

        while attempts < self.max_retries:
            try:
                return func(*args, **kwargs)

            except openai.AuthenticationError as e:
                raise ConfigurationError(
                    "Invalid OpenAI API key. Check OPENAI_API_KEY environment variable."
                ) from e

            except openai.BadRequestError as e:
                raise ValidationError(f"Invalid input: {e}") from e

            except openai.RateLimitError as e:
                attempts += 1
                if attempts >= self.max_retries:
                    raise EmbeddingError(
                        f"OpenAI rate limit reached after {attempts} attempts. "
                        "Try again later."
                    ) from e

                logger.warning(
                    f"Rate limit hit (attempt {attempts}/{self.max_retries}), "
                    f"retrying in {backoff}s"
                )
                time.sleep(backoff)
                backoff *= 2

            except (openai.APITimeoutError, openai.APIConnectionError) as e:
                attempts += 1
                if attempts >= self.max_retries:
                    raise EmbeddingError(
                        f"Request timeout after {attempts} attempts"
                    ) from e

                logger.warning(
                    f"Timeout (attempt {attempts}/{self.max_retries}), "
                    f"retrying in {backoff}s"
                )
                time.sleep(backoff)
                backoff *= 2

            except (openai.InternalServerError, openai.APIError) as e:
                attempts += 1
                if attempts >= self.max_retries:
                    raise EmbeddingError(
                        f"OpenAI service error after {attempts} attempts"
                    ) from e

                logger.warning(
                    f"OpenAI service error (attempt {attempts}/{self.max_retries}), "
                    f"retrying in {backoff}s"
                )
                time.sleep(backoff)
                backoff *= 2

        raise EmbeddingError(f"Failed after {self.max_retries} attempts")

    def get_model_info(self) -> dict:
        """Return model configuration."""
        return {
            "provider": "openai",
            "model": self.model,
            "dimensions": self.dimensions,
            "timeout": self.timeout,
            "max_retries": self.max_retries
        }

    def health_check(self) -> dict:
        """
        Test API connectivity with small embedding.

        Returns:
            Dictionary with status, latency_ms, and optional error
        """
        try:
            start_time = time.time()
            self.generate_embedding("test")
            latency_ms = int((time.time() - start_time) * 1000)

            return {
                "status": "healthy",
                "model": self.model,
                "dimensions": self.dimensions,
                "api_latency_ms": latency_ms
            }
        except Exception as e:
            return {
                "status": "unhealthy",
                "model": self.model,
                "error": str(e)
            }
