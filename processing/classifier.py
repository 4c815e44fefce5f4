"""Scam classification through an OpenAI-compatible chat-completion endpoint."""

import json
import logging
import os
import re
import time
from datetime import datetime
from typing import Callable

import httpx
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from data_models.classification import ClassificationResult, LLMScamAnalysis
from processing.errors import ConfigurationError
from processing.prompts import SCAM_ANALYSIS_SYSTEM_PROMPT

load_dotenv()

logger = logging.getLogger(__name__)

CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class ScamClassifier:
    """Classifies one piece of content per model call.

    Any timeout, non-2xx response, or unparseable output is turned into
    ``ClassificationResult.safe_default`` so callers always get a result.
    """

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        config_path: str = "configs/pipeline.yaml",
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the classifier.

        Args:
            api_url: Chat-completion URL. Defaults to LLM_API_URL env var.
            api_key: API key. Defaults to LLM_API_KEY env var.
            model: Model identifier. Defaults to LLM_API_MODEL env var.
            config_path: Path to pipeline configuration
            client: Preconfigured HTTP client (tests inject a mock transport)
            clock: Monotonic clock for the total request deadline

        Raises:
            ConfigurationError: If the URL, key or model is missing
        """
        self.api_url = api_url or os.getenv("LLM_API_URL")
        self.api_key = api_key or os.getenv("LLM_API_KEY")
        self.model = model or os.getenv("LLM_API_MODEL")

        missing = [
            name
            for name, value in (
                ("LLM_API_URL", self.api_url),
                ("LLM_API_KEY", self.api_key),
                ("LLM_API_MODEL", self.model),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing LLM configuration: {', '.join(missing)}")

        config = self._load_config(config_path).get("classifier", {})
        self.timeout_seconds = config.get("timeout_seconds", 30)
        self.temperature = config.get("temperature", 0.7)
        self.max_tokens = config.get("max_tokens", 1000)
        self.json_mode = config.get("json_mode", True)
        self._client = client
        self.clock = clock
        self._call_count = 0

    def _load_config(self, config_path: str) -> dict:
        """Load classifier configuration."""
        if os.path.exists(config_path):
            with open(config_path, "r") as f:
                return yaml.safe_load(f) or {}
        return {
            "classifier": {
                "timeout_seconds": 30,
                "temperature": 0.7,
                "max_tokens": 1000,
                "json_mode": True,
            },
        }

    @property
    def client(self) -> httpx.Client:
        """Lazy-load HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout_seconds)
        return self._client

    @property
    def call_count(self) -> int:
        return self._call_count

    def _request_payload(self, content: str) -> dict:
        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": "system", "content": SCAM_ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": content},
            ],
        }
        if self.json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    @staticmethod
    def _extract_content(body: dict) -> str:
        choices = body.get("choices") if isinstance(body, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ValueError("Response missing choices")
        content = (choices[0].get("message") or {}).get("content")
        if not isinstance(content, str) or not content.strip():
            raise ValueError("Response has empty content")
        return CODE_FENCE_RE.sub("", content.strip())

    def _post(self, content: str) -> tuple[int, bytes]:
        """Send one completion request within a total deadline.

        httpx applies ``timeout`` to each phase (connect, every read)
        separately. The body is streamed and the total deadline is checked
        after every chunk; a single stalled read is bounded by the per-phase
        timeout only.

        Raises:
            httpx.TimeoutException: If a phase or the whole call runs out of time
            httpx.RequestError: On transport failures
        """
        deadline = self.clock() + self.timeout_seconds
        with self.client.stream(
            "POST",
            self.api_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json=self._request_payload(content),
            timeout=self.timeout_seconds,
        ) as response:
            chunks = []
            for chunk in response.iter_bytes():
                if self.clock() > deadline:
                    raise httpx.ReadTimeout(
                        f"Exceeded {self.timeout_seconds}s total", request=response.request
                    )
                chunks.append(chunk)
            return response.status_code, b"".join(chunks)

    def classify(self, content: str) -> ClassificationResult:
        """Classify a report or comment.

        Args:
            content: Formatted user content (see processing.prompts)

        Returns:
            ClassificationResult, ``outcome=failed`` on any call or parse error
        """
        self._call_count += 1
        started = datetime.utcnow()

        try:
            status_code, body = self._post(content)
        except httpx.TimeoutException:
            logger.warning(f"Classification timed out after {self.timeout_seconds}s")
            return ClassificationResult.safe_default(f"Timeout after {self.timeout_seconds}s")
        except httpx.RequestError as e:
            logger.warning(f"Classification request failed: {e}")
            return ClassificationResult.safe_default(f"Request error: {e}")

        if status_code >= 400:
            logger.warning(f"Classification endpoint returned {status_code}")
            return ClassificationResult.safe_default(
                f"HTTP {status_code}: {body[:200].decode('utf-8', errors='replace')}"
            )

        try:
            raw = self._extract_content(json.loads(body))
            parsed = json.loads(raw)
            if not isinstance(parsed, dict):
                raise ValueError("Model output is not a JSON object")
            analysis = LLMScamAnalysis.model_validate(parsed)
        except (ValueError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(f"Could not parse classification output: {e}")
            return ClassificationResult.safe_default(f"Invalid model output: {e}")

        result = ClassificationResult.from_analysis(analysis)
        elapsed = (datetime.utcnow() - started).total_seconds()
        logger.debug(
            f"Classified as {result.outcome.value} ({result.category.value}, "
            f"confidence {result.confidence:.2f}) in {elapsed:.1f}s"
        )
        return result

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()


# Singleton instance
_classifier: ScamClassifier | None = None


def get_classifier() -> ScamClassifier:
    """Get the singleton classifier instance."""
    global _classifier
    if _classifier is None:
        _classifier = ScamClassifier()
    return _classifier
