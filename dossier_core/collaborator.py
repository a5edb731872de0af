"""
Collaborator — Single boundary for all text-generation calls.

Composition units never talk to a model directly: they hand a
GenerationRequest to a CollaboratorClient, which adds

- a response cache (hash of model + prompt),
- bounded retry with exponential backoff on CollaboratorError,
- output validation (empty output, unparsable JSON when a JSON schema
  hint was given) reported as CollaboratorError,
- per-call audit events.

Backends:
- OllamaCollaborator: local Ollama server (/api/generate)
- OpenAICompatibleCollaborator: any /v1/chat/completions endpoint
- EchoCollaborator: deterministic, offline (tests and dry runs)
"""

import hashlib
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .cache import ResponseCache
from .config import CollaboratorConfig
from .errors import CollaboratorError
from .logging_utils import RunLogger
from .resilience import BackoffStrategy, RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


def _compute_hash(text: str) -> str:
    """Compute SHA256 hash prefix for traceability (first 16 chars)."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class GenerationRequest:
    """What a composition unit asks the collaborator for."""
    system_instructions: str
    input_context: str
    output_schema_hint: Optional[str] = None

    @property
    def expects_json(self) -> bool:
        return bool(self.output_schema_hint) and self.output_schema_hint.lstrip().startswith(("{", "["))

    def user_prompt(self) -> str:
        """Input context followed by the output schema hint, if any."""
        parts = [self.input_context.strip()]
        if self.output_schema_hint:
            parts += ["", "Respond with JSON matching this schema:", self.output_schema_hint.strip()]
        return "\n".join(parts)

    def cache_text(self) -> str:
        return json.dumps(
            [self.system_instructions, self.input_context, self.output_schema_hint or ""],
            ensure_ascii=False,
        )


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Extract the first JSON object from a text response.

    Models are instructed to respond with pure JSON, but prose or code
    fences around the object are tolerated.

    Returns:
        Parsed JSON dict or None if extraction fails
    """
    start = text.find("{")
    if start == -1:
        return None

    brace_count = 0
    in_string = False
    escape_next = False
    end = -1

    for i, char in enumerate(text[start:], start):
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if not in_string:
            if char == "{":
                brace_count += 1
            elif char == "}":
                brace_count -= 1
                if brace_count == 0:
                    end = i
                    break

    if end == -1:
        return None
    try:
        value = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


class TextCollaborator(ABC):
    """A text-generation backend."""

    model: str = "unknown"
    temperature: float = 0.0

    @abstractmethod
    def generate(self, request: GenerationRequest) -> str:
        """
        Produce text for a request.

        Raises:
            CollaboratorError: On transport errors, timeouts or refusals
        """
        pass


class OllamaCollaborator(TextCollaborator):
    """Local Ollama server."""

    def __init__(
        self,
        model: str = "qwen2.5:7b",
        base_url: str = "http://localhost:11434",
        temperature: float = 0.1,
        timeout: float = 120,
        max_tokens: Optional[int] = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.timeout = timeout
        self.max_tokens = max_tokens

    def generate(self, request: GenerationRequest) -> str:
        options: Dict[str, Any] = {"temperature": self.temperature}
        if self.max_tokens:
            options["num_predict"] = self.max_tokens
        payload: Dict[str, Any] = {
            "model": self.model,
            "system": request.system_instructions,
            "prompt": request.user_prompt(),
            "stream": False,
            "options": options,
        }
        if request.expects_json:
            payload["format"] = "json"
        try:
            response = httpx.post(f"{self.base_url}/api/generate", json=payload, timeout=self.timeout)
            response.raise_for_status()
            envelope = response.json()
        except httpx.TimeoutException as e:
            raise CollaboratorError(f"ollama timeout after {self.timeout}s: {e}") from e
        except httpx.HTTPStatusError as e:
            raise CollaboratorError(f"ollama HTTP {e.response.status_code}", retryable=e.response.status_code >= 500) from e
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorError(f"ollama call failed: {e}") from e
        return envelope.get("response", "")


class OpenAICompatibleCollaborator(TextCollaborator):
    """Any server exposing the OpenAI chat-completions API."""

    def __init__(
        self,
        model: str,
        base_url: str,
        api_key: Optional[str] = None,
        temperature: float = 0.1,
        timeout: float = 120,
        max_tokens: Optional[int] = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.temperature = temperature
        self.timeout = timeout
        self.max_tokens = max_tokens

    def generate(self, request: GenerationRequest) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [
                {"role": "system", "content": request.system_instructions},
                {"role": "user", "content": request.user_prompt()},
            ],
        }
        if self.max_tokens:
            payload["max_tokens"] = self.max_tokens
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = httpx.post(
                f"{self.base_url}/v1/chat/completions",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise CollaboratorError(f"chat completion timeout after {self.timeout}s: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise CollaboratorError(f"chat completion HTTP {status}", retryable=status == 429 or status >= 500) from e
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorError(f"chat completion failed: {e}") from e
        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise CollaboratorError(f"unexpected chat completion payload: {e}") from e


class EchoCollaborator(TextCollaborator):
    """
    Deterministic offline collaborator.

    Plain requests get back the first lines of their input context; JSON
    requests get {"narrative": ...}. Identical requests always produce
    identical text.
    """

    model = "echo"

    def __init__(self, max_chars: int = 600):
        self.max_chars = max_chars
        self.calls: List[GenerationRequest] = []
        self._lock = threading.Lock()

    def generate(self, request: GenerationRequest) -> str:
        with self._lock:
            self.calls.append(request)
        text = request.input_context.strip()
        if len(text) > self.max_chars:
            text = text[:self.max_chars].rsplit("\n", 1)[0]
        if request.expects_json:
            return json.dumps({"narrative": text}, ensure_ascii=False)
        return text


class CollaboratorClient:
    """
    Wraps a TextCollaborator with caching, retries and output validation.

    Usage:
        client = CollaboratorClient(OllamaCollaborator(), cache=ResponseCache(path))
        text = client.generate_text(GenerationRequest(system, context))
    """

    def __init__(
        self,
        collaborator: TextCollaborator,
        retry_config: Optional[RetryConfig] = None,
        cache: Optional[ResponseCache] = None,
        run_logger: Optional[RunLogger] = None,
    ):
        self.collaborator = collaborator
        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            base_delay=1.0,
            strategy=BackoffStrategy.EXPONENTIAL,
            retry_exceptions=(CollaboratorError,),
        )
        self.cache = cache
        self.run_logger = run_logger

    @property
    def model(self) -> str:
        return self.collaborator.model

    def generate_text(self, request: GenerationRequest) -> str:
        """Generate non-empty text, retrying on CollaboratorError."""
        return self._generate(request, self._validate_text)

    def generate_structured(self, request: GenerationRequest) -> Dict[str, Any]:
        """Generate and parse a JSON object; malformed output counts as a failed attempt."""
        raw = self._generate(request, self._validate_json)
        return extract_json_object(raw)

    def _generate(self, request: GenerationRequest, validate) -> str:
        prompt_key = request.cache_text()
        prompt_hash = _compute_hash(prompt_key)
        temperature = getattr(self.collaborator, "temperature", 0.0)

        if self.cache is not None:
            cached = self.cache.get(self.model, prompt_key, temperature)
            if cached is not None:
                try:
                    validate(cached)
                except CollaboratorError:
                    logger.warning(f"[collaborator] Ignoring invalid cached response {prompt_hash}")
                else:
                    self._audit(prompt_hash, cached=True, duration_ms=0.0)
                    return cached

        def attempt() -> str:
            start = time.time()
            try:
                text = self.collaborator.generate(request)
                validate(text)
            except CollaboratorError as e:
                self._audit(prompt_hash, cached=False, duration_ms=(time.time() - start) * 1000, error=str(e))
                raise
            self._audit(prompt_hash, cached=False, duration_ms=(time.time() - start) * 1000)
            return text

        text = call_with_retry(attempt, self.retry_config, f"collaborator call {prompt_hash}")
        if self.cache is not None:
            self.cache.put(self.model, prompt_key, text, temperature)
        return text

    @staticmethod
    def _validate_text(text: str) -> None:
        if not text or not text.strip():
            raise CollaboratorError("collaborator returned empty output")

    @staticmethod
    def _validate_json(text: str) -> None:
        CollaboratorClient._validate_text(text)
        if extract_json_object(text) is None:
            raise CollaboratorError("collaborator output is not a JSON object")

    def _audit(self, prompt_hash: str, cached: bool, duration_ms: float, error: Optional[str] = None) -> None:
        if error:
            logger.warning(f"[collaborator] {self.model} call {prompt_hash} failed: {error}")
        else:
            logger.debug(f"[collaborator] {self.model} call {prompt_hash} ok (cached={cached}, {duration_ms:.0f}ms)")
        if self.run_logger is not None:
            self.run_logger.log_collaborator_call(self.model, prompt_hash, cached, duration_ms, error)


def create_collaborator(config: CollaboratorConfig) -> TextCollaborator:
    """Build the backend named in the configuration."""
    if config.backend == "echo":
        return EchoCollaborator()
    if config.backend == "openai":
        return OpenAICompatibleCollaborator(
            model=config.model,
            base_url=config.base_url,
            api_key=config.api_key,
            temperature=config.temperature,
            timeout=config.timeout,
            max_tokens=config.max_tokens,
        )
    return OllamaCollaborator(
        model=config.model,
        base_url=config.base_url,
        temperature=config.temperature,
        timeout=config.timeout,
        max_tokens=config.max_tokens,
    )


def retry_config_from(config: CollaboratorConfig) -> RetryConfig:
    return RetryConfig(
        max_attempts=config.retry_attempts,
        base_delay=config.retry_base_delay,
        strategy=BackoffStrategy.EXPONENTIAL,
        retry_exceptions=(CollaboratorError,),
    )
