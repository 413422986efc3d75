"""Provider abstractions used by the agent runtime."""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Union, runtime_checkable

from ..errors import ErrorKind, LanguageModelError, classify_error
from ..tasks.base import RetryPolicy, UsageMetrics

logger = logging.getLogger(__name__)


@dataclass
class PromptContext:
    """Metadata about the prompt being generated."""

    agent_name: str
    task_id: str
    iteration: int = 0


@dataclass
class Generation:
    text: str
    usage: UsageMetrics = field(default_factory=UsageMetrics)


@runtime_checkable
class LanguageModel(Protocol):
    """Interface for language model providers."""

    async def generate_text(
        self, prompt: str, context: Optional[PromptContext] = None
    ) -> Generation:  # pragma: no cover - interface
        """Return a completion for the given prompt."""


Response = Union[str, BaseException, Callable[[str], str]]


class StaticResponseProvider:
    """Provider that replays a finite list of responses (useful for tests).

    Items may be plain strings, exceptions (raised when reached) or callables
    receiving the prompt. With ``cycle=True`` the list repeats forever.
    """

    def __init__(self, responses: Iterable[Response], *, cycle: bool = False):
        self._responses = list(responses)
        self._cycle = cycle
        self._index = 0
        self.prompts: list[str] = []

    async def generate_text(self, prompt: str, context: Optional[PromptContext] = None) -> Generation:
        self.prompts.append(prompt)
        if self._index >= len(self._responses):
            if not self._cycle or not self._responses:
                raise LanguageModelError("StaticResponseProvider exhausted", kind=ErrorKind.INTERNAL)
            self._index = 0
        item = self._responses[self._index]
        self._index += 1
        if isinstance(item, BaseException):
            raise item
        text = item(prompt) if callable(item) else item
        words = len(prompt.split())
        produced = len(text.split())
        return Generation(
            text=text,
            usage=UsageMetrics(prompt_tokens=words, completion_tokens=produced, total_tokens=words + produced),
        )


class OllamaProvider:
    """Calls a locally hosted Ollama model via its HTTP API."""

    def __init__(
        self,
        model: str,
        *,
        host: str = "http://localhost:11434",
        options: Dict[str, Any] | None = None,
        system_prompt: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        self.model = model
        self.host = host.rstrip("/")
        self.options = options or {}
        self.system_prompt = system_prompt
        self.timeout = timeout

    async def generate_text(self, prompt: str, context: Optional[PromptContext] = None) -> Generation:
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": self.options,
        }
        if self.system_prompt:
            ctx = context or PromptContext(agent_name="", task_id="")
            payload["system"] = self.system_prompt.format(
                agent=ctx.agent_name, task=ctx.task_id, iteration=ctx.iteration
            )
        data = await asyncio.to_thread(self._post, payload)
        if "error" in data:
            message = str(data["error"])
            raise LanguageModelError(f"OllamaProvider error: {message}", kind=classify_error(RuntimeError(message)))
        result = data.get("response")
        if not isinstance(result, str):
            raise LanguageModelError(
                f"OllamaProvider returned unexpected payload: {data}", kind=ErrorKind.VALIDATION
            )
        prompt_tokens = int(data.get("prompt_eval_count") or 0)
        completion_tokens = int(data.get("eval_count") or 0)
        return Generation(
            text=result.strip(),
            usage=UsageMetrics(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        request = urllib.request.Request(
            url=f"{self.host}/api/generate",
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            kind = ErrorKind.RATE_LIMIT if exc.code == 429 else ErrorKind.INTERNAL
            raise LanguageModelError(f"OllamaProvider HTTP {exc.code} from {self.host}", kind=kind) from exc
        except urllib.error.URLError as exc:
            raise LanguageModelError(
                f"OllamaProvider failed to reach {self.host}: {exc}", kind=classify_error(exc)
            ) from exc
        except TimeoutError as exc:
            raise LanguageModelError(f"OllamaProvider timed out after {self.timeout}s", kind=ErrorKind.TIMEOUT) from exc
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise LanguageModelError("OllamaProvider returned invalid JSON", kind=ErrorKind.VALIDATION) from exc


async def generate_with_retry(
    model: LanguageModel,
    prompt: str,
    context: Optional[PromptContext] = None,
    policy: Optional[RetryPolicy] = None,
) -> Generation:
    """Call ``model``, retrying rate limits and timeouts with exponential backoff.

    Non-retryable failures and the final retryable one are raised as
    :class:`LanguageModelError`.
    """

    policy = policy or RetryPolicy()
    attempt = 1
    while True:
        try:
            return await model.generate_text(prompt, context)
        except Exception as exc:
            if isinstance(exc, LanguageModelError):
                error = exc
            else:
                error = LanguageModelError(str(exc) or type(exc).__name__, kind=classify_error(exc))
            if not error.retryable or attempt >= policy.max_attempts:
                if error is exc:
                    raise
                raise error from exc
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s: model call failed (%s), retry %d/%d in %.2fs",
                context.agent_name if context else type(model).__name__,
                error.kind.value,
                attempt,
                policy.max_attempts - 1,
                delay,
            )
            await asyncio.sleep(delay)
            attempt += 1
