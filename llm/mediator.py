from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import time
from typing import Any
from urllib import request as urlrequest
from urllib.error import HTTPError, URLError

from core.config import env, env_int
from core.errors import ErrorKind


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskRoute:
    provider: str
    model: str
    base_url: str
    api_key: str
    api_key_header: str
    timeout_s: int
    retries: int
    max_tokens: int


@dataclass(frozen=True)
class LLMError(Exception):
    code: str
    message: str
    provider: str
    task_type: str
    retryable: bool = False

    def __str__(self) -> str:
        return f"{self.code}({self.provider}/{self.task_type}): {self.message}"

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.TRANSIENT if self.retryable else ErrorKind.UNIT_FAILURE


def _provider_defaults(provider: str) -> tuple[str, str]:
    provider = provider.lower().strip()
    if provider == "openrouter":
        return "https://openrouter.ai/api/v1", "OPENROUTER_API_KEY"
    if provider == "groq":
        return "https://api.groq.com/openai/v1", "GROQ_API_KEY"
    if provider == "litellm":
        return env("LITELLM_BASE_URL", "http://localhost:4000"), "LITELLM_API_KEY"
    return "https://api.openai.com/v1", "OPENAI_API_KEY"


def _load_route(task_type: str) -> TaskRoute:
    key = task_type.upper()
    provider = env(f"LLM_ROUTE_{key}_PROVIDER", env("LLM_PROVIDER", "openrouter")).lower()
    default_base, default_key_env = _provider_defaults(provider)
    base_url = env(f"LLM_ROUTE_{key}_BASE_URL", env("LLM_BASE_URL", default_base)).rstrip("/")
    model = env(f"LLM_ROUTE_{key}_MODEL", env("LLM_MODEL", "anthropic/claude-sonnet-4.5"))
    key_env = env(f"LLM_ROUTE_{key}_API_KEY_ENV", default_key_env)
    api_key = env(key_env)
    if not api_key:
        raise RuntimeError(f"Missing API key for task '{task_type}' (env: {key_env})")
    return TaskRoute(
        provider=provider,
        model=model,
        base_url=base_url,
        api_key=api_key,
        api_key_header=env(f"LLM_ROUTE_{key}_API_KEY_HEADER", "Authorization"),
        timeout_s=env_int(f"LLM_ROUTE_{key}_TIMEOUT_S", env_int("LLM_TIMEOUT_S", 120)),
        retries=env_int(f"LLM_ROUTE_{key}_RETRIES", env_int("LLM_RETRIES", 2)),
        max_tokens=env_int(f"LLM_ROUTE_{key}_MAX_TOKENS", env_int("LLM_MAX_TOKENS", 4096)),
    )


class LLMMediator:
    """OpenAI-compatible chat completion client with per-task routes.

    The returned text is untrusted. Callers validate it and run their own
    repair step when it is not the JSON they asked for.
    """

    def __init__(self) -> None:
        self._metrics: dict[str, dict[str, float]] = {}

    def get_metrics_snapshot(self) -> dict[str, Any]:
        return {"routes": self._metrics}

    def chat_completion(
        self,
        messages: list[dict[str, str]],
        *,
        task_type: str,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> str:
        route = _load_route(task_type)
        payload = self._build_chat_payload(
            route=route,
            messages=messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=json_mode,
        )
        start = time.perf_counter()
        try:
            response = self._call_with_retries(task_type, route, payload)
            choices = response.get("choices") or []
            if not choices:
                raise LLMError(
                    code="empty_response",
                    message="No choices returned by provider",
                    provider=route.provider,
                    task_type=task_type,
                )
            content = choices[0]["message"]["content"]
            if not isinstance(content, str):
                raise LLMError(
                    code="invalid_response",
                    message="LLM response content is not text",
                    provider=route.provider,
                    task_type=task_type,
                )
        except (KeyError, IndexError, TypeError, LLMError) as exc:
            self._track_metrics(task_type=task_type, model=payload["model"], success=False)
            if isinstance(exc, LLMError):
                raise
            raise LLMError(
                code="invalid_response",
                message=f"Unexpected response shape: {exc}",
                provider=route.provider,
                task_type=task_type,
            ) from exc

        usage = response.get("usage") or {}
        self._track_metrics(
            task_type=task_type,
            model=payload["model"],
            success=True,
            latency_ms=(time.perf_counter() - start) * 1000.0,
            prompt_tokens=float(usage.get("prompt_tokens", 0) or 0),
            completion_tokens=float(usage.get("completion_tokens", 0) or 0),
        )
        return content

    def _call_with_retries(
        self,
        task_type: str,
        route: TaskRoute,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        last_error: LLMError | None = None
        for attempt in range(route.retries + 1):
            try:
                return self._call_chat_completion(task_type, route, payload)
            except LLMError as exc:
                last_error = exc
                if not exc.retryable or attempt >= route.retries:
                    break
                logger.warning(
                    "LLM request failed, retrying (%s/%s): %s",
                    attempt + 1,
                    route.retries,
                    exc,
                )
                self._track_retry(task_type=task_type, model=payload["model"])
                time.sleep(1.0 * (attempt + 1))
        assert last_error is not None
        raise last_error

    def _build_chat_payload(
        self,
        *,
        route: TaskRoute,
        messages: list[dict[str, str]],
        model: str | None,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model or route.model,
            "messages": list(messages),
            "temperature": temperature,
            "max_tokens": max(1, min(max_tokens, route.max_tokens)),
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def _call_chat_completion(
        self,
        task_type: str,
        route: TaskRoute,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if route.api_key_header.lower() == "authorization":
            headers["Authorization"] = f"Bearer {route.api_key}"
        else:
            headers[route.api_key_header] = route.api_key
        if route.provider == "openrouter":
            headers["X-Title"] = env("LLM_APP_TITLE", "UGC Script Factory")

        body = json.dumps(payload).encode("utf-8")
        req = urlrequest.Request(
            url=f"{route.base_url}/chat/completions",
            data=body,
            method="POST",
            headers=headers,
        )
        try:
            with urlrequest.urlopen(req, timeout=max(5, route.timeout_s)) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            logger.error("LLM API error: %s %s", exc.code, self._sanitize_error_message(detail))
            if exc.code in {400, 422} and "response_format" in payload:
                fallback = dict(payload)
                fallback.pop("response_format", None)
                fallback["messages"] = fallback["messages"] + [
                    {"role": "system", "content": "Return ONLY valid JSON."}
                ]
                return self._call_chat_completion(task_type, route, fallback)
            raise LLMError(
                code=f"http_{exc.code}",
                message=self._sanitize_error_message(detail),
                provider=route.provider,
                task_type=task_type,
                retryable=exc.code >= 500 or exc.code == 429,
            ) from exc
        except URLError as exc:
            raise LLMError(
                code="network_error",
                message=self._sanitize_error_message(str(exc)),
                provider=route.provider,
                task_type=task_type,
                retryable=True,
            ) from exc
        except json.JSONDecodeError as exc:
            raise LLMError(
                code="invalid_envelope",
                message=f"Provider returned non-JSON envelope: {exc}",
                provider=route.provider,
                task_type=task_type,
                retryable=True,
            ) from exc

    def _sanitize_error_message(self, message: str) -> str:
        text = (message or "").replace("\n", " ")
        text = text.replace("Bearer ", "Bearer [redacted]")
        return text[:300]

    def _bucket(self, task_type: str, model: str) -> dict[str, float]:
        return self._metrics.setdefault(
            f"{task_type}|{model}",
            {
                "calls": 0.0,
                "success": 0.0,
                "errors": 0.0,
                "retries": 0.0,
                "latency_ms_total": 0.0,
                "prompt_tokens_total": 0.0,
                "completion_tokens_total": 0.0,
            },
        )

    def _track_metrics(
        self,
        *,
        task_type: str,
        model: str,
        success: bool,
        latency_ms: float = 0.0,
        prompt_tokens: float = 0.0,
        completion_tokens: float = 0.0,
    ) -> None:
        bucket = self._bucket(task_type, model)
        bucket["calls"] += 1
        if success:
            bucket["success"] += 1
            bucket["latency_ms_total"] += max(0.0, latency_ms)
            bucket["prompt_tokens_total"] += max(0.0, prompt_tokens)
            bucket["completion_tokens_total"] += max(0.0, completion_tokens)
        else:
            bucket["errors"] += 1

    def _track_retry(self, *, task_type: str, model: str) -> None:
        self._bucket(task_type, model)["retries"] += 1
