"""Reasoning oracle client wrapping a LangChain chat model."""

from __future__ import annotations

import contextvars
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, TypeVar

import structlog

from telemetry_agent.errors import OracleError, OracleTransient

logger = structlog.get_logger()

T = TypeVar("T")

_RATE_LIMIT_STATUS = 429


def create_chat_model(
    *,
    api_key: str | None,
    model: str = "gpt-4o-mini",
    timeout_seconds: float = 30.0,
) -> Any:
    """Build the default chat model, or None when no API key is configured."""
    if not api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=model,
        temperature=0,
        api_key=api_key,
        timeout=timeout_seconds,
        max_retries=0,
    )


class ReasoningOracle:
    """Sends prompts to an LLM with a hard per-call timeout.

    Transport failures are translated into the package's error taxonomy:
    HTTP 429 and timeouts become `OracleTransient`, everything else
    `OracleError` carrying the reported status code when there is one.
    """

    def __init__(self, llm: Any, *, timeout_seconds: float = 30.0, max_workers: int = 4) -> None:
        self.llm = llm
        self.timeout_seconds = timeout_seconds
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="oracle")
        self._worker = threading.local()

    def complete(self, prompt: str) -> str:
        response = self.execute(lambda: self.llm.invoke([("human", prompt)]))
        return message_text(response).strip()

    def execute(self, call: Callable[[], T]) -> T:
        """Run `call` against the transport, bounded by the configured timeout.

        The call runs in a copy of the caller's context. A call made from
        inside another oracle call (a tool that starts its own agent turn)
        runs inline on the same worker, bounded by the outer timeout.
        """
        if getattr(self._worker, "active", False):
            return _translated(call)

        context = contextvars.copy_context()
        future = self._pool.submit(context.run, self._run_on_worker, call)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeout as exc:
            future.cancel()
            logger.warning("Oracle call timed out", timeout_seconds=self.timeout_seconds)
            raise OracleTransient(
                f"Oracle call timed out after {self.timeout_seconds:.1f}s"
            ) from exc
        except OracleError:
            raise
        except Exception as exc:
            raise translate_error(exc) from exc

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)

    def _run_on_worker(self, call: Callable[[], T]) -> T:
        self._worker.active = True
        try:
            return call()
        finally:
            self._worker.active = False


def _translated(call: Callable[[], T]) -> T:
    try:
        return call()
    except OracleError:
        raise
    except Exception as exc:
        raise translate_error(exc) from exc


def translate_error(exc: BaseException) -> OracleError:
    status = _status_code(exc)
    if status == _RATE_LIMIT_STATUS or type(exc).__name__ == "RateLimitError":
        return OracleTransient(f"Oracle rate limited: {exc}", status_code=_RATE_LIMIT_STATUS)
    if isinstance(exc, TimeoutError) or "Timeout" in type(exc).__name__:
        return OracleTransient(f"Oracle transport timeout: {exc}", status_code=status)
    return OracleError(f"Oracle call failed: {exc}", status_code=status)


def message_text(message: Any) -> str:
    """Flatten a chat message (or plain value) into text."""
    if isinstance(message, str):
        return message
    if isinstance(message, dict):
        return str(message.get("content", ""))
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None) or getattr(response, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None
