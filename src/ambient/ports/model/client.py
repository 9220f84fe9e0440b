"""Client for a locally hosted, OpenAI-compatible chat completion server.

Ollama, llama.cpp server, LM Studio and vLLM all expose
`POST {base_url}/chat/completions`; the default points at Ollama.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Iterable, Optional, Protocol

import requests

logger = logging.getLogger("ambient.model")


class ModelError(Exception):
    """Base class for model backend failures."""

    kind = "error"


class ModelUnreachable(ModelError):
    kind = "unreachable"


class ModelTimeout(ModelError):
    kind = "timeout"


class ModelMalformed(ModelError):
    kind = "malformed"


class ModelClient(Protocol):
    def complete(self, prompt: str, timeout: float) -> str: ...


def _extract_message_text(doc: Any) -> str:
    try:
        content = doc["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise ModelMalformed(f"unexpected completion shape: {e!r}") from e
    if not isinstance(content, str):
        raise ModelMalformed("completion content is not text")
    return content


def _extract_delta_text(doc: Any) -> str:
    try:
        choice = doc["choices"][0]
    except (KeyError, IndexError, TypeError) as e:
        raise ModelMalformed(f"unexpected stream chunk: {e!r}") from e
    delta = choice.get("delta") if isinstance(choice, dict) else None
    if not isinstance(delta, dict):
        return ""
    text = delta.get("content")
    return text if isinstance(text, str) else ""


class OpenAICompatClient:
    def __init__(
        self,
        base_url: str = "http://localhost:11434/v1",
        model: str = "gpt-oss:20b",
        *,
        stream: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.stream = stream
        self._http = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": self.stream,
        }

    def complete(self, prompt: str, timeout: float) -> str:
        started = time.monotonic()
        try:
            resp = self._http.post(self.endpoint, json=self._payload(prompt), timeout=timeout, stream=self.stream)
        except requests.Timeout as e:
            raise ModelTimeout(f"no response from {self.base_url} within {timeout:.0f}s") from e
        except requests.ConnectionError as e:
            raise ModelUnreachable(f"cannot reach model backend at {self.base_url}: {e}") from e
        except requests.RequestException as e:
            raise ModelUnreachable(f"request to {self.base_url} failed: {e}") from e

        try:
            if resp.status_code >= 400:
                raise ModelMalformed(f"model backend answered HTTP {resp.status_code}: {resp.text[:200]}")
            if self.stream:
                text = self._read_stream(resp.iter_lines(decode_unicode=True), started, timeout)
            else:
                try:
                    doc = resp.json()
                except ValueError as e:
                    raise ModelMalformed(f"response is not JSON: {e}") from e
                text = _extract_message_text(doc)
        except requests.Timeout as e:
            raise ModelTimeout(f"stream from {self.base_url} stalled for more than {timeout:.0f}s") from e
        except requests.ConnectionError as e:
            raise ModelUnreachable(f"connection to {self.base_url} dropped: {e}") from e
        finally:
            resp.close()

        logger.debug(f"completion done in {time.monotonic() - started:.1f}s ({len(text)} chars)")
        return text

    def _read_stream(self, lines: Iterable[Any], started: float, timeout: float) -> str:
        parts: list[str] = []
        done = False
        for raw in lines:
            if time.monotonic() - started > timeout:
                raise ModelTimeout(f"completion exceeded {timeout:.0f}s")
            line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw or "")
            line = line.strip()
            if not line or line.startswith(":"):
                continue
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == "[DONE]":
                done = True
                break
            try:
                doc = json.loads(data)
            except ValueError as e:
                raise ModelMalformed(f"unparsable stream chunk: {data[:120]!r}") from e
            parts.append(_extract_delta_text(doc))
        if not done and not parts:
            raise ModelMalformed("stream ended without any completion data")
        return "".join(parts)
