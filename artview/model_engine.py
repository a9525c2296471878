from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import requests

from . import config
from .models import ImageFile, Message

log = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Raised for every failed model call, whatever the cause."""

    def __init__(self, message: str, *, status: Optional[int] = None, endpoint: str = "chat") -> None:
        super().__init__(message)
        self.status = status
        self.endpoint = endpoint


def ensure_policy(messages: List[Dict[str, Any]], policy: str, marker: str) -> List[Dict[str, Any]]:
    """Prepend the guide policy as a system turn unless one already carries it."""

    if any(m["role"] == "system" and marker in m["content"] for m in messages):
        return messages
    return [{"role": "system", "content": policy}, *messages]


def window_messages(messages: List[Dict[str, Any]], keep_turns: int) -> List[Dict[str, Any]]:
    systems = [m for m in messages if m["role"] == "system"]
    others = [m for m in messages if m["role"] != "system"]
    tail = others[max(0, len(others) - keep_turns * 2):]
    return [*systems, *tail]


def _last_user_index(messages: List[Dict[str, Any]]) -> int:
    for idx in range(len(messages) - 1, -1, -1):
        if messages[idx]["role"] == "user":
            return idx
    return -1


class ChatTransport:
    """Relays role-tagged messages (and at most one image) to an Ollama-style host."""

    def __init__(
        self,
        model: str | None = None,
        host: str | None = None,
        *,
        timeout: float | None = None,
        keep_turns: int | None = None,
    ) -> None:
        selected_model = model or config.MODEL
        selected_host = host or config.HOST
        if not selected_host.startswith("http://") and not selected_host.startswith("https://"):
            selected_host = "http://" + selected_host
        self.model, self.host = selected_model, selected_host.rstrip("/")
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.keep_turns = keep_turns or config.KEEP_TURNS
        session_factory = getattr(requests, "Session", None)
        if callable(session_factory):
            self._session = session_factory()
            self._close_session = getattr(self._session, "close", lambda: None)
        else:
            self._session = requests
            self._close_session = lambda: None

    def close(self) -> None:
        self._close_session()

    def __enter__(self) -> "ChatTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _prepare_messages(self, messages: Sequence[Message]) -> List[Dict[str, Any]]:
        # ``hidden`` is a local-only annotation and never leaves the process.
        wire = [m.to_wire() for m in messages]
        wire = ensure_policy(wire, config.APP_POLICY, config.APP_POLICY_MARKER)
        return window_messages(wire, self.keep_turns)

    def _prepare_chat_payload(self, wire: List[Dict[str, Any]], image: Optional[ImageFile]) -> Dict[str, Any]:
        msgs: List[Dict[str, Any]] = [dict(m) for m in wire]
        if image is not None and image.data:
            idx = _last_user_index(msgs)
            if idx >= 0:
                msgs[idx]["images"] = [image.to_base64()]
        return {"model": self.model, "messages": msgs, "stream": False}

    def _prepare_generate_payload(self, wire: List[Dict[str, Any]], image: Optional[ImageFile]) -> Dict[str, Any]:
        prompt = "\n".join([f"{m['role']}: {m['content']}" for m in wire])
        payload: Dict[str, Any] = {"model": self.model, "prompt": prompt, "stream": False}
        if image is not None and image.data:
            payload["images"] = [image.to_base64()]
        return payload

    def _post(self, endpoint: str, payload: Dict[str, Any]):
        url = f"{self.host}/api/{endpoint}"
        try:
            return self._session.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise TransportError(
                f"Model request failed while calling {url}: {exc.__class__.__name__}: {exc}",
                endpoint=endpoint,
            ) from exc

    def send_chat(self, messages: Sequence[Message], image: Optional[ImageFile] = None) -> str:
        """Send ``messages`` (plus ``image`` on the last user turn) and return the reply text."""

        wire = self._prepare_messages(messages)
        used = "chat"
        t0 = time.perf_counter()
        response = self._post(used, self._prepare_chat_payload(wire, image))

        if response.status_code == 404:
            used = "generate"
            response = self._post(used, self._prepare_generate_payload(wire, image))

        elapsed = time.perf_counter() - t0
        if response.status_code >= 400:
            preview = (getattr(response, "text", "") or getattr(response, "reason", "") or "")[:400]
            log.warning("Model endpoint %s returned HTTP %s after %.2fs", used, response.status_code, elapsed)
            raise TransportError(
                f"Model endpoint {used} returned HTTP {response.status_code}: {preview or 'No response body.'}",
                status=response.status_code,
                endpoint=used,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(
                f"Model endpoint {used} returned a non-JSON body", status=response.status_code, endpoint=used
            ) from exc

        if not isinstance(data, dict):
            raise TransportError(f"Model endpoint {used} returned an unexpected payload", endpoint=used)

        text = ""
        if isinstance(data.get("message"), dict):
            text = data["message"].get("content", "") or ""
        if not text:
            text = data.get("response", "") or ""
        log.debug(
            "Model call via %s finished in %.2fs (%d message(s), image=%s)",
            used,
            elapsed,
            len(wire),
            bool(image is not None and image.data),
        )
        return str(text)


__all__ = ["ChatTransport", "TransportError", "ensure_policy", "window_messages"]
