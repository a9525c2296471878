from __future__ import annotations

import os
from pathlib import Path

MODEL: str
HOST: str
REQUEST_TIMEOUT: int
KEEP_TURNS: int
DATA_DIR: Path
MAX_SESSIONS: int
THUMB_MAX: int
THUMB_QUALITY: int
IMAGE_POLICY: str
STORAGE: str
APP_POLICY: str
APP_POLICY_MARKER: str
NO_DATA: str

IMAGE_POLICIES = ("first", "always", "never")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def reload_from_environment() -> None:
    """Refresh configuration values from the current environment."""

    global MODEL, HOST, REQUEST_TIMEOUT, KEEP_TURNS, DATA_DIR, MAX_SESSIONS
    global THUMB_MAX, THUMB_QUALITY, IMAGE_POLICY, STORAGE
    global APP_POLICY, APP_POLICY_MARKER, NO_DATA

    MODEL = os.getenv("ARTVIEW_MODEL_NAME", "llava:13b")
    HOST = os.getenv("ARTVIEW_MODEL_HOST", "http://127.0.0.1:11434")
    REQUEST_TIMEOUT = max(1, _int_env("ARTVIEW_REQUEST_TIMEOUT", 120))
    KEEP_TURNS = max(1, _int_env("ARTVIEW_KEEP_TURNS", 10))
    DATA_DIR = Path(os.getenv("ARTVIEW_DATA_DIR", str(Path.home() / ".artview"))).expanduser().resolve()
    MAX_SESSIONS = max(1, _int_env("ARTVIEW_MAX_SESSIONS", 20))
    THUMB_MAX = max(16, _int_env("ARTVIEW_THUMB_MAX", 320))
    THUMB_QUALITY = min(100, max(1, _int_env("ARTVIEW_THUMB_QUALITY", 80)))
    policy = os.getenv("ARTVIEW_IMAGE_POLICY", "first").strip().lower()
    IMAGE_POLICY = policy if policy in IMAGE_POLICIES else "first"
    STORAGE = os.getenv("ARTVIEW_STORAGE", "fs").strip().lower() or "fs"
    APP_POLICY_MARKER = "[APP_POLICY]"
    APP_POLICY = (
        f"{APP_POLICY_MARKER}\n"
        "この画像は芸術作品です。対話では画面に描かれているものだけを扱い、ユーザーの観察と言語化を支えてください。\n"
        "あなたは知識を教える人ではなく、観察を促すガイドです。\n"
        "• 人名・作者名・作品名・主義名などの固有名詞は出さない。\n"
        "• 返答の冒頭に免責や断り（できません／特定できません 等）を置かない。\n"
        "• JSON の指定がない限り、自然文で簡潔に返す。"
    )
    NO_DATA = "（データなし）"


reload_from_environment()


__all__ = [
    "APP_POLICY",
    "APP_POLICY_MARKER",
    "DATA_DIR",
    "HOST",
    "IMAGE_POLICIES",
    "IMAGE_POLICY",
    "KEEP_TURNS",
    "MAX_SESSIONS",
    "MODEL",
    "NO_DATA",
    "REQUEST_TIMEOUT",
    "STORAGE",
    "THUMB_MAX",
    "THUMB_QUALITY",
    "reload_from_environment",
]
