"""Uvicorn launcher for the Kundli GPT API."""

import os

import uvicorn


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return max(minimum, int(raw))
    except ValueError:
        return default


def uvicorn_options() -> dict:
    reload_enabled = os.getenv("UVICORN_RELOAD", "").strip().lower() in {"1", "true", "yes"}
    return {
        "host": os.getenv("HOST", "127.0.0.1"),
        "port": _env_int("PORT", 8000),
        # uvicorn refuses multiple workers together with reload
        "workers": 1 if reload_enabled else _env_int("WEB_CONCURRENCY", 1),
        "reload": reload_enabled,
        "timeout_keep_alive": _env_int("UVICORN_TIMEOUT_KEEP_ALIVE", 5),
        "log_level": os.getenv("UVICORN_LOG_LEVEL", "info").strip() or "info",
    }


def main() -> None:
    uvicorn.run("backend.main:app", **uvicorn_options())


if __name__ == "__main__":
    main()
