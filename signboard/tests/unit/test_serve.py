from __future__ import annotations

from fastapi import FastAPI

from signboard.apps.web import serve
from signboard.core.config import get_settings


def test_main_runs_app_on_configured_address(monkeypatch) -> None:
    calls: list[tuple[object, dict]] = []
    monkeypatch.setattr(serve.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    serve.main()

    settings = get_settings()
    [(app, kwargs)] = calls
    assert isinstance(app, FastAPI)
    assert kwargs == {"host": settings.host, "port": settings.port, "log_level": settings.log_level.lower()}
