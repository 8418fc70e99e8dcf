"""Celery application setup for background ingestion and uploads."""

from __future__ import annotations

import os
from typing import Optional

from celery import Celery

from .config import _env, _env_bool


def _transport_url(scheme: str, db_url: Optional[str], fallback: str) -> str:
    """Route a Celery transport through the content database when one is configured."""

    if not db_url:
        return fallback
    return db_url if db_url.startswith(f"{scheme}+") else f"{scheme}+{db_url}"


def create_celery_app() -> Celery:
    """Instantiate the Celery app with environment driven configuration.

    Without an explicit broker the app falls back to the database, then to
    in-memory transports. Tasks run eagerly unless
    ``HARVESTER_CELERY_TASK_ALWAYS_EAGER`` is switched off.
    """

    environ = os.environ
    db_url = _env(environ, "DATABASE_URL")
    broker_url = _env(environ, "CELERY_BROKER_URL") or _transport_url("sqla", db_url, "memory://")
    backend_url = _env(environ, "CELERY_RESULT_BACKEND") or _transport_url("db", db_url, "cache+memory://")

    app = Celery("harvester", broker=broker_url, backend=backend_url, include=["harvester.tasks"])
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        task_always_eager=_env_bool(environ, "CELERY_TASK_ALWAYS_EAGER", True),
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        # CMS uploads must stay serialized.
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
    )
    return app


celery_app = create_celery_app()


__all__ = ["celery_app", "create_celery_app"]
