"""
Celery application setup.
"""

from celery import Celery
from voxe_kb.core.config import settings


def create_celery_app() -> Celery:
    app = Celery(
        "voxe_kb",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
        include=["voxe_kb.tasks.document_tasks"],
    )
    # Tasks only carry document ids, JSON is enough
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        task_track_started=True,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
    )
    return app


celery_app = create_celery_app()
