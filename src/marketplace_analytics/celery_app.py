"""Celery app for the report ingestion worker."""

from celery import Celery
from marketplace_analytics import settings

# Loaded by the worker at startup so their task decorators register.
TASK_MODULES = ("marketplace_analytics.tasks.file_parsing",)

celery_app = Celery(
    "marketplace_analytics",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=list(TASK_MODULES),
)

celery_app.conf.timezone = "UTC"
celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"
celery_app.conf.accept_content = ["json"]
celery_app.conf.task_acks_late = True
celery_app.conf.worker_prefetch_multiplier = 1
