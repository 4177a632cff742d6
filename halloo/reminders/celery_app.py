from celery import Celery
from kombu import Exchange, Queue

from .config import settings
from .triggers import build_triggers


celery_app = Celery(
    "reminders",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

exchange = Exchange(settings.RABBITMQ_EXCHANGE, type="direct", durable=True)

celery_app.conf.update(
    task_acks_late=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    worker_prefetch_multiplier=1,
    # One consumer so runs of the same job never overlap
    worker_concurrency=settings.WORKER_CONCURRENCY,
    task_default_queue=settings.RABBITMQ_QUEUE,
    task_default_exchange=settings.RABBITMQ_EXCHANGE,
    task_default_routing_key=settings.RABBITMQ_ROUTING_KEY,
    include=["halloo.reminders.tasks"],
    task_queues=(
        Queue(settings.RABBITMQ_QUEUE, exchange=exchange, routing_key=settings.RABBITMQ_ROUTING_KEY, durable=True),
    ),
)


def build_beat_schedule(triggers=None) -> dict:
    triggers = triggers if triggers is not None else build_triggers(settings)
    return {
        f"reminders-{spec.key}": {
            "task": spec.task_name,
            "schedule": spec.interval_seconds,
            # A tick that waits longer than one interval is dropped; the next one covers it
            "options": {"expires": spec.interval_seconds},
        }
        for spec in triggers
    }


celery_app.conf.beat_schedule = build_beat_schedule()
