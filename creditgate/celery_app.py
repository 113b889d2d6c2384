"""
Celery application configuration.
The durable queue engine behind the queue facade.
Broker, result backend and queue name come from QueueConfig.
"""
from celery import Celery
from kombu import Queue

from creditgate.config import QueueConfig, load_queue_config

# Redis emulates priorities with one list per step; 0 is consumed first.
BROKER_PRIORITY_STEPS = list(range(10))


def configure_celery(app: Celery, queue_config: QueueConfig) -> Celery:
    """Point app at the broker and queue named in queue_config."""
    app.conf.update(
        broker_url=queue_config.broker_url,
        result_backend=queue_config.result_backend,
        task_queues=(
            Queue(queue_config.queue_name, routing_key=queue_config.queue_name),
        ),
        task_default_queue=queue_config.queue_name,
    )
    return app


celery_app = Celery(
    "creditgate",
    include=["creditgate.queue.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,
    task_time_limit=3600,
    task_soft_time_limit=3300,

    # one message at a time so priorities are honoured across the queue
    worker_prefetch_multiplier=1,

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=86400,
    result_extended=True,

    task_default_priority=BROKER_PRIORITY_STEPS[-1] // 2,
)

celery_app.conf.broker_transport_options = {
    "visibility_timeout": 43200,
    "socket_timeout": 30,
    "socket_connect_timeout": 30,
    "priority_steps": BROKER_PRIORITY_STEPS,
    "sep": ":",
    "queue_order_strategy": "priority",
}

configure_celery(celery_app, load_queue_config())
