"""Celery application for queued imports."""

import ssl

from celery import Celery

from table_importer.core.config import get_settings

settings = get_settings()

broker_url = settings.celery_broker_url or settings.redis_url
backend_url = settings.celery_result_url or settings.redis_url


def _with_tls(url: str) -> tuple[str, bool]:
    """Upgrade Upstash URLs to rediss:// and tell Celery to skip cert checks."""
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)
    if not url.startswith("rediss://"):
        return url, False
    if "ssl_cert_reqs" not in url:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}ssl_cert_reqs=none"
    return url, True


broker_url, broker_ssl = _with_tls(broker_url)
backend_url, backend_ssl = _with_tls(backend_url)

celery_app = Celery(
    "table_importer",
    broker=broker_url,
    backend=backend_url,
)

# SSL options must be in place before anything touches the result backend
if broker_ssl or backend_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_app.conf.update(
        {
            "broker_use_ssl": ssl_dict,
            "result_backend_use_ssl": ssl_dict,
            "broker_transport_options": ssl_dict.copy(),
            "result_backend_transport_options": ssl_dict.copy(),
        }
    )

celery_app.autodiscover_tasks(["table_importer.workers.tasks"])

celery_app.conf.task_routes = {
    "table_importer.workers.tasks.run_import": {"queue": "imports"},
}
celery_app.conf.task_default_queue = "imports"

celery_app.conf.update(
    {
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
        "timezone": "UTC",
        "enable_utc": True,
        # Imports replace rows; re-running after a worker crash is safe
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "worker_prefetch_multiplier": 1,
        # Lock wait + converter timeout must fit inside the soft limit
        "task_time_limit": 3600,
        "task_soft_time_limit": 3300,
        "result_expires": 3600,
        "broker_connection_retry_on_startup": True,
        "worker_hijack_root_logger": False,
        "result_backend_always_retry": True,
        "result_backend_max_retries": 3,
    }
)

# Register tasks with the app
from table_importer.workers.tasks import run_import  # noqa: E402,F401
