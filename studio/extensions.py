import importlib
import logging
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
import redis as _redis
from rq import Queue

logger = logging.getLogger(__name__)

db = SQLAlchemy()
migrate = Migrate()

# Initialized lazily in create_app
redis_client: _redis.Redis = None  # type: ignore
task_queue: Queue = None  # type: ignore


class InlineQueue:
    """Runs jobs synchronously for development without Redis."""

    def enqueue(self, func, *args, **kwargs):
        for key in ("job_id", "retry", "result_ttl", "failure_ttl", "job_timeout"):
            kwargs.pop(key, None)
        if isinstance(func, str):
            module_name, _, attr = func.rpartition(".")
            func = getattr(importlib.import_module(module_name), attr)
        logger.warning("Redis not available, running job inline: %s", func.__name__)
        try:
            func(*args, **kwargs)
        except Exception:
            # Mirrors RQ: a failed job never fails the enqueueing request
            logger.exception("Inline job %s failed", func.__name__)
        return None


def init_redis(app):
    global redis_client, task_queue
    redis_url = app.config.get("REDIS_URL", "")
    if not redis_url:
        logger.warning("REDIS_URL not set, jobs will run inline (dev mode)")
        redis_client = None
        task_queue = InlineQueue()
        return

    try:
        redis_client = _redis.from_url(redis_url, decode_responses=False)
        redis_client.ping()
        task_queue = Queue("generation", connection=redis_client)
    except Exception as e:
        logger.warning("Redis connection failed (%s), jobs will run inline", e)
        redis_client = None
        task_queue = InlineQueue()
