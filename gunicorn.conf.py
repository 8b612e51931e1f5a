import os


def _as_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw is not None else int(default)
    except (TypeError, ValueError):
        return int(default)


# Subscriptions live in process memory, so every open /stream connection
# must land on the worker that handles the writes. Keep a single worker and
# scale with threads instead.
workers = 1
threads = max(2, min(_as_int("GUNICORN_THREADS", 8), 32))
worker_class = "gthread"

# Event streams stay open; the scan and chat calls wait on the model provider.
timeout = _as_int("GUNICORN_TIMEOUT", 180)
graceful_timeout = _as_int("GUNICORN_GRACEFUL_TIMEOUT", 30)
keepalive = _as_int("GUNICORN_KEEPALIVE", 5)

max_requests = _as_int("GUNICORN_MAX_REQUESTS", 0)
max_requests_jitter = _as_int("GUNICORN_MAX_REQUESTS_JITTER", 0)

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
