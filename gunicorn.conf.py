"""
Gunicorn configuration for the AREA engine.

Env vars that override defaults:
  PORT     : TCP port to bind
  WORKERS  : number of worker processes (default: 1)
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# Detection lifecycles live inside the worker process. Every extra worker
# would restore and run the same areas again, so keep one per instance.
workers = int(os.environ.get("WORKERS", "1"))

# Each worker runs Uvicorn's ASGI event loop inside Gunicorn's process manager.
worker_class = "uvicorn.workers.UvicornWorker"

keepalive = 5

# Kill a worker that hasn't responded in 120 s.
timeout = 120

# Logs go to stdout; the app formats its own records with structlog.
loglevel = "info"
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)sB %(D)sµs'

# Leaves time for lifecycles to stop on shutdown.
graceful_timeout = 30
