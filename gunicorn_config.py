# Gunicorn Configuration for Momentum AI Production Server
# gunicorn -c gunicorn_config.py momentum_backend.wsgi:app
import multiprocessing
import os

# Server socket
bind = f"0.0.0.0:{os.environ.get('PORT', '3001')}"
backlog = 2048

# Worker processes; threads keep SSE streams from blocking a worker
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "gthread"
threads = 4
max_requests = 1000
max_requests_jitter = 100

# In-memory idempotency/IP tracking is per worker; use REDIS_URL with more than one worker
preload_app = True

# Logging
accesslog = "-"  # Log to stdout
errorlog = "-"   # Log to stderr
loglevel = "info"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "momentum-ai"

# Server mechanics
daemon = False
pidfile = "/tmp/momentum-ai.pid"
user = None
group = None
tmp_upload_dir = None

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190

# Timeout settings; streams are capped at 5 minutes by the app
timeout = 330
keepalive = 5
graceful_timeout = 30

raw_env = [
    'ENVIRONMENT=production',
]
