"""
Gunicorn Configuration

    gunicorn -c deploy/gunicorn.conf.py "mentorlink.main:get_application()"

Rooms live in worker memory, so every connection of a session must
reach the same worker: run a single worker.
"""
import os

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes
workers = 1
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 120
graceful_timeout = 30
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()

# Process naming
proc_name = "mentorlink"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190
