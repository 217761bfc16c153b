# backend/gunicorn_conf.py

# Gunicorn config file
#   gunicorn -c backend/gunicorn_conf.py regdesk.main:app

import os

# Basic configuration
bind = os.getenv("BIND", "0.0.0.0:8000")
worker_class = "uvicorn.workers.UvicornWorker"
# Sessions live in process memory unless SESSION_BACKEND=redis.
workers = int(os.getenv("WORKERS", "1")) if os.getenv("SESSION_BACKEND", "memory").lower() == "redis" else 1
chdir = os.path.dirname(os.path.abspath(__file__))

# Settings for running behind a reverse proxy like Nginx
forwarded_allow_ips = "*"

# --- Logging ---
# Send access and error logs to stdout and stderr
accesslog = "-"
errorlog = "-"
loglevel = "info"
