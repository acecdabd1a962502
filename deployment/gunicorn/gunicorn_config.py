import multiprocessing
import os

bind = os.getenv("GUNICORN_BIND", "unix:/run/livestockiq-amu/gunicorn.sock")
workers = int(os.getenv("GUNICORN_WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "sync"
worker_tmp_dir = "/dev/shm"
max_requests = 1000
max_requests_jitter = 100
timeout = 60
keepalive = 5

# Logging
accesslog = os.getenv("GUNICORN_ACCESS_LOG", "/var/log/livestockiq-amu/access.log")
errorlog = os.getenv("GUNICORN_ERROR_LOG", "/var/log/livestockiq-amu/error.log")
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "livestockiq-amu"

# Server mechanics
daemon = False
pidfile = "/run/livestockiq-amu/gunicorn.pid"
umask = 0o007


def on_starting(server):
    """Called just before the master process is initialized."""
    server.log.info("Starting LivestockIQ AMU backend")


def worker_abort(worker):
    """Called when a worker receives the SIGABRT signal (usually a timeout)."""
    worker.log.warning("Worker received SIGABRT signal")
