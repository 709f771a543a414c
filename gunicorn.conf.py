# Gunicorn config (FastAPI + UvicornWorker)
# preload_app=False keeps schema creation and the settings subscription per worker.
import os

wsgi_app = "estampa_fina.main:app"
bind = f"0.0.0.0:{os.getenv('PORT','10000')}"
worker_class = "uvicorn.workers.UvicornWorker"
workers = int(os.getenv("WEB_CONCURRENCY", "1"))
threads = 1
preload_app = False
keepalive = 5
timeout = int(os.getenv("GUNICORN_TIMEOUT", "90"))
loglevel = os.getenv("LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"
