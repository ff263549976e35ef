import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"
worker_class = "uvicorn.workers.UvicornWorker"

# one step or one edit per request; edits run the image model inline
workers = int(os.getenv("WEB_CONCURRENCY", "2"))
threads = 2
timeout = 900             # hard kill after N seconds of no response
graceful_timeout = 120    # time to let an in-flight step finish
keepalive = 75

# recycle workers to cap memory growth from image buffers
max_requests = int(os.getenv("MAX_REQUESTS", "1000"))
max_requests_jitter = int(os.getenv("MAX_REQUESTS_JITTER", "100"))

# Cloud Run captures stdout
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
