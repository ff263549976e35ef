# server.py (repo root)
# gunicorn -c gunicorn_conf.py server:app
from app.main import app

# Optional local run (TASK_BACKEND=local runs steps in-process):
if __name__ == "__main__":
    import os, uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8080")))
