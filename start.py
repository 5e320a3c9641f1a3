#!/usr/bin/env python3
"""
Content Queue Service Entrypoint

This script determines which process to run based on the SERVICE_TYPE
environment variable. Set SERVICE_TYPE in each deployed service's settings.

SERVICE_TYPE values:
  - web (default): Run the FastAPI admin API via gunicorn
  - worker: Run the content generation worker
  - maintenance: Run stale-job reclamation and retention purge
"""

import os
import sys

SERVICE_TYPE = os.environ.get("SERVICE_TYPE", "web")
PORT = os.environ.get("PORT", "8080")

print("=" * 50)
print(f"Content Queue Service: {SERVICE_TYPE}")
print("=" * 50)

if SERVICE_TYPE == "web":
    print("Starting web server (gunicorn)...")
    cmd = [
        "gunicorn", "medtour.api.main:app",
        "--workers", "2",
        "--worker-class", "uvicorn.workers.UvicornWorker",
        "--bind", f"0.0.0.0:{PORT}",
        "--timeout", "120",
        "--graceful-timeout", "30"
    ]
elif SERVICE_TYPE == "worker":
    queues = os.environ.get("WORKER_QUEUES", "content,translation,seo,image")
    print(f"Starting content worker ({queues})...")
    cmd = [sys.executable, "-m", "medtour.jobs.run_worker", "--queues", queues]
elif SERVICE_TYPE == "maintenance":
    print("Starting queue maintenance...")
    cmd = [sys.executable, "-m", "medtour.queue.run_maintenance"]
else:
    print(f"ERROR: Unknown SERVICE_TYPE: {SERVICE_TYPE}")
    print("Valid values: web, worker, maintenance")
    sys.exit(1)

print(f"Running: {' '.join(cmd)}")
print("=" * 50)

# Replace this process with the actual command
os.execvp(cmd[0], cmd)
