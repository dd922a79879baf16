#!/usr/bin/env python3
"""Start the ITP Studio API, optionally with the job worker in the same process.

    python run_studio.py                       # API only
    STUDIO_EMBED_WORKER=true python run_studio.py
"""
import os
import threading

import uvicorn

from itp_studio.core.settings import settings
from itp_studio.worker import main as run_worker

PORT = int(os.getenv("STUDIO_PORT", 8000))
HOST = os.getenv("STUDIO_HOST", "127.0.0.1")
RELOAD = os.getenv("STUDIO_DEV", "false").lower() == "true"
EMBED_WORKER = os.getenv("STUDIO_EMBED_WORKER", "false").lower() == "true"


if __name__ == "__main__":
    print(f"{settings.app_name} API -> http://{HOST}:{PORT}  (docs at /docs)")
    if EMBED_WORKER:
        # signal handlers only work on the main thread
        threading.Thread(target=run_worker, kwargs={"install_signals": False}, name="worker", daemon=True).start()

    uvicorn.run(
        "itp_studio.main:create_app",
        factory=True,
        host=HOST,
        port=PORT,
        reload=RELOAD,
        log_level=settings.log_level.lower(),
    )
