"""Entry point for running the Callsite API server via ``python main.py``."""

import os

import uvicorn

from callsite.config import settings

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(
        "callsite.api.app:app",
        host="127.0.0.1",
        port=port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
