"""Entry point for running the FastAPI application."""

import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()


def run() -> None:
    # Read port from environment variable, default to 8000 for FastAPI server
    # Can be overridden: PORT=7860 rah-api
    port = int(os.getenv("PORT", "8000"))

    uvicorn.run(
        "rah_backend.src.api.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=port,
        reload=os.getenv("RAH_RELOAD", "").lower() in {"1", "true", "yes"},
    )


if __name__ == "__main__":
    run()
