"""Entry point for running the helpdesk FastAPI application with Uvicorn."""
from __future__ import annotations

import os

import uvicorn


def main() -> None:
  port = int(os.getenv("HELPDESK_PORT", "8000"))
  reload = os.getenv("UVICORN_RELOAD", "false").lower() == "true"
  uvicorn.run("helpdesk.main:app", host=os.getenv("HELPDESK_HOST", "0.0.0.0"), port=port, reload=reload)


if __name__ == "__main__":
  main()
