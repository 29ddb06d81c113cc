from __future__ import annotations

from pathlib import Path

import uvicorn

from .app import load_env_file
from .config import load_settings


def main() -> None:
    load_env_file(Path.cwd() / ".env")
    settings = load_settings()
    uvicorn.run(
        "triage_worker.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
