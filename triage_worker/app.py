from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import Settings, load_settings
from .errors import install_error_handlers
from .logging import install_app_logging, setup_logging
from .routers.export import router as export_router
from .routers.feedback import router as feedback_router
from .routers.sessions import router as sessions_router
from .routers.transcribe import router as transcribe_router
from .services.reconcile import utc_now_iso
from .state import build_state


def load_env_file(env_path: Path) -> None:
    """Minimal .env loader: KEY=VALUE lines into os.environ if not set.
    - Ignores comments and blank lines
    - Strips surrounding quotes
    - Supports optional 'export ' prefix
    """
    try:
        if not env_path.exists():
            return
        for raw in env_path.read_text(encoding="utf-8").splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.lower().startswith("export "):
                line = line[7:].lstrip()
            if "=" not in line:
                continue
            k, v = line.split("=", 1)
            os.environ.setdefault(k.strip(), v.strip().strip('"').strip("'"))
    except OSError as e:
        # Best-effort only
        logging.getLogger("app").warning(f"could not read {env_path}: {e}")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    if settings is None:
        load_env_file(Path.cwd() / ".env")
        settings = load_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="Triage Worker", version=__version__)

    # Attach config/state
    app.state.settings = settings
    app.state.state = build_state(settings)

    # CORS
    allow = [o.strip() for o in settings.cors_allow_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_app_logging(app)
    install_error_handlers(app)

    # Versioned API
    app.include_router(transcribe_router, prefix="/v1")
    app.include_router(export_router, prefix="/v1")
    app.include_router(feedback_router, prefix="/v1")
    app.include_router(sessions_router, prefix="/v1")

    @app.get("/health")
    def health():  # pragma: no cover - trivial
        return {"status": "ok", "timestamp": utc_now_iso()}

    s = app.state.state
    logging.getLogger("app").info(
        f"ready: outputs={s.outputs_dir} feedback={s.feedback_dir} tmp={s.tmp_dir} "
        f"categorizer={settings.categorizer} recognizer={settings.recognizer}"
    )
    return app
