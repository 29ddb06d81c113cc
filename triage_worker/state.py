from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from fastapi import Request

from .config import Settings

if TYPE_CHECKING:
    from .services.categorizer import Categorizer
    from .services.session import SessionStore
    from .services.transcriber import Converter, Recognizer


@dataclass
class State:
    """Explicit context shared by the services of one worker process.

    Built once in ``create_app`` and attached to FastAPI's app.state. Holds
    the resolved storage areas and the injected recognizer / categorizer
    capabilities; per-session data lives in ``sessions``.
    """

    settings: Settings
    tmp_dir: Path
    outputs_dir: Path
    feedback_dir: Path

    recognizer: Recognizer
    converter: Converter
    sessions: SessionStore
    # None means keyword-only categorization
    categorizer: Optional[Categorizer] = None
    categorize_limiter: Optional[threading.BoundedSemaphore] = None

    def ensure_dirs(self) -> None:
        for d in (self.tmp_dir, self.outputs_dir, self.feedback_dir):
            d.mkdir(parents=True, exist_ok=True)


def _resolve(base: Path, p: str) -> Path:
    path = Path(p).expanduser()
    return (path if path.is_absolute() else base / path).resolve()


def build_state(settings: Settings) -> State:
    # Services import State, so they are loaded here rather than at module level.
    from .services.categorizer import build_categorizer
    from .services.session import SessionStore
    from .services.transcriber import build_converter, build_recognizer

    base = Path(settings.data_dir).expanduser().resolve()
    limiter = None
    if settings.categorize_max_concurrency > 0:
        limiter = threading.BoundedSemaphore(settings.categorize_max_concurrency)
    state = State(
        settings=settings,
        tmp_dir=_resolve(base, settings.tmp_dir),
        outputs_dir=_resolve(base, settings.outputs_dir),
        feedback_dir=_resolve(base, settings.feedback_dir),
        recognizer=build_recognizer(settings),
        converter=build_converter(settings),
        sessions=SessionStore(max_sessions=settings.max_sessions),
        categorizer=build_categorizer(settings),
        categorize_limiter=limiter,
    )
    state.ensure_dirs()
    return state


def get_state(request: Request) -> State:
    return request.app.state.state
