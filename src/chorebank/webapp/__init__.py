"""JSON web surface for ChoreBank (requires the optional FastAPI dependency)."""
from __future__ import annotations

try:
    from .application import app_factory, create_app
except ModuleNotFoundError as exc:  # pragma: no cover - import guard
    if exc.name in {"fastapi", "starlette", "pydantic"}:
        raise RuntimeError(
            "chorebank.webapp requires FastAPI. Install it via `pip install chorebank[web]`."
        ) from exc
    raise

__all__ = ["app_factory", "create_app"]
