"""JSON persistence helpers shared by the on-disk stores.

Every store re-reads its file on each call; nothing is cached between
invocations, so two processes always observe each other's last write.
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel

from autowriter.errors import PersistenceError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def atomic_write_text(path: Path, text: str) -> None:
    """Atomically replace *path* with *text*.

    Readers see either the old file or the new one, never a partial write.

    Raises:
        PersistenceError: If the directory or file cannot be written.
    """
    tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(path)
    except OSError as exc:
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            logger.debug("Could not remove temp file %s", tmp)
        raise PersistenceError(f"Failed to write {path}: {exc}") from exc


def save_model(path: Path, model: BaseModel) -> None:
    """Serialize a pydantic model to *path* atomically."""
    atomic_write_text(path, model.model_dump_json(indent=2))


def load_model(path: Path, model_type: type[ModelT]) -> ModelT | None:
    """Load a pydantic model from *path*.

    Returns None when the file is missing or corrupt; corrupt files are
    logged so they can be recovered by hand.
    """
    if not path.exists():
        return None
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return model_type.model_validate(raw)
    except (json.JSONDecodeError, ValueError, KeyError):
        logger.warning("Corrupt state file at %s, ignoring", path)
        return None
    except OSError as exc:
        raise PersistenceError(f"Failed to read {path}: {exc}") from exc
