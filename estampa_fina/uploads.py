"""Blob storage on the local filesystem, served under ``/static/uploads``."""
from __future__ import annotations

import contextlib
import logging
import os
import re
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
MAX_UPLOAD_BYTES = 5 * 1024 * 1024

ProgressCallback = Callable[[float], None]


class UploadError(Exception):
    pass


def safe_name(filename: str) -> str:
    base = os.path.basename((filename or "").replace("\\", "/"))
    base = re.sub(r"[^A-Za-z0-9._-]+", "_", base).strip("._")
    return base or "arquivo"


def upload_path(prefix: str, filename: str) -> str:
    return f"{prefix}/{int(time.time() * 1000)}_{safe_name(filename)}"


class LocalBlobStorage:
    def __init__(self, root: str, base_url: str = "/static/uploads"):
        self.root = os.path.abspath(root)
        self.base_url = base_url.rstrip("/")

    def _target(self, path: str) -> str:
        parts = [safe_name(p) for p in path.replace("\\", "/").split("/") if p not in ("", ".", "..")]
        if not parts:
            raise UploadError("Caminho de destino inválido.")
        target = os.path.abspath(os.path.join(self.root, *parts))
        if not target.startswith(self.root + os.sep):
            raise UploadError("Caminho de destino inválido.")
        return target

    def upload(self, data: bytes, path: str, on_progress: Optional[ProgressCallback] = None) -> str:
        if len(data) > MAX_UPLOAD_BYTES:
            raise UploadError("Arquivo muito grande (máximo 5MB).")
        target = self._target(path)
        os.makedirs(os.path.dirname(target), exist_ok=True)

        total = len(data)
        written = 0
        if on_progress:
            on_progress(0.0)
        try:
            with open(target, "wb") as fh:
                while written < total:
                    chunk = data[written:written + CHUNK_SIZE]
                    fh.write(chunk)
                    written += len(chunk)
                    if on_progress:
                        on_progress(written / total)
        except OSError as e:
            logger.error(f"Upload to {target} failed: {e}")
            with contextlib.suppress(FileNotFoundError):
                os.remove(target)
            raise UploadError("Falha ao enviar o arquivo.") from e
        if on_progress and total == 0:
            on_progress(1.0)

        rel = os.path.relpath(target, self.root).replace(os.sep, "/")
        logger.info(f"Stored {total} bytes at {rel}")
        return f"{self.base_url}/{rel}"
