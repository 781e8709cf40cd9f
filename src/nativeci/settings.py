from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class Settings:
    hab_binary: str = "hab"
    retry_backoff_seconds: float = 0.0
    workers: Optional[int] = None
    workflow: Optional[str] = None
    container_workdir: str = "/workspace"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "Settings":
        workers = environ.get("NATIVECI_WORKERS")
        return cls(
            hab_binary=environ.get("NATIVECI_HAB_BINARY", "hab"),
            retry_backoff_seconds=float(environ.get("NATIVECI_RETRY_BACKOFF_SECONDS", "0")),
            workers=int(workers) if workers else None,
            workflow=environ.get("NATIVECI_WORKFLOW") or None,
            container_workdir=environ.get("NATIVECI_CONTAINER_WORKDIR", "/workspace"),
        )
