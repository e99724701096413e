from __future__ import annotations

import os
from datetime import datetime, timezone
from functools import lru_cache
from importlib import metadata

PACKAGE_NAME = "conecta"


def _resolve_version() -> str:
    try:
        return metadata.version(PACKAGE_NAME)
    except metadata.PackageNotFoundError:
        return "0.0.0+local"


def _resolve_git_sha() -> str:
    return os.getenv("GIT_SHA") or os.getenv("RENDER_GIT_COMMIT") or "unknown"


def _resolve_build_time() -> str:
    return os.getenv("BUILD_TIME", datetime.now(timezone.utc).isoformat())


@lru_cache
def get_version_info() -> dict[str, str]:
    from ..config import settings

    return {
        "version": _resolve_version(),
        "gitSha": _resolve_git_sha(),
        "buildTime": _resolve_build_time(),
        "env": settings.environment,
    }
