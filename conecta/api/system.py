from fastapi import APIRouter

from ..core.version import get_version_info

router = APIRouter()


@router.get("/version")
def read_version() -> dict[str, str]:
    return get_version_info()
