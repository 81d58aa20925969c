import logging
from typing import Annotated

from fastapi import Depends
from fastapi.routing import APIRouter

from filestore.storage import BaseStore, available_backends, get_store

logger = logging.getLogger("filestore.health")
router = APIRouter(
    prefix="/health",
    tags=["health"],
    responses={404: {"description": "Not found"}},
)


@router.get("/")
async def health_check(store: Annotated[BaseStore, Depends(get_store)]):
    """
    Report the active storage backend and which backends could be selected.

    Returns:
        dict: status, selected backend and per-backend availability.
    """
    backends = {name: store_cls is not None for name, store_cls in available_backends().items()}
    return {"status": "healthy", "storage_backend": store.name, "backends": backends}
