"""
app/api/routers package marker.
"""

from app.api.routers.file_storage_router import router as file_storage_router
from app.api.routers.inventory_room_router import router as inventory_room_router
from app.api.routers.inventory_router import router as inventory_router
from app.api.routers.label_router import router as label_router

__all__ = [
    "file_storage_router",
    "inventory_room_router",
    "inventory_router",
    "label_router",
]
