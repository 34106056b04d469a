from .gateway import StorageGateway
from .settings import StorageSettings

__all__ = [
    "StorageGateway",
    "StorageSettings",
]
