# Import all models for easy access
from .base import BaseModel
from .integration import Integration, IntegrationCredential, IntegrationProvider, LinkStatus, UserIntegration
from .list_item import ItemList, ListCategory, ListItem, UserList

__all__ = [
    "BaseModel",
    "Integration",
    "IntegrationCredential",
    "IntegrationProvider",
    "LinkStatus",
    "UserIntegration",
    "ItemList",
    "UserList",
    "ListCategory",
    "ListItem",
]
