from .repositories import TortoiseTenantDirectory, TortoiseTenantRepository
from .session import TortoiseTenantConnector, close_db, init_db, open_client

__all__ = [
    "TortoiseTenantConnector",
    "TortoiseTenantDirectory",
    "TortoiseTenantRepository",
    "close_db",
    "init_db",
    "open_client",
]
