from .config import settings, get_settings, Settings
from .database import Base, LedgerStore, create_store
from .locks import KeyedLockRegistry

__all__ = ["settings", "get_settings", "Settings", "Base", "LedgerStore", "create_store", "KeyedLockRegistry"]
