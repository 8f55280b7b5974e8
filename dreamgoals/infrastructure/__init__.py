# Infrastructure Layer
from .item_store import InMemoryItemStore, ItemStore
from .locks import KeyedLock
