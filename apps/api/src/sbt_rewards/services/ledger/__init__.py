"""Reward ledger persistence exports."""

from .mirror import FileMirrorStore, MemoryMirrorStore, MirrorStore, build_mirror_store  # noqa: F401
from .repository import LedgerRepository, StoreStatus  # noqa: F401
