"""Search domain exports."""

from .repo import reset_memory_state, seed_memory_store
from .service import SearchService

__all__ = [
	"SearchService",
	"seed_memory_store",
	"reset_memory_state",
]
