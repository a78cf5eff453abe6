"""Document store interface used by the batch dispatcher."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class ItemError:
    """A single record rejected inside an otherwise accepted batch."""
    position: int
    record_id: Optional[str]
    error_type: str
    reason: str = ""
    status: Optional[int] = None


@dataclass
class WriteResult:
    """Outcome of one bulk write."""
    accepted: int
    item_errors: List[ItemError] = field(default_factory=list)


class DocumentStore(ABC):
    """Bulk-capable document store.

    ``write_batch`` raises ``StoreOverflowError`` when the batch was rejected
    as too large or rate limited, and ``StoreWriteError`` for any other
    failure of the whole batch.
    """

    @abstractmethod
    async def write_batch(
        self,
        records: Sequence[Dict[str, Any]],
        namespace: str,
        refresh: bool = False,
    ) -> WriteResult:
        """Write ``records`` in one request.

        Args:
            records: Validated alert records
            namespace: Target namespace/space
            refresh: Ask the store to make the batch searchable before returning

        Returns:
            Accepted count and per-item rejections
        """
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None

    async def __aenter__(self) -> "DocumentStore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
