"""
Document store interface.

The reconciliation core touches the store exactly twice per run: one
snapshot read at the start and one batched write at the end.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ..schemas.documents import Document
from ..schemas.pairs import MatchPair
from ..schemas.updates import RowWrite


@dataclass
class DocumentSnapshot:
    """Sources and targets of one pair, in stored row order."""

    sources: list[Document] = field(default_factory=list)
    targets: list[Document] = field(default_factory=list)

    def sources_by_id(self) -> dict[str, Document]:
        return {doc.document_id: doc for doc in self.sources}


class DocumentStore(ABC):
    """Tabular document store."""

    @abstractmethod
    async def read_documents(self, pair: MatchPair) -> DocumentSnapshot:
        """Read the full snapshot for a pair.

        Raises:
            StoreReadError: If the store is unreachable or the data is malformed.
        """

    @abstractmethod
    async def write_batch(self, writes: list[RowWrite]) -> None:
        """Apply all writes atomically.

        Raises:
            StoreWriteError: If the batch was rejected; nothing is applied.
        """
