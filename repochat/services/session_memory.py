"""
Per-session weighted recall of entities used in earlier turns.
"""

import asyncio
from typing import List, Optional

from ..models.core import SessionMemoryRecord
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import to_datetime, to_iso_str

logger = get_logger(__name__)

MEMORY_READ_LIMIT = 30


class SessionMemoryError(Exception):
    """Custom exception for session memory errors."""
    pass


def memory_doc_id(session_id: str, repository_id: str, entity_id: str) -> str:
    """Natural key of a session memory record."""
    return f'{session_id}::{repository_id}::{entity_id}'


class SessionMemoryStore:
    """Session memory records in the OpenSearch session_memory index.

    Weights only grow: each write adds one per entity. Concurrent writes for the
    same key may lose an increment, which is acceptable for a relevance signal.
    """

    def __init__(self, opensearch: Optional[OpenSearchClient] = None):
        self.opensearch = opensearch or OpenSearchClient(config.opensearch)

    async def read(self, session_id: str, repository_id: str, limit: int = MEMORY_READ_LIMIT) -> List[str]:
        """
        Entity ids remembered for a session, heaviest first.

        Raises:
            SessionMemoryError: If the store cannot be read
        """
        records = await self.read_records(session_id, repository_id, limit)
        return [record.entity_id for record in records]

    async def read_records(self, session_id: str, repository_id: str, limit: int = MEMORY_READ_LIMIT) -> List[SessionMemoryRecord]:
        """Full session memory records, heaviest first."""
        filters = {'session_id': session_id, 'repository_id': repository_id}
        sort = [{'weight': {'order': 'desc'}}]
        try:
            documents = await asyncio.to_thread(self.opensearch.search_documents, filters, 'session_memory', limit, sort)
        except OpenSearchError as e:
            raise SessionMemoryError(f'Session memory read failed: {e}')

        return [
            SessionMemoryRecord(session_id=doc.get('session_id', session_id),
                                repository_id=doc.get('repository_id', repository_id),
                                entity_id=doc['entity_id'],
                                weight=int(doc.get('weight', 0)),
                                last_used_at=to_datetime(doc.get('last_used_at'))) for doc in documents if doc.get('entity_id')
        ]

    async def write(self, session_id: str, repository_id: str, entity_ids: List[str]) -> int:
        """
        Upsert each entity with weight = prior weight + 1 (or 1) and refresh last_used_at.

        Returns:
            Number of records written

        Raises:
            SessionMemoryError: If a record cannot be written
        """
        if not entity_ids:
            return 0

        written = 0
        now = to_iso_str()
        for entity_id in dict.fromkeys(entity_ids):
            doc_id = memory_doc_id(session_id, repository_id, entity_id)
            try:
                existing = await asyncio.to_thread(self.opensearch.get_document, doc_id, 'session_memory')
                prior = existing.get('weight') if existing else None
                weight = prior + 1 if isinstance(prior, int) else 1
                document = {
                    'session_id': session_id,
                    'repository_id': repository_id,
                    'entity_id': entity_id,
                    'weight': weight,
                    'last_used_at': now,
                }
                await asyncio.to_thread(self.opensearch.index_document, document, 'session_memory', doc_id)
                written += 1
            except OpenSearchError as e:
                raise SessionMemoryError(f'Session memory write failed for {entity_id}: {e}')

        logger.debug(f'Updated session memory for {written} entities (session={session_id})')
        return written
