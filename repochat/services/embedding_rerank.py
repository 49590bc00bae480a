"""
Embedding-based candidate reranking and lazy embedding backfill.

Embeddings only improve rank quality; every path here degrades to keeping the
lexical order when vectors are unavailable.
"""

import asyncio
import math
from typing import Dict, List, Optional

from ..models.core import EmbeddingRecord, Entity
from ..utils.async_utils import with_timeout
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import ChatConfig, config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.pipeline_logger import PipelineLogger
from ..utils.timestamp_utils import to_iso_str
from .keyword_extraction import compact_text

logger = get_logger(__name__)

POSITIONAL_PRIOR_WEIGHT = 0.15
MAX_RERANK_LOOKUPS = 120
MAX_BACKFILL_CANDIDATES = 20
EMBEDDING_UPSERT_BATCH = 20
EMBEDDING_INPUT_LENGTH = 420
SNIPPET_LENGTH = 200


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Cosine similarity over the common prefix of two vectors; 0 for zero vectors."""
    length = min(len(a), len(b))
    dot = sum(a[i] * b[i] for i in range(length))
    norm_a = math.sqrt(sum(a[i] * a[i] for i in range(length)))
    norm_b = math.sqrt(sum(b[i] * b[i] for i in range(length)))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def entity_snippet(entity: Entity) -> str:
    return compact_text(entity.metadata.snippet, SNIPPET_LENGTH)


def to_embedding_input(entity: Entity) -> str:
    """Semantic summary of an entity; stored verbatim next to its vector."""
    raw = f'entity={entity.name};type={entity.kind};file={entity.file_path};snippet={entity_snippet(entity)};'
    return compact_text(raw, EMBEDDING_INPUT_LENGTH)


def embedding_doc_id(repository_id: str, entity_id: str) -> str:
    return f'{repository_id}::{entity_id}'


def blend_scores(query_vector: List[float], entities: List[Entity], vectors: Dict[str, List[float]]) -> List[Entity]:
    """Order entities by cosine similarity plus a positional prior of 0.15 / (1 + index)."""
    scored = []
    for index, entity in enumerate(entities):
        vector = vectors.get(entity.id)
        semantic = cosine_similarity(query_vector, vector) if vector else 0.0
        scored.append((semantic + POSITIONAL_PRIOR_WEIGHT / (1 + index), index, entity))
    scored.sort(key=lambda item: (-item[0], item[1]))
    return [entity for _, _, entity in scored]


class EmbeddingService:
    """Reranks candidates by stored entity vectors and backfills missing ones."""

    def __init__(self,
                 embed: Optional[BedrockEmbed] = None,
                 opensearch: Optional[OpenSearchClient] = None,
                 chat_config: Optional[ChatConfig] = None):
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.opensearch = opensearch or OpenSearchClient(config.opensearch)
        self.chat_config = chat_config or config.chat

    async def get_embeddings(self, repository_id: str, entity_ids: List[str]) -> List[EmbeddingRecord]:
        """
        Stored embeddings for the given entities.

        Raises:
            OpenSearchError: If the embedding index cannot be searched
        """
        if not entity_ids:
            return []
        filters = {'repository_id': repository_id, 'entity_id': list(entity_ids)}
        documents = await asyncio.to_thread(self.opensearch.search_documents, filters, 'embedding', len(entity_ids), None,
                                            True)
        records = []
        for doc in documents:
            vector = doc.get('embedding')
            if not doc.get('entity_id') or not isinstance(vector, list):
                continue
            records.append(
                EmbeddingRecord(repository_id=doc.get('repository_id', repository_id),
                                entity_id=doc['entity_id'],
                                embedding=[float(v) for v in vector if isinstance(v, (int, float))],
                                semantic_summary=doc.get('semantic_summary', '')))
        return records

    async def rerank(self, repository_id: str, question: str, entities: List[Entity]) -> List[Entity]:
        """
        Reorder candidates by similarity to the question, blended with their current order.

        Returns:
            Reordered entities; the input order unchanged when the query cannot be embedded
            or stored vectors cannot be read
        """
        if not entities:
            return entities

        query_vectors = await with_timeout(asyncio.to_thread(self.embed.embed_texts, [question], 'search_query'),
                                           self.chat_config.query_embedding_timeout, [],
                                           label='query_embedding')
        if not query_vectors or not query_vectors[0]:
            logger.debug('Query embedding unavailable, keeping lexical order')
            return entities

        try:
            records = await self.get_embeddings(repository_id, [e.id for e in entities][:MAX_RERANK_LOOKUPS])
        except OpenSearchError as e:
            logger.warning(f'Stored embeddings unavailable, keeping lexical order: {e}')
            return entities

        vectors = {record.entity_id: record.embedding for record in records}
        logger.debug(f'Reranking {len(entities)} entities with {len(vectors)} stored vectors')
        return blend_scores(query_vectors[0], entities, vectors)

    async def backfill(self, repository_id: str, entities: List[Entity], pipeline_logger: PipelineLogger,
                       keywords: Optional[List[str]] = None) -> int:
        """
        Embed surfaced candidates that have no stored vector yet.

        Runs in the background after a turn; every outcome is reported as a
        pipeline event.

        Returns:
            Number of embeddings written
        """
        state, agent = 'chat_async_embedding', 'embedding_backfill'
        candidates = entities[:MAX_BACKFILL_CANDIDATES]
        await pipeline_logger.log(state, agent, 'lazy_embedding_start', 'started', {
            'keywords': (keywords or [])[:8],
            'candidate_entities': len(candidates)
        })

        try:
            existing = await self.get_embeddings(repository_id, [e.id for e in candidates])
        except OpenSearchError as e:
            await pipeline_logger.log(state, agent, 'lazy_embedding_start', 'failed', {'candidates': len(candidates)},
                                      error_message=str(e))
            return 0

        existing_ids = {record.entity_id for record in existing}
        missing = [entity for entity in candidates if entity.id not in existing_ids]
        if not missing:
            await pipeline_logger.log(state, agent, 'lazy_embedding_start', 'skipped', {'candidates': len(candidates)},
                                      {'reason': 'all_candidates_already_embedded'})
            return 0

        inputs = [to_embedding_input(entity) for entity in missing]
        vectors = await asyncio.to_thread(self.embed.embed_texts, inputs)
        records = [
            EmbeddingRecord(repository_id=repository_id,
                            entity_id=entity.id,
                            embedding=vector,
                            semantic_summary=text) for entity, text, vector in zip(missing, inputs, vectors) if vector
        ]
        if not records:
            await pipeline_logger.log(state,
                                      agent,
                                      'lazy_embedding_upsert',
                                      'failed', {
                                          'missing_entities': len(missing),
                                          'embedding_model': self.embed.model_id
                                      },
                                      error_message='embedding_vectors_empty')
            return 0

        written = 0
        for start in range(0, len(records), EMBEDDING_UPSERT_BATCH):
            batch = records[start:start + EMBEDDING_UPSERT_BATCH]
            try:
                for record in batch:
                    document = {
                        'repository_id': record.repository_id,
                        'entity_id': record.entity_id,
                        'embedding': record.embedding,
                        'semantic_summary': record.semantic_summary,
                        'updated_at': to_iso_str(),
                    }
                    await asyncio.to_thread(self.opensearch.index_document, document, 'embedding',
                                            embedding_doc_id(record.repository_id, record.entity_id))
                    written += 1
            except OpenSearchError as e:
                await pipeline_logger.log(state, agent, 'lazy_embedding_upsert', 'failed', {'batch_size': len(batch)},
                                          error_message=str(e))
                return written

        await pipeline_logger.log(state, agent, 'lazy_embedding_upsert', 'success', {'missing_entities': len(missing)}, {
            'embedded_entity_count': written,
            'sample_entity_ids': [record.entity_id for record in records[:10]]
        })
        return written
