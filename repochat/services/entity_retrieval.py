"""
Seed entity retrieval: keyword matching, domain fallback and seed ranking.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..models.core import Entity
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError
from .keyword_extraction import extract_dominant_domains, sanitize_for_like, score_entity_against_keywords

logger = get_logger(__name__)

DOMAIN_SCAN_LIMIT = 500
DOMAIN_LIMIT = 10
MAX_KEYWORD_QUERIES = 10
ROWS_PER_KEYWORD = 40
DOMAIN_FALLBACK_KEYWORDS = 8
MAX_ENTITIES_BY_ID = 80
MAX_SESSION_SEEDS = 20
MAX_SEEDS = 80


class EntityRetrievalError(Exception):
    """Custom exception for entity retrieval errors."""
    pass


def score_for_seed_ranking(entity: Entity, retrieval_keywords: List[str], dominant_domains: List[str],
                           in_session: bool) -> int:
    """2 x keyword match + domain match + 1 if the entity is warm in session memory."""
    keyword_score = score_entity_against_keywords(entity, retrieval_keywords)
    domain_score = score_entity_against_keywords(entity, dominant_domains)
    return keyword_score * 2 + domain_score + (1 if in_session else 0)


def prioritize_session_entities(memory_entities: List[Entity], retrieval_keywords: List[str]) -> List[Entity]:
    """Remembered entities that still match this turn's keywords, best first."""
    scored = [(entity, score_entity_against_keywords(entity, retrieval_keywords)) for entity in memory_entities]
    scored = [item for item in scored if item[1] > 0]
    scored.sort(key=lambda item: item[1], reverse=True)
    return [entity for entity, _ in scored[:MAX_SESSION_SEEDS]]


def rank_seeds(keyword_matched: List[Entity],
               session_entities: List[Entity],
               retrieval_keywords: List[str],
               dominant_domains: List[str],
               limit: int = MAX_SEEDS) -> List[Entity]:
    """Merge keyword matches with session entities and keep the best-ranked seeds.

    Keyword matches win on id collisions; sorting is stable, so equal ranks keep
    retrieval order.
    """
    merged: Dict[str, Entity] = {}
    for entity in keyword_matched:
        merged.setdefault(entity.id, entity)
    for entity in session_entities:
        merged.setdefault(entity.id, entity)

    session_ids: Set[str] = {entity.id for entity in session_entities}
    ranked = sorted(merged.values(),
                    key=lambda e: score_for_seed_ranking(e, retrieval_keywords, dominant_domains, e.id in session_ids),
                    reverse=True)
    return ranked[:limit]


class EntityRetrievalService:
    """Reads candidate entities from the graph store."""

    def __init__(self, neptune: Optional[NeptuneClient] = None):
        self.neptune = neptune or NeptuneClient(config.neptune)

    async def detect_dominant_domains(self, repository_id: str, limit: int = DOMAIN_LIMIT) -> List[str]:
        """
        Most frequent business-domain tokens of a repository, from a capped entity scan.

        Raises:
            EntityRetrievalError: If the entity scan fails
        """
        try:
            entities = await asyncio.to_thread(self.neptune.list_entities, repository_id, DOMAIN_SCAN_LIMIT)
        except NeptuneError as e:
            raise EntityRetrievalError(f'Domain detection failed: {e}')
        return extract_dominant_domains(entities, limit)

    async def retrieve_by_keywords(self, repository_id: str, keywords: Iterable[str]) -> List[Entity]:
        """
        Union of entities whose name or path contains any of the first keywords.

        Args:
            repository_id: Repository to search
            keywords: Retrieval keywords, most important first (at most 10 are queried)

        Returns:
            Entities keyed by id, first occurrence wins

        Raises:
            EntityRetrievalError: If a lookup fails
        """
        patterns = [p for p in (sanitize_for_like(k) for k in list(keywords)[:MAX_KEYWORD_QUERIES]) if p]
        matched: Dict[str, Entity] = {}
        for pattern in dict.fromkeys(patterns):
            try:
                rows = await asyncio.to_thread(self.neptune.find_entities_by_keyword, repository_id, pattern, ROWS_PER_KEYWORD)
            except NeptuneError as e:
                raise EntityRetrievalError(f'Keyword retrieval failed for {pattern!r}: {e}')
            for entity in rows:
                matched.setdefault(entity.id, entity)

        logger.debug(f'Keyword retrieval matched {len(matched)} entities for {len(patterns)} patterns')
        return list(matched.values())

    async def retrieve_with_domain_fallback(self, repository_id: str, retrieval_keywords: List[str],
                                            dominant_domains: List[str]) -> Tuple[List[Entity], bool]:
        """
        Keyword retrieval, retried against dominant domains when nothing matches.

        Returns:
            Tuple of (entities, domain_fallback_used)
        """
        entities = await self.retrieve_by_keywords(repository_id, retrieval_keywords)
        if entities or not dominant_domains:
            return entities, False

        logger.debug('No keyword matches, retrying with dominant domains')
        entities = await self.retrieve_by_keywords(repository_id, dominant_domains[:DOMAIN_FALLBACK_KEYWORDS])
        return entities, bool(entities)

    async def get_entities_by_ids(self, repository_id: str, entity_ids: List[str],
                                  limit: int = MAX_ENTITIES_BY_ID) -> List[Entity]:
        """
        Full entity rows for the first ids of a list.

        Raises:
            EntityRetrievalError: If the lookup fails
        """
        ids = list(dict.fromkeys(entity_ids))[:limit]
        if not ids:
            return []
        try:
            return await asyncio.to_thread(self.neptune.get_entities_by_ids, repository_id, ids)
        except NeptuneError as e:
            raise EntityRetrievalError(f'Entity lookup failed: {e}')
