"""
Single-hop graph expansion around seed entities.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

from ..models.core import GraphExpansion, Relationship
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError

logger = get_logger(__name__)

EDGE_LIMIT_PER_DIRECTION = 300
MAX_EXPANDED_IDS = 80


class GraphExpansionError(Exception):
    """Custom exception for graph expansion errors."""
    pass


def dedupe_relationships(relationships: List[Relationship]) -> List[Relationship]:
    """Collapse duplicate (source, target, type) triples, keeping the first."""
    unique: Dict[Tuple[str, str, str], Relationship] = {}
    for relationship in relationships:
        unique.setdefault(relationship.key, relationship)
    return list(unique.values())


class GraphExpansionService:
    """Pulls one hop of edges in both directions and resolves the endpoint entities."""

    def __init__(self, neptune: Optional[NeptuneClient] = None):
        self.neptune = neptune or NeptuneClient(config.neptune)

    async def expand(self, repository_id: str, seed_entity_ids: List[str]) -> GraphExpansion:
        """
        Expand a seed set by exactly one hop; never transitive.

        Args:
            repository_id: Repository the seeds belong to
            seed_entity_ids: Seed ids, best first

        Returns:
            GraphExpansion with the seeds, their direct neighbours (at most 80 ids
            resolved) and the connecting edges

        Raises:
            GraphExpansionError: If the graph store cannot be read
        """
        seeds = list(dict.fromkeys(seed_entity_ids))
        if not seeds:
            return GraphExpansion(entities=[], relationships=[])

        try:
            outgoing, incoming = await asyncio.gather(
                asyncio.to_thread(self.neptune.get_edges, repository_id, seeds, 'out', EDGE_LIMIT_PER_DIRECTION),
                asyncio.to_thread(self.neptune.get_edges, repository_id, seeds, 'in', EDGE_LIMIT_PER_DIRECTION))
        except NeptuneError as e:
            raise GraphExpansionError(f'Edge lookup failed: {e}')

        seed_set = set(seeds)
        # Each edge must touch a seed, or its far endpoint would be a two-hop leak
        relationships = [
            r for r in dedupe_relationships([*outgoing, *incoming])
            if r.source_entity_id in seed_set or r.target_entity_id in seed_set
        ]

        ids = dict.fromkeys(seeds)
        for relationship in relationships:
            ids.setdefault(relationship.source_entity_id)
            ids.setdefault(relationship.target_entity_id)

        wanted = list(ids)[:MAX_EXPANDED_IDS]
        try:
            rows = await asyncio.to_thread(self.neptune.get_entities_by_ids, repository_id, wanted)
        except NeptuneError as e:
            raise GraphExpansionError(f'Entity lookup failed: {e}')

        # Seeds first (in rank order), then neighbours in edge order
        by_id = {entity.id: entity for entity in rows}
        entities = [by_id[entity_id] for entity_id in wanted if entity_id in by_id]

        logger.debug(f'Expanded {len(seeds)} seeds to {len(entities)} entities over {len(relationships)} edges')
        return GraphExpansion(entities=entities, relationships=relationships)
