"""
Core data models for the repository knowledge index and the chat pipeline.
"""

import hashlib
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

ENTITY_KINDS = ('module', 'function', 'class', 'api-route', 'dependency')

INTENT_TYPES = ('greeting', 'smalltalk', 'repo_question', 'unclear')


def make_entity_id(repository_id: str, name: str, file_path: str) -> str:
    """Deterministic entity id so re-ingesting the same unit upserts instead of duplicating.

    The SHA-256 of ``repository_id::name::file_path`` is shaped into a
    version-5 style UUID string.
    """
    digits = list(hashlib.sha256('::'.join([repository_id, name, file_path]).encode('utf-8')).hexdigest()[:32])
    digits[12] = '5'
    digits[16] = '89ab'[int(digits[16], 16) % 4]
    hex_id = ''.join(digits)
    return f'{hex_id[0:8]}-{hex_id[8:12]}-{hex_id[12:16]}-{hex_id[16:20]}-{hex_id[20:32]}'


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


@dataclass
class EntityMetadata:
    """Light facts captured at ingestion for any entity kind."""
    tags: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    snippet: str = ''


@dataclass
class ApiRouteMetadata(EntityMetadata):
    """Metadata for kind=api-route entities."""
    method: str = ''
    route_path: str = ''


def parse_metadata(kind: str, raw: Optional[Dict[str, Any]]) -> EntityMetadata:
    """Validate the open metadata bag stored with an entity into its typed record.

    Unknown keys are dropped; values of the wrong type fall back to defaults.
    """
    raw = raw if isinstance(raw, dict) else {}
    snippet = raw.get('snippet') if isinstance(raw.get('snippet'), str) else ''
    common = {'tags': _string_list(raw.get('tags')), 'keywords': _string_list(raw.get('keywords')), 'snippet': snippet}

    if kind == 'api-route':
        method = raw.get('method') if isinstance(raw.get('method'), str) else ''
        route_path = raw.get('route_path', raw.get('routePath'))
        return ApiRouteMetadata(method=method, route_path=route_path if isinstance(route_path, str) else '', **common)
    return EntityMetadata(**common)


@dataclass
class Entity:
    """A structural unit discovered during ingestion (read-only for the chat core)."""
    id: str
    repository_id: str
    name: str
    kind: str  # One of ENTITY_KINDS
    file_path: str
    metadata: EntityMetadata = field(default_factory=EntityMetadata)


@dataclass
class Relationship:
    """Directed, typed edge between two entities of the same repository."""
    repository_id: str
    source_entity_id: str
    target_entity_id: str
    relationship_type: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple:
        return (self.source_entity_id, self.target_entity_id, self.relationship_type)

    def to_payload(self) -> Dict[str, str]:
        return {'source': self.source_entity_id, 'target': self.target_entity_id, 'type': self.relationship_type}


@dataclass
class SessionMemoryRecord:
    """Weighted association between a chat session and an entity."""
    session_id: str
    repository_id: str
    entity_id: str
    weight: int
    last_used_at: datetime


@dataclass
class EmbeddingRecord:
    """Stored vector for an entity, with the exact text that was embedded."""
    repository_id: str
    entity_id: str
    embedding: List[float]
    semantic_summary: str


@dataclass
class FrontdeskDecision:
    """Cheap pre-classification: answer directly ('reply') or run the pipeline ('route')."""
    mode: str
    human_message: str
    refined_question: str


@dataclass
class IntentClassification:
    """Classified intent of a question plus its retrieval keywords."""
    intent_type: str  # One of INTENT_TYPES
    intent: str
    objective: str
    keywords: List[str]
    answer_style: str = 'product'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReasoningOutput:
    """Structured findings produced from the supplied structural evidence only."""
    findings: List[str]
    unknowns: List[str]
    constraints: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GraphExpansion:
    """One-hop neighbourhood of a seed set."""
    entities: List[Entity]
    relationships: List[Relationship]


@dataclass
class TurnContext:
    """Working state of one question/answer cycle; never persisted."""
    question: str
    repository_id: str
    session_id: str
    refined_question: str = ''
    history_summary: str = ''
    classification: Optional[IntentClassification] = None
    dominant_domains: List[str] = field(default_factory=list)
    expanded_keywords: List[str] = field(default_factory=list)
    flow_anchors: List[str] = field(default_factory=list)
    anchor_terms: List[str] = field(default_factory=list)
    retrieval_keywords: List[str] = field(default_factory=list)
    memory_entity_ids: List[str] = field(default_factory=list)
    session_entities: List[Entity] = field(default_factory=list)
    seed_entities: List[Entity] = field(default_factory=list)
    expanded_entities: List[Entity] = field(default_factory=list)
    candidate_entities: List[Entity] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    domain_fallback_used: bool = False
    reasoning: Optional[ReasoningOutput] = None
    answer: str = ''


@dataclass
class ChatResponse:
    """Answer returned to the caller; debug is additive observability data."""
    answer: str
    debug: Dict[str, Any] = field(default_factory=dict)
    status: str = 'ok'  # ok | invalid_request | failed

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
