"""
Pytest configuration and in-memory collaborators for the RepoChat test suite.

The fakes mirror the method signatures of BedrockLLM, BedrockEmbed,
NeptuneClient and OpenSearchClient so services can be exercised without AWS.
"""
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import pytest

from repochat.models.core import Entity, EntityMetadata, Relationship, make_entity_id
from repochat.services.chat_orchestrator import ChatOrchestrator
from repochat.utils.config import ChatConfig

REPO = 'repo-1'


def make_entity(name: str,
                file_path: str,
                kind: str = 'module',
                tags: Optional[List[str]] = None,
                keywords: Optional[List[str]] = None,
                snippet: str = '',
                repository_id: str = REPO) -> Entity:
    return Entity(id=make_entity_id(repository_id, name, file_path),
                  repository_id=repository_id,
                  name=name,
                  kind=kind,
                  file_path=file_path,
                  metadata=EntityMetadata(tags=tags or [], keywords=keywords or [], snippet=snippet))


def make_edge(source: Entity, target: Entity, relationship_type: str = 'uses-module') -> Relationship:
    return Relationship(repository_id=source.repository_id,
                        source_entity_id=source.id,
                        target_entity_id=target.id,
                        relationship_type=relationship_type)


class FakeLLM:
    """Scripted reasoning collaborator keyed by system prompt.

    A scripted value may be a response, a callable taking the payload, or
    missing (the caller's fallback is returned). ``delays`` maps a prompt to a
    blocking sleep in seconds to simulate a slow service.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None, delays: Optional[Dict[str, float]] = None):
        self.responses = responses or {}
        self.delays = delays or {}
        self.calls: List[tuple] = []

    def _respond(self, system_prompt: str, payload: Dict[str, Any], fallback: Any) -> Any:
        self.calls.append((system_prompt, payload))
        delay = self.delays.get(system_prompt)
        if delay:
            time.sleep(delay)
        if system_prompt not in self.responses:
            return fallback
        value = self.responses[system_prompt]
        return value(payload) if callable(value) else value

    def complete_json(self, system_prompt: str, payload: Dict[str, Any], fallback: Any) -> Any:
        return self._respond(system_prompt, payload, fallback)

    def complete_text(self, system_prompt: str, payload: Dict[str, Any], fallback: str) -> str:
        return self._respond(system_prompt, payload, fallback)

    def call_count(self, system_prompt: str) -> int:
        return sum(1 for prompt, _ in self.calls if prompt == system_prompt)

    def health_check(self) -> bool:
        return True


class FakeEmbed:
    """Embedding collaborator returning vectors from a text -> vector function."""

    model_id = 'fake-embed'

    def __init__(self, vector_for: Optional[Callable[[str], List[float]]] = None, fail: bool = False):
        self.vector_for = vector_for or (lambda text: [1.0, 0.0])
        self.fail = fail
        self.calls: List[tuple] = []

    def embed_texts(self, texts: List[str], input_type: str = 'search_document') -> List[List[float]]:
        self.calls.append((list(texts), input_type))
        if self.fail:
            return []
        return [self.vector_for(text) for text in texts]

    def health_check(self) -> bool:
        return not self.fail


class FakeNeptune:
    """Entity graph held in lists; every read is recorded in ``calls``."""

    def __init__(self, entities: Optional[List[Entity]] = None, edges: Optional[List[Relationship]] = None):
        self.entities = list(entities or [])
        self.edges = list(edges or [])
        self.calls: List[str] = []

    def _repo_entities(self, repository_id: str) -> List[Entity]:
        return [e for e in self.entities if e.repository_id == repository_id]

    def list_entities(self, repository_id: str, limit: int = 500) -> List[Entity]:
        self.calls.append('list_entities')
        return self._repo_entities(repository_id)[:limit]

    def find_entities_by_keyword(self, repository_id: str, keyword: str, limit: int = 40) -> List[Entity]:
        self.calls.append('find_entities_by_keyword')
        needle = keyword.lower()
        return [e for e in self._repo_entities(repository_id)
                if needle in e.name.lower() or needle in e.file_path.lower()][:limit]

    def get_entities_by_ids(self, repository_id: str, entity_ids: List[str]) -> List[Entity]:
        self.calls.append('get_entities_by_ids')
        wanted = set(entity_ids)
        return [e for e in self._repo_entities(repository_id) if e.id in wanted]

    def get_edges(self, repository_id: str, entity_ids: List[str], direction: str = 'out',
                  limit: int = 300) -> List[Relationship]:
        self.calls.append(f'get_edges:{direction}')
        wanted = set(entity_ids)
        key = 'source_entity_id' if direction == 'out' else 'target_entity_id'
        return [r for r in self.edges if r.repository_id == repository_id and getattr(r, key) in wanted][:limit]

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call.startswith(method))

    def health_check(self) -> bool:
        return True


class FakeOpenSearch:
    """Documents per index type, keyed by document id."""

    def __init__(self):
        self.indices: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.created: List[str] = []
        self.writes_before_create: List[str] = []

    def create_index_if_not_exists(self, index_type: str) -> str:
        if index_type in self.created:
            return 'exists'
        self.created.append(index_type)
        return 'created'

    def ensure_indexes(self) -> Dict[str, str]:
        return {index_type: self.create_index_if_not_exists(index_type)
                for index_type in ('embedding', 'session_memory', 'pipeline_log')}

    def index_document(self, document: Dict[str, Any], index_type: str, doc_id: Optional[str] = None) -> bool:
        if index_type not in self.created:
            self.writes_before_create.append(index_type)
        self.indices.setdefault(index_type, {})[doc_id or str(uuid.uuid4())] = dict(document)
        return True

    def get_document(self, doc_id: str, index_type: str) -> Optional[Dict[str, Any]]:
        document = self.indices.get(index_type, {}).get(doc_id)
        return dict(document) if document is not None else None

    def search_documents(self,
                         filters: Dict[str, Any],
                         index_type: str,
                         size: int = 20,
                         sort: Optional[List[Dict[str, Any]]] = None,
                         include_embedding: bool = False) -> List[Dict[str, Any]]:
        results = []
        for document in self.indices.get(index_type, {}).values():
            matched = True
            for field_name, value in filters.items():
                if isinstance(value, (list, tuple, set)):
                    matched = matched and document.get(field_name) in value
                else:
                    matched = matched and document.get(field_name) == value
            if matched:
                results.append(dict(document))
        if sort:
            field_name = next(iter(sort[0]))
            results.sort(key=lambda d: d.get(field_name, 0), reverse=sort[0][field_name].get('order') == 'desc')
        if not include_embedding:
            for document in results:
                document.pop('embedding', None)
        return results[:size]

    def documents(self, index_type: str) -> List[Dict[str, Any]]:
        return list(self.indices.get(index_type, {}).values())

    def health_check(self) -> bool:
        return True


@pytest.fixture
def chat_config() -> ChatConfig:
    """Short per-stage deadlines so timeout paths finish quickly."""
    return ChatConfig(response_budget_ms=1900,
                      frontdesk_timeout=0.2,
                      intent_timeout=0.2,
                      greeting_timeout=0.2,
                      expansion_timeout=0.2,
                      anchor_timeout=0.2,
                      query_embedding_timeout=0.2,
                      reasoning_timeout=0.2,
                      translation_timeout=0.2,
                      persist_pipeline_logs=True)


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def embed() -> FakeEmbed:
    return FakeEmbed()


@pytest.fixture
def neptune() -> FakeNeptune:
    return FakeNeptune()


@pytest.fixture
def opensearch() -> FakeOpenSearch:
    return FakeOpenSearch()


@pytest.fixture
def orchestrator(llm, embed, neptune, opensearch, chat_config) -> ChatOrchestrator:
    return ChatOrchestrator.from_clients(llm=llm, embed=embed, neptune=neptune, opensearch=opensearch,
                                         chat_config=chat_config)
