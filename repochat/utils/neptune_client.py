"""
Amazon Neptune read client for repository entities and their relationship graph,
using the Gremlin Python driver with AWS SigV4 authentication.

Ingestion writes one ``Entity`` vertex per structural unit with the properties
``id``, ``repository_id``, ``name``, ``name_lower``, ``kind``, ``file_path``,
``file_path_lower`` and ``metadata`` (a JSON string), and one ``Relationship``
edge per distinct (source, target, relationship_type) triple carrying
``repository_id`` and ``relationship_type``.
"""

import json
from functools import wraps
from typing import Any, Dict, List

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import __
from gremlin_python.process.traversal import P, TextP

from ..models.core import Entity, Relationship, parse_metadata
from .config import NeptuneConfig
from .logging_config import get_logger

logger = get_logger(__name__)

ENTITY_LABEL = 'Entity'
RELATIONSHIP_LABEL = 'Relationship'


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations on connection errors."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower():
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise NeptuneError(f'Failed to {func.__name__}: {retry_e}')
            else:
                logger.error(f'Error in {func.__name__}: {e}')
                raise NeptuneError(f'Failed to {func.__name__}: {e}')

    return wrapper


def _first(data: Dict[Any, Any], key: str, default: Any = '') -> Any:
    """value_map(True) wraps property values in single-element lists."""
    value = data.get(key, default)
    if isinstance(value, list):
        return value[0] if value else default
    return value


def vertex_to_entity(data: Dict[Any, Any]) -> Entity:
    """Convert a value_map(True) result of an Entity vertex."""
    kind = _first(data, 'kind')
    raw_metadata = _first(data, 'metadata', '{}')
    try:
        metadata = json.loads(raw_metadata) if isinstance(raw_metadata, str) and raw_metadata else {}
    except json.JSONDecodeError:
        logger.debug(f"Unparseable metadata on entity {_first(data, 'id')}")
        metadata = {}

    return Entity(id=_first(data, 'id'),
                  repository_id=_first(data, 'repository_id'),
                  name=_first(data, 'name'),
                  kind=kind,
                  file_path=_first(data, 'file_path'),
                  metadata=parse_metadata(kind, metadata))


class NeptuneClient:
    """Amazon Neptune client using Gremlin Python driver with AWS authentication."""

    def __init__(self, config: NeptuneConfig):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
        """
        self.config = config
        self.connection = None
        self.g = None
        self._connect()

        logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        region = Session().region_name or self.config.region or 'us-east-1'

        # Create signed request for WebSocket connection
        request = AWSRequest(method='GET', url=conn_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=request.headers.items(),
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        self.g = traversal().with_remote(self.connection)

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()

    def _entities(self, repository_id: str):
        return self.g.V().has_label(ENTITY_LABEL).has('repository_id', repository_id)

    @retry_on_connection_error
    def list_entities(self, repository_id: str, limit: int = 500) -> List[Entity]:
        """
        List entities of a repository, capped for cost control.

        Args:
            repository_id: Repository to scan
            limit: Maximum number of vertices to return

        Returns:
            List of Entity objects
        """
        rows = self._entities(repository_id).limit(limit).value_map(True).to_list()
        entities = [vertex_to_entity(row) for row in rows]
        logger.debug(f'Listed {len(entities)} entities for repository {repository_id}')
        return entities

    @retry_on_connection_error
    def find_entities_by_keyword(self, repository_id: str, keyword: str, limit: int = 40) -> List[Entity]:
        """
        Case-insensitive substring match of a keyword against entity name and file path.

        Args:
            repository_id: Repository to search
            keyword: Sanitized search term
            limit: Maximum number of vertices to return

        Returns:
            List of matching Entity objects
        """
        term = keyword.lower()
        rows = self._entities(repository_id)\
            .or_(__.has('name_lower', TextP.containing(term)), __.has('file_path_lower', TextP.containing(term)))\
            .limit(limit)\
            .value_map(True).to_list()
        return [vertex_to_entity(row) for row in rows]

    @retry_on_connection_error
    def get_entities_by_ids(self, repository_id: str, entity_ids: List[str]) -> List[Entity]:
        """
        Fetch full entity rows for a set of ids within one repository.

        Returns:
            List of Entity objects (unknown ids are silently absent)
        """
        if not entity_ids:
            return []
        rows = self._entities(repository_id).has('id', P.within(list(entity_ids))).value_map(True).to_list()
        return [vertex_to_entity(row) for row in rows]

    @retry_on_connection_error
    def get_edges(self, repository_id: str, entity_ids: List[str], direction: str = 'out', limit: int = 300) -> List[Relationship]:
        """
        Fetch relationship edges touching the given entities.

        Args:
            repository_id: Repository the edges belong to
            entity_ids: Entity ids to match
            direction: 'out' for edges whose source is in entity_ids, 'in' for edges whose target is
            limit: Maximum number of edges to return

        Returns:
            List of Relationship objects
        """
        if not entity_ids:
            return []
        if direction not in ('out', 'in'):
            raise NeptuneError(f'Unsupported edge direction: {direction}')

        vertices = self._entities(repository_id).has('id', P.within(list(entity_ids)))
        edges = vertices.out_e(RELATIONSHIP_LABEL) if direction == 'out' else vertices.in_e(RELATIONSHIP_LABEL)
        rows = edges.has('repository_id', repository_id)\
            .limit(limit)\
            .project('source', 'target', 'type')\
            .by(__.out_v().values('id'))\
            .by(__.in_v().values('id'))\
            .by(__.values('relationship_type'))\
            .to_list()

        relationships = [
            Relationship(repository_id=repository_id,
                         source_entity_id=row['source'],
                         target_entity_id=row['target'],
                         relationship_type=row['type']) for row in rows
        ]
        logger.debug(f'Fetched {len(relationships)} {direction}-edges for {len(entity_ids)} entities')
        return relationships

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy, False otherwise
        """
        self.g.V().limit(1).count().next()
        return True
