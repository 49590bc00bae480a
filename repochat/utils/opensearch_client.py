"""
OpenSearch client wrapper for session memory, entity embeddings and pipeline logs.
"""

import time
from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

INDEX_TYPES = ('embedding', 'session_memory', 'pipeline_log')


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
        """
        self.config = config

        credentials = boto3.Session().get_credentials()
        auth = AWS4Auth(region=config.region, service='aoss', refreshable_credentials=credentials)
        endpoint = config.endpoint
        if '://' in endpoint:
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=True,
                                 verify_certs=True,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def index_name(self, index_type: str) -> str:
        """Physical index name for an index type."""
        if index_type not in INDEX_TYPES:
            raise OpenSearchError(f'Unknown index type: {index_type}')
        return f'{self.config.index_name}_{index_type}'

    def _index_body(self, index_type: str) -> Dict[str, Any]:
        if index_type == 'embedding':
            return {
                'mappings': {
                    'properties': {
                        'repository_id': {
                            'type': 'keyword'
                        },
                        'entity_id': {
                            'type': 'keyword'
                        },
                        'embedding': {
                            'type': 'knn_vector',
                            'dimension': self.config.dimension,
                            'method': {
                                'name': 'hnsw',
                                'space_type': 'cosinesimil',
                                'engine': 'nmslib'
                            }
                        },
                        'semantic_summary': {
                            'type': 'text'
                        },
                        'updated_at': {
                            'type': 'date'
                        }
                    }
                },
                'settings': {
                    'index': {
                        'knn': True
                    }
                }
            }
        if index_type == 'session_memory':
            return {
                'mappings': {
                    'properties': {
                        'session_id': {
                            'type': 'keyword'
                        },
                        'repository_id': {
                            'type': 'keyword'
                        },
                        'entity_id': {
                            'type': 'keyword'
                        },
                        'weight': {
                            'type': 'integer'
                        },
                        'last_used_at': {
                            'type': 'date'
                        }
                    }
                }
            }
        return {
            'mappings': {
                'properties': {
                    'timestamp': {
                        'type': 'date'
                    },
                    'repository_id': {
                        'type': 'keyword'
                    },
                    'orchestrator_state': {
                        'type': 'keyword'
                    },
                    'agent_name': {
                        'type': 'keyword'
                    },
                    'step': {
                        'type': 'keyword'
                    },
                    'status': {
                        'type': 'keyword'
                    },
                    'input_summary': {
                        'type': 'object',
                        'enabled': False
                    },
                    'output_summary': {
                        'type': 'object',
                        'enabled': False
                    },
                    'error_message': {
                        'type': 'text'
                    }
                }
            }
        }

    def create_index_if_not_exists(self, index_type: str) -> str:
        """
        Create index if it doesn't exist.

        Args:
            index_type: One of INDEX_TYPES

        Returns:
            'exists', 'created' or 'failed'
        """
        index_name = self.index_name(index_type)

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=self._index_body(index_type))
            logger.info(f'Created index {index_name}')
            if response.get('acknowledged', False):
                logger.info(f'Waiting 15s for index {index_name} sync-up...')
                time.sleep(15)
                return 'created'
            return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def ensure_indexes(self) -> Dict[str, str]:
        """Create the embedding, session memory and pipeline log indexes so keyword mappings apply."""
        return {index_type: self.create_index_if_not_exists(index_type) for index_type in INDEX_TYPES}

    def index_document(self, document: Dict[str, Any], index_type: str, doc_id: Optional[str] = None) -> bool:
        """
        Index a document; with a doc_id this is an upsert keyed by that id.

        Args:
            document: Document to index
            index_type: One of INDEX_TYPES
            doc_id: Natural key of the document (generated by OpenSearch if None)

        Returns:
            True if indexing was successful, False otherwise
        """
        index_name = self.index_name(index_type)

        try:
            if doc_id is None:
                response = self.client.index(index=index_name, body=document)
            else:
                response = self.client.index(index=index_name, body=document, id=doc_id)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Indexed document in {index_name}')
            else:
                logger.warning(f'Unexpected result indexing document: {response}')

            return success

        except OpenSearchException as e:
            logger.error(f'Error indexing document: {e}')
            raise OpenSearchError(f'Failed to index document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error indexing document: {e}')
            raise OpenSearchError(f'Unexpected error indexing document: {e}')

    def get_document(self, doc_id: str, index_type: str) -> Optional[Dict[str, Any]]:
        """
        Get a document by its id.

        Returns:
            Document source if found, None otherwise
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.get(index=index_name, id=doc_id)
            return response.get('_source') if response.get('found', False) else None

        except NotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error getting document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error getting document: {e}')

    def search_documents(self,
                         filters: Dict[str, Any],
                         index_type: str,
                         size: int = 20,
                         sort: Optional[List[Dict[str, Any]]] = None,
                         include_embedding: bool = False) -> List[Dict[str, Any]]:
        """
        Filter documents by exact field values.

        Args:
            filters: Field -> value; list values become a terms filter
            index_type: One of INDEX_TYPES
            size: Maximum number of documents to return
            sort: Optional OpenSearch sort clause
            include_embedding: Return the embedding field in results

        Returns:
            List of document sources
        """
        index_name = self.index_name(index_type)

        clauses = []
        for field_name, value in filters.items():
            if isinstance(value, (list, tuple, set)):
                clauses.append({'terms': {field_name: list(value)}})
            else:
                clauses.append({'term': {field_name: value}})

        search_body: Dict[str, Any] = {'size': size, 'query': {'bool': {'filter': clauses}}}
        if sort:
            search_body['sort'] = sort
        if not include_embedding:
            search_body['_source'] = {'excludes': ['embedding']}

        try:
            response = self.client.search(index=index_name, body=search_body)
            documents = [hit['_source'] for hit in response['hits']['hits']]
            logger.debug(f'Search on {index_name} returned {len(documents)} documents')
            return documents

        except NotFoundError:
            logger.warning(f'Index {index_name} does not exist')
            return []
        except OpenSearchException as e:
            logger.error(f'Error searching {index_name}: {e}')
            raise OpenSearchError(f'Search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error searching {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error in search: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name('session_memory'))
            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
