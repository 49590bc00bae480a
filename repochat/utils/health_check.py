"""
Health check utilities for the chat service and its collaborators.
"""

from typing import Any, Callable, Dict, Optional

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import config
from .logging_config import get_logger
from .neptune_client import NeptuneClient
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def _probe(name: str, service: str, factory: Callable[[], Any], detail: Dict[str, Any]) -> Dict[str, Any]:
    try:
        healthy = factory().health_check()
        return {'healthy': healthy, 'service': service, **detail}
    except Exception as e:
        logger.warning(f'{name} health probe failed: {e}')
        return {'healthy': False, 'service': service, 'error': str(e)}


def get_health_status(llm: Optional[BedrockLLM] = None,
                      embed: Optional[BedrockEmbed] = None,
                      neptune: Optional[NeptuneClient] = None,
                      opensearch: Optional[OpenSearchClient] = None) -> Dict[str, Any]:
    """Get detailed health status of every collaborator.

    Args:
        llm, embed, neptune, opensearch: Existing clients to probe; new ones are
            created from configuration when omitted

    Returns:
        Dictionary with health status of each component
    """
    return {
        'bedrock_llm': _probe('bedrock_llm', 'Amazon Bedrock LLM', lambda: llm or BedrockLLM(config.bedrock_llm),
                              {'model': config.bedrock_llm.model_id}),
        'bedrock_embed': _probe('bedrock_embed', 'Amazon Bedrock Embed',
                                lambda: embed or BedrockEmbed(config.bedrock_embed),
                                {'model': config.bedrock_embed.model_id}),
        'neptune': _probe('neptune', 'Amazon Neptune', lambda: neptune or NeptuneClient(config.neptune),
                          {'endpoint': config.neptune.endpoint}),
        'opensearch': _probe('opensearch', 'Amazon OpenSearch',
                             lambda: opensearch or OpenSearchClient(config.opensearch),
                             {'endpoint': config.opensearch.endpoint}),
    }


def check_health(**clients: Any) -> bool:
    """True if every collaborator reports healthy."""
    health_status = get_health_status(**clients)
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All system components are healthy')
    else:
        logger.warning('Some system components are unhealthy')
    return all_healthy


def get_system_info(**clients: Any) -> Dict[str, Any]:
    """Service identity, key configuration and current health."""
    return {
        'service_name': 'RepoChat',
        'version': '1.0.0',
        'configuration': {
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'bedrock_embed_model': config.bedrock_embed.model_id,
            'response_budget_ms': config.chat.response_budget_ms,
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status(**clients)
    }
