"""
MCP Interface Layer using fastmcp for repository chat.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from repochat.models.core import ChatResponse
from repochat.services.chat_orchestrator import FAILURE_ANSWER, ChatOrchestrator
from repochat.utils.config import config
from repochat.utils.health_check import get_health_status, get_system_info
from repochat.utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Repository Chat')
_orchestrator: Optional[ChatOrchestrator] = None


def get_orchestrator() -> ChatOrchestrator:
    """Shared orchestrator, created on first use so importing this module opens no connections."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator.from_clients()
    return _orchestrator


@mcp.tool()
async def ask_question(question: str,
                       repository_id: str,
                       session_id: Optional[str] = None,
                       chat_history: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
    """Answer a product question about an ingested repository.

    Args:
        question: Natural language question
        repository_id: Repository ID
        session_id: Chat session ID (optional)
        chat_history: Earlier turns as [{'role': 'user'|'assistant', 'content': ...}] (optional)

    Returns:
        Dictionary with answer, debug and status
    """
    try:
        orchestrator = get_orchestrator()
    except Exception as e:
        # Client construction failed (credentials, unreachable endpoint); retried on the next call
        logger.error(f'Failed to initialize chat services: {e}', exc_info=True)
        return ChatResponse(answer=FAILURE_ANSWER, status='failed').to_dict()

    response = await orchestrator.ask_question(question, repository_id, session_id, chat_history)
    logger.debug(f'MCP ask_question finished with status {response.status} for repository {repository_id}')
    return response.to_dict()


@mcp.tool()
def health() -> Dict[str, Any]:
    """Report the health of every collaborator service.

    Returns:
        Dictionary with health status of each component
    """
    return get_health_status()


@mcp.tool()
def system_info() -> Dict[str, Any]:
    """Report service identity, configured models and response budget, and current health."""
    return get_system_info()


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
