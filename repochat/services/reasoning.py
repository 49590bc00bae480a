"""
Evidence-bound reasoning over candidate entities and their relationships.
"""

import asyncio
from typing import Any, List, Optional

from ..models.core import Entity, ReasoningOutput, Relationship
from ..utils.async_utils import with_timeout
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import ChatConfig, config
from ..utils.logging_config import get_logger
from .embedding_rerank import entity_snippet

logger = get_logger(__name__)

REASONING_PROMPT = """
You are a fast technical reasoning analyst.
Use ONLY the provided structural entities and relationship edges.
If the evidence is incomplete, infer the likely flow from nearby connected entities only.
Never invent modules, services or architecture that is not in the input.
When the evidence is insufficient, say so in "unknowns" instead of speculating.

Return JSON only:
{
  "findings": ["string"],
  "unknowns": ["string"],
  "constraints": ["string"]
}
""".strip()

MAX_REASONING_ENTITIES = 40
MAX_REASONING_RELATIONSHIPS = 120


def insufficient_evidence() -> ReasoningOutput:
    return ReasoningOutput(findings=[], unknowns=['insufficient context'], constraints=['insufficient structural evidence'])


def _strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class ReasoningService:
    """Time-boxed structured analysis; empty findings when unavailable."""

    def __init__(self, llm: Optional[BedrockLLM] = None, chat_config: Optional[ChatConfig] = None):
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.chat_config = chat_config or config.chat

    async def analyze(self, objective: str, keywords: List[str], entities: List[Entity],
                      relationships: List[Relationship]) -> ReasoningOutput:
        """
        Derive findings from structural evidence only.

        Args:
            objective: What the user wants to understand
            keywords: Retrieval keywords of the turn
            entities: Candidate entities, best first (at most 40 are sent)
            relationships: Edges among candidates (at most 120 are sent)

        Returns:
            ReasoningOutput; insufficient-evidence output on timeout or malformed response
        """
        fallback = insufficient_evidence()
        payload = {
            'objective': objective,
            'keywords': keywords,
            'entities': [{
                'id': e.id,
                'name': e.name,
                'type': e.kind,
                'path': e.file_path,
                'snippet': entity_snippet(e),
            } for e in entities[:MAX_REASONING_ENTITIES]],
            'relationships': [r.to_payload() for r in relationships[:MAX_REASONING_RELATIONSHIPS]],
        }

        raw = await with_timeout(asyncio.to_thread(self.llm.complete_json, REASONING_PROMPT, payload, fallback.to_dict()),
                                 self.chat_config.reasoning_timeout,
                                 fallback.to_dict(),
                                 label='reasoning')

        if not isinstance(raw, dict) or not isinstance(raw.get('findings'), list):
            logger.debug('Reasoning output malformed, treating as insufficient evidence')
            return fallback
        return ReasoningOutput(findings=_strings(raw.get('findings')),
                               unknowns=_strings(raw.get('unknowns')),
                               constraints=_strings(raw.get('constraints')))
