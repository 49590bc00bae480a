"""
Keyword expansion and flow-anchor generation for retrieval.
"""

import asyncio
from typing import List, Optional

from ..models.core import IntentClassification
from ..utils.async_utils import with_timeout
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import ChatConfig, config
from ..utils.logging_config import get_logger
from .keyword_extraction import compact_text, dedupe, normalize_keywords

logger = get_logger(__name__)

EXPANSION_PROMPT = """
You are a retrieval query expander for a repository knowledge index.
Expand the base keywords into semantically related retrieval terms: synonyms, product concepts and
feature names a codebase would use for the same thing.
Keep terms short; no sentences and no explanations.

Return JSON only:
{
  "expanded_keywords": ["string"]
}
""".strip()

FLOW_ANCHOR_PROMPT = """
You are a flow anchor builder.
Given the question, its classified intent, objective and keywords, and the dominant repository domains:
- generate concrete flow anchors to guide retrieval
- prioritize domain-specific anchors over generic words

Rules:
- Avoid generic anchors like "system flow" unless no domain signal exists.
- Keep anchors short and retrieval-friendly.

Return JSON only:
{
  "flow_anchors": ["authentication flow", "booking flow", "payment lifecycle"]
}
""".strip()

MAX_ANCHORS = 8
MAX_FALLBACK_ANCHORS = 6


def fallback_flow_anchors(dominant_domains: List[str]) -> List[str]:
    """Dominant domains each suffixed with 'flow'."""
    return [f'{domain} flow' for domain in dominant_domains[:MAX_FALLBACK_ANCHORS]]


class QueryExpansionService:
    """Time-boxed semantic expansion with deterministic fallbacks."""

    def __init__(self, llm: Optional[BedrockLLM] = None, chat_config: Optional[ChatConfig] = None):
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.chat_config = chat_config or config.chat

    async def expand_keywords(self, question: str, base_keywords: List[str]) -> List[str]:
        """
        Expand base keywords into related retrieval terms.

        Returns:
            Normalized, case-insensitively deduplicated keywords (at most 20);
            the base keywords when the service is unavailable
        """
        fallback = {'expanded_keywords': list(base_keywords)}
        payload = {'question': question, 'base_keywords': base_keywords}
        raw = await with_timeout(asyncio.to_thread(self.llm.complete_json, EXPANSION_PROMPT, payload, fallback),
                                 self.chat_config.expansion_timeout,
                                 fallback,
                                 label='keyword_expansion')

        expanded = []
        if isinstance(raw, dict):
            expanded = dedupe(normalize_keywords(raw.get('expanded_keywords'), limit=100))[:20]
        if not expanded:
            return normalize_keywords(base_keywords)
        return expanded

    async def generate_flow_anchors(self, question: str, classification: IntentClassification,
                                    dominant_domains: List[str]) -> List[str]:
        """
        Generate short phrases that steer retrieval toward specific product flows.

        Returns:
            Up to 8 compacted anchors; '<domain> flow' anchors when the service is unavailable
        """
        fallback_anchors = fallback_flow_anchors(dominant_domains)
        fallback = {'flow_anchors': fallback_anchors}
        payload = {
            'question': question,
            'intent': {
                'intent': classification.intent,
                'objective': classification.objective,
                'keywords': classification.keywords,
            },
            'dominant_repo_domains': dominant_domains,
        }

        raw = await with_timeout(asyncio.to_thread(self.llm.complete_json, FLOW_ANCHOR_PROMPT, payload, fallback),
                                 self.chat_config.anchor_timeout,
                                 fallback,
                                 label='flow_anchor_generation')

        anchors = raw.get('flow_anchors') if isinstance(raw, dict) else None
        if not isinstance(anchors, list):
            return fallback_anchors
        normalized = dedupe(compact_text(a, 48) for a in anchors if isinstance(a, str))
        normalized = [a for a in normalized if len(a) > 3][:MAX_ANCHORS]
        return normalized or fallback_anchors
