"""
Product-language translation of reasoning findings, behind a content firewall.
"""

import asyncio
from typing import Optional

from ..models.core import ReasoningOutput
from ..utils.async_utils import with_timeout
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import ChatConfig, config
from ..utils.logging_config import get_logger
from .keyword_extraction import tokenize

logger = get_logger(__name__)

PRODUCT_PROMPT = """
You are a product explanation writer.
Translate the supplied findings into a product-level explanation.
Never expose code, file, module, import, class or function names.
Use only product behavior language: user actions, system checks, outcomes.
Mention uncertainty when needed. Keep it concise.
Return plain text only.
""".strip()

GREETING_INSTRUCTION = 'Reply briefly and conversationally. Do not discuss code details.'
GREETING_FALLBACK = ('Hi! Happy to help. Ask me what flows are implemented in your product, and I will explain them '
                     'in product language.')

TECHNICAL_BLOCKLIST = frozenset([
    'import', 'module', 'file', 'path', 'controller', 'entity', 'graph', 'relationship', 'function', 'class',
    'dependency', 'snippet', 'tsx', 'jsx', 'py', 'java', 'ts', 'js',
])


def has_path_like_token(text: str) -> bool:
    return any('/' in token and len(token) > 3 for token in text.split())


def has_technical_term(text: str) -> bool:
    return any(token in TECHNICAL_BLOCKLIST for token in tokenize(text))


def sanitize_product_answer(text: str, fallback: str) -> str:
    """
    Reject candidate text that leaks implementation vocabulary.

    The check is all-or-nothing: text with a path-like token or a blocklisted
    term is replaced wholesale by the fallback, never partially redacted.

    Args:
        text: Candidate answer, typically from the translation model
        fallback: Guaranteed-clean deterministic answer

    Returns:
        The whitespace-collapsed text, or the fallback
    """
    compact = ' '.join((text or '').split())
    if not compact:
        return fallback
    scan = compact.lower()
    if has_path_like_token(scan) or has_technical_term(scan):
        logger.debug('Translated answer rejected by the content filter')
        return fallback
    return compact


class ProductTranslationService:
    """Phrases findings and greetings for product audiences."""

    def __init__(self, llm: Optional[BedrockLLM] = None, chat_config: Optional[ChatConfig] = None):
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.chat_config = chat_config or config.chat

    async def translate(self, question: str, objective: str, reasoning: ReasoningOutput, fallback: str) -> str:
        """
        Translate reasoning findings into plain product language.

        Args:
            question: The (refined) user question
            objective: What the user wants to understand
            reasoning: Findings, unknowns and constraints from the reasoning stage
            fallback: Deterministic answer used on timeout, error or rejection

        Returns:
            Sanitized translation, or the fallback
        """
        payload = {
            'question': question,
            'objective': objective,
            'findings': reasoning.findings,
            'unknowns': reasoning.unknowns,
            'constraints': reasoning.constraints,
        }
        raw = await with_timeout(asyncio.to_thread(self.llm.complete_text, PRODUCT_PROMPT, payload, fallback),
                                 self.chat_config.translation_timeout,
                                 fallback,
                                 label='product_translation')
        return sanitize_product_answer(raw if isinstance(raw, str) else '', fallback)

    async def greeting_reply(self, message: str) -> str:
        """Short conversational reply to a greeting; canned text when the service is unavailable."""
        payload = {'mode': 'greeting', 'user_message': message, 'instruction': GREETING_INSTRUCTION}
        raw = await with_timeout(asyncio.to_thread(self.llm.complete_text, PRODUCT_PROMPT, payload, GREETING_FALLBACK),
                                 self.chat_config.greeting_timeout,
                                 GREETING_FALLBACK,
                                 label='greeting_reply')
        if not isinstance(raw, str) or not raw.strip():
            return GREETING_FALLBACK
        return ' '.join(raw.split())
