"""
Frontdesk intake and intent classification for incoming questions.
"""

import asyncio
from typing import Dict, List, Optional

from ..models.core import INTENT_TYPES, FrontdeskDecision, IntentClassification
from ..utils.async_utils import with_timeout
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import ChatConfig, config
from ..utils.logging_config import get_logger
from .keyword_extraction import GENERIC_QUERY_WORDS, compact_text, dedupe, extract_question_keywords, normalize_keywords

logger = get_logger(__name__)

FRONTDESK_PROMPT = """
You are the frontdesk assistant of a product knowledge chat. You always see the user's message first.

Your job:
- Act like a natural, friendly human assistant.
- Decide whether to reply directly OR route the message to repository analysis.

Rules:
- If the message is a greeting, smalltalk or chitchat, set mode="reply" and write a short natural response.
- If the message asks about repository or product behavior, flows or system logic, set mode="route".
- Keep refined_question clear and concise for downstream analysis.

Return JSON only:
{
  "mode": "reply | route",
  "human_message": "string",
  "refined_question": "string"
}
""".strip()

INTENT_PROMPT = """
You are an intent and context analyzer for questions about a software product.
Given the question, a chat history summary and the ids of entities discussed earlier in the session:
- infer the user's objective
- extract retrieval keywords
- preserve topic continuity with the earlier conversation

Rules:
- Classify intent_type as one of: greeting | smalltalk | repo_question | unclear.
- If the input is a greeting or casual conversation, set intent_type to "greeting".
- For questions about the repository or product, set intent_type to "repo_question".
- ALWAYS output non-empty keywords for repo_question.

Return JSON only:
{
  "intent_type": "greeting | smalltalk | repo_question | unclear",
  "intent": "string",
  "objective": "string",
  "keywords": ["string"],
  "answer_style": "product | technical | beginner | executive"
}
""".strip()

FRONTDESK_FALLBACK_MESSAGE = 'Got it. Let me analyze that from your repository context.'
OVERVIEW_INTENT = 'repository_overview'
OVERVIEW_OBJECTIVE = 'explain major application flows'
UNKNOWN_INTENTS = frozenset(['', 'unknown', 'unclear', 'none', 'n/a'])
MAX_CORRECTED_KEYWORDS = 16
MAX_MEMORY_IDS_IN_PROMPT = 30


def build_chat_history_summary(history: Optional[List[Dict[str, str]]]) -> str:
    """Compact summary of the last six turns of the conversation."""
    turns = []
    for item in (history or [])[-6:]:
        if not isinstance(item, dict):
            continue
        role = item.get('role') if item.get('role') in ('user', 'assistant') else 'user'
        content = item.get('content') if isinstance(item.get('content'), str) else ''
        turns.append(f'{role}: {compact_text(content, 160)}')
    return ' | '.join(turns)[:1200]


def heuristic_classification(question: str) -> IntentClassification:
    """Deterministic classification used when the classifier is slow or malformed."""
    return IntentClassification(intent_type='unclear',
                                intent='unknown',
                                objective=compact_text(question, 120),
                                keywords=extract_question_keywords(question),
                                answer_style='product')


def is_vague_intent(classification: IntentClassification) -> bool:
    """An unknown intent with no usable keywords would starve retrieval."""
    intent = (classification.intent or '').strip().lower()
    if intent not in UNKNOWN_INTENTS:
        return False
    return all(keyword in GENERIC_QUERY_WORDS for keyword in classification.keywords)


def correct_vague_intent(classification: IntentClassification, question: str,
                         dominant_domains: List[str]) -> IntentClassification:
    """Override weak classifications with a repository overview objective.

    Args:
        classification: Classifier output (keywords already normalized)
        question: The (refined) user question
        dominant_domains: Dominant repository domains, most frequent first

    Returns:
        The corrected classification, or the original with keywords backfilled
        from the question when the classifier returned none
    """
    question_keywords = extract_question_keywords(question)

    if is_vague_intent(classification):
        keywords = dedupe([*classification.keywords, *question_keywords, *dominant_domains[:6]])[:MAX_CORRECTED_KEYWORDS]
        logger.debug(f'Vague intent corrected to {OVERVIEW_INTENT} with {len(keywords)} keywords')
        return IntentClassification(intent_type='repo_question',
                                    intent=OVERVIEW_INTENT,
                                    objective=OVERVIEW_OBJECTIVE,
                                    keywords=keywords,
                                    answer_style='product')

    return IntentClassification(intent_type=classification.intent_type,
                                intent=classification.intent,
                                objective=classification.objective or compact_text(question, 120),
                                keywords=classification.keywords or question_keywords,
                                answer_style=classification.answer_style)


class IntentClassificationService:
    """Time-boxed frontdesk and intent classification over the reasoning service."""

    def __init__(self, llm: Optional[BedrockLLM] = None, chat_config: Optional[ChatConfig] = None):
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.chat_config = chat_config or config.chat

    async def frontdesk_intake(self, question: str, history_summary: str) -> FrontdeskDecision:
        """Decide whether a message is conversational noise ('reply') or a real question ('route')."""
        fallback = {'mode': 'route', 'human_message': FRONTDESK_FALLBACK_MESSAGE, 'refined_question': question}
        payload = {'message': question, 'chat_history_summary': history_summary}

        raw = await with_timeout(asyncio.to_thread(self.llm.complete_json, FRONTDESK_PROMPT, payload, fallback),
                                 self.chat_config.frontdesk_timeout,
                                 fallback,
                                 label='frontdesk_intake')
        if not isinstance(raw, dict):
            raw = fallback

        mode = 'reply' if raw.get('mode') == 'reply' else 'route'
        refined = raw.get('refined_question')
        message = raw.get('human_message')
        return FrontdeskDecision(mode=mode,
                                 human_message=message.strip() if isinstance(message, str) and message.strip() else
                                 FRONTDESK_FALLBACK_MESSAGE,
                                 refined_question=refined.strip() if isinstance(refined, str) and refined.strip() else question)

    async def classify_intent(self, question: str, history_summary: str,
                              memory_entity_ids: List[str]) -> IntentClassification:
        """
        Classify a question and extract its objective and retrieval keywords.

        Args:
            question: The (refined) user question
            history_summary: Output of build_chat_history_summary
            memory_entity_ids: Session-memory entity ids, most relevant first

        Returns:
            IntentClassification; the heuristic classification on timeout or malformed output
        """
        fallback = heuristic_classification(question)
        payload = {
            'question': question,
            'chat_history_summary': history_summary,
            'session_memory_entities': memory_entity_ids[:MAX_MEMORY_IDS_IN_PROMPT],
        }

        raw = await with_timeout(asyncio.to_thread(self.llm.complete_json, INTENT_PROMPT, payload, fallback.to_dict()),
                                 self.chat_config.intent_timeout,
                                 fallback.to_dict(),
                                 label='intent_analysis')
        if not isinstance(raw, dict):
            return fallback

        intent_type = raw.get('intent_type')
        if intent_type not in INTENT_TYPES:
            logger.debug(f'Classifier returned unsupported intent_type {intent_type!r}')
            return fallback

        intent = raw.get('intent') if isinstance(raw.get('intent'), str) else ''
        objective = raw.get('objective') if isinstance(raw.get('objective'), str) else ''
        answer_style = raw.get('answer_style') if isinstance(raw.get('answer_style'), str) else 'product'
        return IntentClassification(intent_type=intent_type,
                                    intent=intent.strip(),
                                    objective=objective.strip(),
                                    keywords=normalize_keywords(raw.get('keywords')),
                                    answer_style=answer_style.strip() or 'product')
