"""
Chat orchestrator: answers a product question against a repository's structural index.

Stages run strictly in sequence (frontdesk intake, intent analysis, domain
detection, query expansion, retrieval, graph expansion, rerank, reasoning,
translation). Every enrichment call is time-boxed with a local fallback, and
the outer boundary turns any unexpected failure into a generic answer.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Set

from ..models.core import ChatResponse, TurnContext
from ..utils.async_utils import fire_and_forget
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import ChatConfig, config
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.pipeline_logger import PipelineLogger
from ..utils.timestamp_utils import elapsed_ms
from .embedding_rerank import EmbeddingService
from .entity_retrieval import MAX_SEEDS, EntityRetrievalService, prioritize_session_entities, rank_seeds
from .fallback_answer import build_fallback_answer
from .graph_expansion import GraphExpansionService
from .intent_classification import (IntentClassificationService, build_chat_history_summary, correct_vague_intent,
                                    is_vague_intent)
from .keyword_extraction import build_retrieval_keywords, compact_text, extract_anchor_terms
from .product_translation import ProductTranslationService
from .query_expansion import QueryExpansionService
from .reasoning import ReasoningService
from .session_memory import SessionMemoryError, SessionMemoryStore

logger = get_logger(__name__)

STATE = 'chat_orchestrator'
FAILURE_ANSWER = 'Unable to answer right now. Please try again.'
MISSING_QUESTION_ANSWER = 'Please provide a question to answer.'
MISSING_REPOSITORY_ANSWER = 'Please select a repository to ask about.'
MAX_CANDIDATES = 80
MAX_SESSION_MEMORY_WRITES = 20
MAX_BACKFILL_KEYWORDS = 20


class ChatOrchestrator:
    """Runs one question/answer cycle per call; holds no per-turn state between calls."""

    def __init__(self,
                 intent_service: IntentClassificationService,
                 expansion_service: QueryExpansionService,
                 session_memory: SessionMemoryStore,
                 retrieval_service: EntityRetrievalService,
                 graph_service: GraphExpansionService,
                 embedding_service: EmbeddingService,
                 reasoning_service: ReasoningService,
                 translation_service: ProductTranslationService,
                 opensearch: Optional[OpenSearchClient] = None,
                 chat_config: Optional[ChatConfig] = None):
        self.intent_service = intent_service
        self.expansion_service = expansion_service
        self.session_memory = session_memory
        self.retrieval_service = retrieval_service
        self.graph_service = graph_service
        self.embedding_service = embedding_service
        self.reasoning_service = reasoning_service
        self.translation_service = translation_service
        self.opensearch = opensearch
        self.chat_config = chat_config or config.chat
        self._background_tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_clients(cls,
                     llm: Optional[BedrockLLM] = None,
                     embed: Optional[BedrockEmbed] = None,
                     neptune: Optional[NeptuneClient] = None,
                     opensearch: Optional[OpenSearchClient] = None,
                     chat_config: Optional[ChatConfig] = None) -> 'ChatOrchestrator':
        """Wire every stage onto one shared set of service clients."""
        llm = llm or BedrockLLM(config.bedrock_llm)
        embed = embed or BedrockEmbed(config.bedrock_embed)
        neptune = neptune or NeptuneClient(config.neptune)
        opensearch = opensearch or OpenSearchClient(config.opensearch)
        chat_config = chat_config or config.chat

        # Term filters on ids need the keyword mappings, so indexes exist before the first write
        try:
            opensearch.ensure_indexes()
        except OpenSearchError as e:
            logger.warning(f'Failed to create OpenSearch indexes: {e}')

        return cls(intent_service=IntentClassificationService(llm, chat_config),
                   expansion_service=QueryExpansionService(llm, chat_config),
                   session_memory=SessionMemoryStore(opensearch),
                   retrieval_service=EntityRetrievalService(neptune),
                   graph_service=GraphExpansionService(neptune),
                   embedding_service=EmbeddingService(embed, opensearch, chat_config),
                   reasoning_service=ReasoningService(llm, chat_config),
                   translation_service=ProductTranslationService(llm, chat_config),
                   opensearch=opensearch,
                   chat_config=chat_config)

    async def ask_question(self,
                           question: str,
                           repository_id: str,
                           session_id: Optional[str] = None,
                           chat_history: Optional[List[Dict[str, str]]] = None) -> ChatResponse:
        """
        Answer a product question about a repository.

        Args:
            question: Free-text user question
            repository_id: Repository whose structural index is queried
            session_id: Chat session; defaults to a per-repository session
            chat_history: Earlier turns as [{'role': ..., 'content': ...}]

        Returns:
            ChatResponse whose answer is never empty; status is 'invalid_request'
            for missing input and 'failed' when the pipeline broke unexpectedly
        """
        question = question.strip() if isinstance(question, str) else ''
        repository_id = repository_id.strip() if isinstance(repository_id, str) else ''
        if not question:
            return ChatResponse(answer=MISSING_QUESTION_ANSWER, status='invalid_request')
        if not repository_id:
            return ChatResponse(answer=MISSING_REPOSITORY_ANSWER, status='invalid_request')
        if not isinstance(session_id, str) or not session_id.strip():
            session_id = f'session_{repository_id}'

        started_at = time.monotonic()
        pipeline_logger = PipelineLogger(repository_id, self.opensearch, persist=self.chat_config.persist_pipeline_logs)
        try:
            turn = TurnContext(question=question, repository_id=repository_id, session_id=session_id.strip())
            return await self._run(turn, chat_history, pipeline_logger, started_at)
        except Exception as e:
            logger.error(f'Chat pipeline failed for repository {repository_id}: {e}', exc_info=True)
            await pipeline_logger.log(STATE, 'chat_orchestrator', 'chat_end', 'failed', {
                'elapsed_ms': elapsed_ms(started_at)
            }, error_message=str(e) or 'chat_pipeline_failed')
            return ChatResponse(answer=FAILURE_ANSWER, status='failed')

    async def drain_background_tasks(self) -> None:
        """Wait for outstanding session-memory and embedding writes (used on shutdown and in tests)."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    def _performance(self, started_at: float) -> Dict[str, int]:
        return {'elapsed_ms': elapsed_ms(started_at), 'target_ms': self.chat_config.response_budget_ms}

    async def _run(self, turn: TurnContext, chat_history: Optional[List[Dict[str, str]]],
                   pipeline_logger: PipelineLogger, started_at: float) -> ChatResponse:
        repository_id = turn.repository_id
        await pipeline_logger.log(STATE, 'chat_orchestrator', 'chat_start', 'started', {
            'question_len': len(turn.question),
            'session_id': turn.session_id
        })

        # Frontdesk intake
        turn.history_summary = build_chat_history_summary(chat_history)
        decision = await self.intent_service.frontdesk_intake(turn.question, turn.history_summary)
        turn.refined_question = decision.refined_question
        frontdesk_debug = {'mode': decision.mode, 'refined_question': turn.refined_question}
        await pipeline_logger.log(STATE, 'frontdesk', 'frontdesk_intake', 'success', {'question_len': len(turn.question)}, {
            'mode': decision.mode,
            'refined_question_len': len(turn.refined_question)
        })

        if decision.mode == 'reply':
            await self._log_chat_end(pipeline_logger, started_at, 0, short_circuit='frontdesk')
            return ChatResponse(answer=decision.human_message,
                                debug={
                                    'mode': 'frontdesk_reply',
                                    'frontdesk': frontdesk_debug,
                                    'performance': self._performance(started_at)
                                })

        # Intent analysis
        turn.memory_entity_ids = await self._read_session_memory(turn)
        await pipeline_logger.log(STATE, 'intent_classifier', 'intent_analysis', 'started', {
            'question_len': len(turn.refined_question),
            'history_summary_len': len(turn.history_summary),
            'memory_entities': len(turn.memory_entity_ids)
        })
        classification = await self.intent_service.classify_intent(turn.refined_question, turn.history_summary,
                                                                    turn.memory_entity_ids)

        if classification.intent_type == 'greeting':
            answer = await self.translation_service.greeting_reply(turn.refined_question)
            await pipeline_logger.log(STATE, 'product_translator', 'product_translation', 'success',
                                      {'intent_type': 'greeting'}, {
                                          'answer_len': len(answer),
                                          'greeting_short_circuit': True
                                      })
            await self._log_chat_end(pipeline_logger, started_at, 0, short_circuit='greeting')
            return ChatResponse(answer=answer,
                                debug={
                                    'mode': 'greeting_short_circuit',
                                    'frontdesk': frontdesk_debug,
                                    'intent': classification.to_dict(),
                                    'performance': self._performance(started_at)
                                })

        # Domain detection and vagueness correction
        turn.dominant_domains = await self.retrieval_service.detect_dominant_domains(repository_id)
        await pipeline_logger.log(STATE, 'domain_detector', 'dominant_repo_domains_detected', 'success',
                                  {'entities_scanned_limit': 500}, {
                                      'dominant_domains_count': len(turn.dominant_domains),
                                      'dominant_domains_sample': turn.dominant_domains[:8]
                                  })

        corrected = correct_vague_intent(classification, turn.refined_question, turn.dominant_domains)
        if is_vague_intent(classification):
            await pipeline_logger.log(STATE, 'intent_classifier', 'vague_intent_correction', 'success', {
                'original_intent': classification.intent or 'unknown',
                'original_keywords': classification.keywords[:10]
            }, {
                'corrected_intent': corrected.intent,
                'corrected_keywords': corrected.keywords[:12]
            })
        turn.classification = corrected
        objective = corrected.objective or compact_text(turn.refined_question, 120)
        await pipeline_logger.log(STATE, 'intent_classifier', 'intent_analysis', 'success',
                                  {'question_len': len(turn.refined_question)}, {
                                      'intent': corrected.intent or 'unknown',
                                      'objective': objective,
                                      'keywords_count': len(corrected.keywords)
                                  })

        # Query expansion
        turn.expanded_keywords = await self.expansion_service.expand_keywords(turn.refined_question, corrected.keywords)
        turn.flow_anchors = await self.expansion_service.generate_flow_anchors(turn.refined_question, corrected,
                                                                               turn.dominant_domains)
        turn.anchor_terms = extract_anchor_terms(turn.flow_anchors)
        turn.retrieval_keywords = build_retrieval_keywords(corrected.keywords, turn.expanded_keywords,
                                                           turn.anchor_terms, turn.dominant_domains)
        await pipeline_logger.log(STATE, 'query_expander', 'flow_anchor_generation', 'success', {
            'dominant_domains_count': len(turn.dominant_domains),
            'intent_keywords_count': len(corrected.keywords)
        }, {
            'anchors_count': len(turn.flow_anchors),
            'anchors_sample': turn.flow_anchors[:6]
        })

        # Retrieval, graph expansion and rerank
        memory_entities = await self.retrieval_service.get_entities_by_ids(repository_id, turn.memory_entity_ids)
        turn.session_entities = prioritize_session_entities(memory_entities, turn.retrieval_keywords)
        keyword_matched, turn.domain_fallback_used = await self.retrieval_service.retrieve_with_domain_fallback(
            repository_id, turn.retrieval_keywords, turn.dominant_domains)
        turn.seed_entities = rank_seeds(keyword_matched, turn.session_entities, turn.retrieval_keywords,
                                        turn.dominant_domains, MAX_SEEDS)

        expansion = await self.graph_service.expand(repository_id, [e.id for e in turn.seed_entities])
        turn.expanded_entities = expansion.entities
        turn.relationships = expansion.relationships
        reranked = await self.embedding_service.rerank(repository_id, turn.refined_question, turn.expanded_entities)
        turn.candidate_entities = reranked[:MAX_CANDIDATES]

        retrieval_debug = {
            'expanded_keywords': turn.expanded_keywords,
            'retrieval_keywords': turn.retrieval_keywords,
            'session_entities_used': len(turn.session_entities),
            'seed_entities': len(turn.seed_entities),
            'expanded_entities': len(turn.expanded_entities),
            'candidate_entities': len(turn.candidate_entities),
            'domain_fallback_used': turn.domain_fallback_used,
        }
        await pipeline_logger.log(STATE, 'retrieval_builder', 'retrieval_builder', 'success', {
            'retrieval_keywords_count': len(turn.retrieval_keywords),
            'session_entities': len(turn.session_entities),
            'flow_anchors_count': len(turn.flow_anchors)
        }, {
            'seed_entities': len(turn.seed_entities),
            'expanded_entities': len(turn.expanded_entities),
            'final_candidates': len(turn.candidate_entities),
            'relationships': len(turn.relationships),
            'domain_fallback_used': turn.domain_fallback_used
        })

        domains_debug = {'dominant_domains': turn.dominant_domains, 'flow_anchors': turn.flow_anchors}
        if not turn.candidate_entities:
            turn.answer = build_fallback_answer(turn.refined_question, [], [])
            await self._log_chat_end(pipeline_logger, started_at, 0)
            return ChatResponse(answer=turn.answer,
                                debug={
                                    'mode': 'no_candidates',
                                    'frontdesk': frontdesk_debug,
                                    'intent': corrected.to_dict(),
                                    'domains': domains_debug,
                                    'retrieval': retrieval_debug,
                                    'performance': self._performance(started_at)
                                })

        # Reasoning and translation
        turn.reasoning = await self.reasoning_service.analyze(objective, turn.retrieval_keywords,
                                                              turn.candidate_entities, turn.relationships)
        await pipeline_logger.log(STATE, 'reasoner', 'reasoning', 'success', {
            'entity_context_count': len(turn.candidate_entities),
            'relationship_count': len(turn.relationships)
        }, {
            'findings_count': len(turn.reasoning.findings),
            'unknowns_count': len(turn.reasoning.unknowns)
        })

        fallback_answer = build_fallback_answer(turn.refined_question, turn.candidate_entities, turn.relationships)
        translated = bool(turn.reasoning.findings)
        if translated:
            turn.answer = await self.translation_service.translate(turn.refined_question, objective, turn.reasoning,
                                                                   fallback_answer)
        else:
            turn.answer = fallback_answer
        await pipeline_logger.log(STATE, 'product_translator', 'product_translation',
                                  'success' if translated else 'skipped', {
                                      'findings_count': len(turn.reasoning.findings),
                                      'unknowns_count': len(turn.reasoning.unknowns)
                                  }, {
                                      'answer_len': len(turn.answer),
                                      'fallback_used': not translated or turn.answer == fallback_answer
                                  })

        self._schedule_background_writes(turn, pipeline_logger)
        await self._log_chat_end(pipeline_logger, started_at, len(turn.candidate_entities), embedding_triggered=True)

        return ChatResponse(answer=turn.answer,
                            debug={
                                'mode': 'pipeline',
                                'frontdesk': frontdesk_debug,
                                'intent': corrected.to_dict(),
                                'domains': domains_debug,
                                'retrieval': retrieval_debug,
                                'reasoning': turn.reasoning.to_dict(),
                                'performance': self._performance(started_at)
                            })

    async def _read_session_memory(self, turn: TurnContext) -> List[str]:
        try:
            return await self.session_memory.read(turn.session_id, turn.repository_id)
        except SessionMemoryError as e:
            logger.warning(f'Session memory unavailable, continuing without it: {e}')
            return []

    def _schedule_background_writes(self, turn: TurnContext, pipeline_logger: PipelineLogger) -> None:
        """Session memory and embedding backfill run after the answer is ready and are never awaited."""
        used_ids = [entity.id for entity in turn.candidate_entities[:MAX_SESSION_MEMORY_WRITES]]
        fire_and_forget(self.session_memory.write(turn.session_id, turn.repository_id, used_ids),
                        'session_memory_write', self._background_tasks)

        keywords = list(dict.fromkeys([*turn.dominant_domains, *turn.anchor_terms,
                                       *turn.classification.keywords]))[:MAX_BACKFILL_KEYWORDS]
        fire_and_forget(
            self.embedding_service.backfill(turn.repository_id, turn.candidate_entities, pipeline_logger, keywords),
            'embedding_backfill', self._background_tasks)

    async def _log_chat_end(self,
                            pipeline_logger: PipelineLogger,
                            started_at: float,
                            candidates: int,
                            short_circuit: Optional[str] = None,
                            embedding_triggered: bool = False) -> None:
        input_summary: Dict[str, Any] = {'elapsed_ms': elapsed_ms(started_at)}
        if short_circuit:
            input_summary[f'{short_circuit}_short_circuit'] = True
        elapsed = input_summary['elapsed_ms']
        if elapsed > self.chat_config.response_budget_ms:
            logger.info(f'Chat turn took {elapsed} ms, over the {self.chat_config.response_budget_ms} ms budget')
        await pipeline_logger.log(STATE, 'chat_orchestrator', 'chat_end', 'success', input_summary, {
            'retrieval_candidates': candidates,
            'async_embedding_triggered': embedding_triggered
        })
