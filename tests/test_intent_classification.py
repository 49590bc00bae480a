"""
Tests for repochat/services/intent_classification.py
Frontdesk intake, intent classification and vague-intent correction.
"""

import pytest

from conftest import FakeLLM

from repochat.models.core import IntentClassification
from repochat.services.intent_classification import (FRONTDESK_FALLBACK_MESSAGE, FRONTDESK_PROMPT, INTENT_PROMPT,
                                                     IntentClassificationService, build_chat_history_summary,
                                                     correct_vague_intent, is_vague_intent)


class TestChatHistorySummary:
    """Test conversation summarization."""

    def test_keeps_last_six_turns(self):
        history = [{'role': 'user', 'content': f'message {i}'} for i in range(8)]
        summary = build_chat_history_summary(history)
        assert summary.startswith('user: message 2')
        assert summary.count(' | ') == 5

    def test_unknown_roles_become_user_and_content_is_compacted(self):
        summary = build_chat_history_summary([{'role': 'system', 'content': 'Hello,   THERE'}])
        assert summary == 'user: hello there'

    def test_missing_history(self):
        assert build_chat_history_summary(None) == ''

    def test_capped_length(self):
        history = [{'role': 'assistant', 'content': 'x ' * 500} for _ in range(6)]
        assert len(build_chat_history_summary(history)) <= 1200


class TestFrontdeskIntake:
    """Test the reply/route pre-classifier."""

    @pytest.mark.asyncio
    async def test_reply_decision(self, chat_config):
        llm = FakeLLM({FRONTDESK_PROMPT: {'mode': 'reply', 'human_message': 'Hello!', 'refined_question': 'hi'}})
        decision = await IntentClassificationService(llm, chat_config).frontdesk_intake('hi', '')
        assert decision.mode == 'reply'
        assert decision.human_message == 'Hello!'

    @pytest.mark.asyncio
    async def test_malformed_output_routes_with_original_question(self, chat_config):
        llm = FakeLLM({FRONTDESK_PROMPT: 'not an object'})
        decision = await IntentClassificationService(llm, chat_config).frontdesk_intake('how does login work', '')
        assert decision.mode == 'route'
        assert decision.human_message == FRONTDESK_FALLBACK_MESSAGE
        assert decision.refined_question == 'how does login work'

    @pytest.mark.asyncio
    async def test_slow_service_routes(self, chat_config):
        llm = FakeLLM({FRONTDESK_PROMPT: {'mode': 'reply', 'human_message': 'late'}}, delays={FRONTDESK_PROMPT: 0.5})
        decision = await IntentClassificationService(llm, chat_config).frontdesk_intake('hello', '')
        assert decision.mode == 'route'

    @pytest.mark.asyncio
    async def test_refined_question_replaces_question(self, chat_config):
        llm = FakeLLM({FRONTDESK_PROMPT: {'mode': 'route', 'refined_question': '  How do refunds work?  '}})
        decision = await IntentClassificationService(llm, chat_config).frontdesk_intake('refunds??', '')
        assert decision.refined_question == 'How do refunds work?'


class TestClassifyIntent:
    """Test intent classification and its fallbacks."""

    @pytest.mark.asyncio
    async def test_valid_classification_is_normalized(self, chat_config):
        llm = FakeLLM({
            INTENT_PROMPT: {
                'intent_type': 'repo_question',
                'intent': ' login_flow ',
                'objective': 'explain login',
                'keywords': ['Login', 'x', 42]
            }
        })
        result = await IntentClassificationService(llm, chat_config).classify_intent('how does login work', '', [])
        assert result.intent_type == 'repo_question'
        assert result.intent == 'login_flow'
        assert result.keywords == ['login']
        assert result.answer_style == 'product'

    @pytest.mark.asyncio
    async def test_unsupported_intent_type_uses_heuristic(self, chat_config):
        llm = FakeLLM({INTENT_PROMPT: {'intent_type': 'banter', 'intent': 'x', 'keywords': ['x']}})
        result = await IntentClassificationService(llm, chat_config).classify_intent('how does login work', '', [])
        assert result.intent_type == 'unclear'
        assert result.intent == 'unknown'
        assert result.keywords == ['how', 'does', 'login', 'work']

    @pytest.mark.asyncio
    async def test_timeout_uses_heuristic(self, chat_config):
        llm = FakeLLM({INTENT_PROMPT: {'intent_type': 'greeting'}}, delays={INTENT_PROMPT: 0.5})
        result = await IntentClassificationService(llm, chat_config).classify_intent('hello there', '', [])
        assert result.intent_type == 'unclear'

    @pytest.mark.asyncio
    async def test_memory_ids_are_sent(self, chat_config):
        llm = FakeLLM()
        await IntentClassificationService(llm, chat_config).classify_intent('q', 'summary', ['e1', 'e2'])
        _, payload = llm.calls[0]
        assert payload['session_memory_entities'] == ['e1', 'e2']
        assert payload['chat_history_summary'] == 'summary'


class TestVagueIntentCorrection:
    """Test the repository-overview override."""

    def test_unknown_intent_with_generic_keywords_is_vague(self):
        classification = IntentClassification('unclear', 'unknown', '', ['explain', 'flow'])
        assert is_vague_intent(classification)

    def test_specific_keywords_are_not_vague(self):
        classification = IntentClassification('unclear', 'unknown', '', ['refund'])
        assert not is_vague_intent(classification)

    def test_correction_reseeds_keywords_from_question_and_domains(self):
        classification = IntentClassification('unclear', 'unknown', '', ['explain', 'flow'])
        corrected = correct_vague_intent(classification, 'explain the flow', ['booking', 'payment'])
        assert corrected.intent_type == 'repo_question'
        assert corrected.intent == 'repository_overview'
        assert corrected.objective == 'explain major application flows'
        assert corrected.keywords == ['explain', 'flow', 'the', 'booking', 'payment']

    def test_corrected_keywords_are_capped(self):
        classification = IntentClassification('unclear', '', '', [])
        question = ' '.join(f'word{i}' for i in range(12))
        corrected = correct_vague_intent(classification, question, [f'domain{i}' for i in range(10)])
        assert len(corrected.keywords) == 16

    def test_non_vague_empty_keywords_fall_back_to_question(self):
        classification = IntentClassification('repo_question', 'refunds', 'explain refunds', [])
        corrected = correct_vague_intent(classification, 'how do refunds work', [])
        assert corrected.intent == 'refunds'
        assert corrected.keywords == ['how', 'refunds', 'work']
