"""
Tests for repochat/services/product_translation.py
Product-language translation and the technical-vocabulary filter.
"""

import pytest

from conftest import FakeLLM

from repochat.models.core import ReasoningOutput
from repochat.services.product_translation import (GREETING_FALLBACK, PRODUCT_PROMPT, TECHNICAL_BLOCKLIST,
                                                   ProductTranslationService, sanitize_product_answer)

FALLBACK = 'Users sign in and reach their dashboard.'
FINDINGS = ReasoningOutput(findings=['users sign in with google'], unknowns=[], constraints=[])


class TestSanitizer:
    """Test the all-or-nothing content filter."""

    @pytest.mark.parametrize('term', sorted(TECHNICAL_BLOCKLIST))
    def test_each_blocklisted_term_is_rejected(self, term):
        assert sanitize_product_answer(f'The {term} handles this step for customers', FALLBACK) == FALLBACK

    def test_blocklisted_term_is_case_insensitive(self):
        assert sanitize_product_answer('A MODULE decides', FALLBACK) == FALLBACK

    def test_path_like_token_is_rejected(self):
        assert sanitize_product_answer('Open account/settings to change it', FALLBACK) == FALLBACK

    def test_slash_tokens_are_path_like_only_above_three_characters(self):
        assert sanitize_product_answer('Customers can pay and/or save', FALLBACK) == FALLBACK
        assert sanitize_product_answer('Choose size a/b today', FALLBACK) == 'Choose size a/b today'

    def test_leaky_translation_is_replaced_wholesale(self):
        assert sanitize_product_answer('The controller.ts file handles this', FALLBACK) == FALLBACK

    def test_clean_text_is_kept_with_collapsed_whitespace(self):
        assert sanitize_product_answer('Users  sign in\nand land on the dashboard.', FALLBACK) == \
            'Users sign in and land on the dashboard.'

    def test_empty_text_uses_fallback(self):
        assert sanitize_product_answer('   ', FALLBACK) == FALLBACK

    def test_words_containing_blocklisted_terms_are_allowed(self):
        text = 'Customers classify their profiles before importing contacts.'
        assert sanitize_product_answer(text, FALLBACK) == text


class TestTranslate:
    """Test translation with time-boxing."""

    @pytest.mark.asyncio
    async def test_clean_translation_is_returned(self, chat_config):
        llm = FakeLLM({PRODUCT_PROMPT: 'Customers sign in with their Google account.'})
        answer = await ProductTranslationService(llm, chat_config).translate('q', 'objective', FINDINGS, FALLBACK)
        assert answer == 'Customers sign in with their Google account.'

    @pytest.mark.asyncio
    async def test_leaky_translation_uses_fallback(self, chat_config):
        llm = FakeLLM({PRODUCT_PROMPT: 'The login.ts module calls the session class.'})
        answer = await ProductTranslationService(llm, chat_config).translate('q', 'objective', FINDINGS, FALLBACK)
        assert answer == FALLBACK

    @pytest.mark.asyncio
    async def test_timeout_uses_fallback(self, chat_config):
        llm = FakeLLM({PRODUCT_PROMPT: 'Late answer.'}, delays={PRODUCT_PROMPT: 0.5})
        answer = await ProductTranslationService(llm, chat_config).translate('q', 'objective', FINDINGS, FALLBACK)
        assert answer == FALLBACK

    @pytest.mark.asyncio
    async def test_payload_carries_findings(self, chat_config):
        llm = FakeLLM()
        await ProductTranslationService(llm, chat_config).translate('q', 'objective', FINDINGS, FALLBACK)
        _, payload = llm.calls[0]
        assert payload['findings'] == ['users sign in with google']
        assert payload['objective'] == 'objective'


class TestGreetingReply:
    """Test conversational replies."""

    @pytest.mark.asyncio
    async def test_model_reply(self, chat_config):
        llm = FakeLLM({PRODUCT_PROMPT: ' Hey there!  What would you like to know? '})
        reply = await ProductTranslationService(llm, chat_config).greeting_reply('hi there')
        assert reply == 'Hey there! What would you like to know?'
        assert llm.calls[0][1]['mode'] == 'greeting'

    @pytest.mark.asyncio
    async def test_canned_reply_when_empty(self, chat_config):
        llm = FakeLLM({PRODUCT_PROMPT: ''})
        assert await ProductTranslationService(llm, chat_config).greeting_reply('hi') == GREETING_FALLBACK
