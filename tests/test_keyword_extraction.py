"""
Tests for repochat/services/keyword_extraction.py
Tokenization, keyword normalization and dominant-domain detection.
"""

from conftest import make_entity

from repochat.services.keyword_extraction import (build_retrieval_keywords, compact_text, contains_any_phrase,
                                                  extract_anchor_terms, extract_dominant_domains,
                                                  extract_domain_tokens, extract_question_keywords,
                                                  normalize_keywords, sanitize_for_like,
                                                  score_entity_against_keywords, tokenize)


class TestTokenize:
    """Test lexical tokenization."""

    def test_splits_on_non_word_characters(self):
        assert tokenize('Sign-in via OAuth_2!') == ['sign', 'in', 'via', 'oauth_2']

    def test_min_length_drops_short_tokens(self):
        assert tokenize('how do I log in', 3) == ['how', 'log']

    def test_non_ascii_letters_are_separators(self):
        assert tokenize('café login') == ['caf', 'login']

    def test_compact_text_truncates_normalized_text(self):
        assert compact_text('  Hello,   WORLD  ', 7) == 'hello w'


class TestPhraseContainment:
    """Test whole-token phrase matching."""

    def test_multi_word_phrase_matches_across_punctuation(self):
        assert contains_any_phrase('User opens the sign-in page', ['sign in'])

    def test_no_partial_token_matches(self):
        assert not contains_any_phrase('oauth provider', ['auth'])

    def test_empty_phrase_never_matches(self):
        assert not contains_any_phrase('anything', ['', '  '])


class TestKeywordNormalization:
    """Test keyword coercion and question keywords."""

    def test_normalize_keeps_trimmed_lowercase_strings(self):
        assert normalize_keywords([' Login ', 'a', 3, None, 'OAuth']) == ['login', 'oauth']

    def test_normalize_rejects_non_lists(self):
        assert normalize_keywords('login') == []
        assert normalize_keywords(None) == []

    def test_normalize_caps_at_twenty(self):
        assert len(normalize_keywords([f'kw{i}' for i in range(30)])) == 20

    def test_question_keywords_are_distinct_and_long_enough(self):
        assert extract_question_keywords('How does login work, login?') == ['how', 'does', 'login', 'work']

    def test_question_keywords_cap(self):
        question = ' '.join(f'word{i}' for i in range(20))
        assert len(extract_question_keywords(question)) == 12


class TestDominantDomains:
    """Test business-domain detection from entity names and paths."""

    def test_structural_words_are_not_domains(self):
        assert extract_domain_tokens('index.ts', 'src/components/booking/index.ts') == ['booking']

    def test_most_frequent_domain_first(self):
        entities = [
            make_entity('booking.ts', 'src/booking/booking.ts'),
            make_entity('payment.ts', 'src/payment/payment.ts'),
            make_entity('cancel.ts', 'src/booking/cancel.ts'),
        ]
        domains = extract_dominant_domains(entities)
        assert domains[0] == 'booking'
        assert 'payment' in domains
        assert 'src' not in domains

    def test_limit_applies(self):
        entities = [make_entity(f'domain{i}.py', f'pkg{i}/domain{i}.py') for i in range(10)]
        assert len(extract_dominant_domains(entities, limit=3)) == 3


class TestRetrievalKeywords:
    """Test anchor-term extraction and keyword union."""

    def test_anchor_terms_drop_generic_and_filler_words(self):
        assert extract_anchor_terms(['booking flow', 'payment lifecycle', 'system flow']) == ['booking', 'payment']

    def test_union_is_deduplicated_case_insensitively_without_generic_words(self):
        keywords = build_retrieval_keywords(['login', 'flow'], ['Login', 'session'], ['auth'], ['booking'])
        assert keywords == ['login', 'session', 'auth', 'booking']

    def test_union_cap(self):
        keywords = build_retrieval_keywords([f'k{i}' for i in range(40)], [], [], [])
        assert len(keywords) == 28


class TestEntityMatching:
    """Test lexical scoring of entities."""

    def test_counts_distinct_keywords_in_name_path_and_tags(self):
        entity = make_entity('login.ts', 'auth/login.ts', tags=['google'])
        assert score_entity_against_keywords(entity, ['login', 'LOGIN', 'google', 'stripe']) == 2

    def test_no_match_scores_zero(self):
        entity = make_entity('login.ts', 'auth/login.ts')
        assert score_entity_against_keywords(entity, ['payment']) == 0

    def test_sanitize_for_like_strips_wildcards_and_quotes(self):
        assert sanitize_for_like("50%_off'") == '50off'
        assert len(sanitize_for_like('x' * 100)) == 40
