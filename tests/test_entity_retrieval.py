"""
Tests for repochat/services/entity_retrieval.py
Keyword retrieval, domain fallback and seed ranking.
"""

import pytest

from conftest import REPO, FakeNeptune, make_entity

from repochat.services.entity_retrieval import (EntityRetrievalError, EntityRetrievalService,
                                                prioritize_session_entities, rank_seeds)
from repochat.utils.neptune_client import NeptuneError

LOGIN = make_entity('login.ts', 'auth/login.ts')
SESSION = make_entity('session.ts', 'auth/session.ts')
BOOKING = make_entity('booking.ts', 'booking/booking.ts')
OTHER_REPO = make_entity('login.ts', 'auth/login.ts', repository_id='repo-2')


@pytest.fixture
def service():
    return EntityRetrievalService(FakeNeptune([LOGIN, SESSION, BOOKING, OTHER_REPO]))


class TestKeywordRetrieval:
    """Test keyword lookups against the graph store."""

    @pytest.mark.asyncio
    async def test_same_id_set_for_any_keyword_order(self, service):
        forward = await service.retrieve_by_keywords(REPO, ['login', 'session', 'booking'])
        backward = await service.retrieve_by_keywords(REPO, ['booking', 'session', 'login'])
        assert {e.id for e in forward} == {e.id for e in backward} == {LOGIN.id, SESSION.id, BOOKING.id}

    @pytest.mark.asyncio
    async def test_results_are_scoped_to_the_repository(self, service):
        entities = await service.retrieve_by_keywords(REPO, ['login'])
        assert [e.id for e in entities] == [LOGIN.id]

    @pytest.mark.asyncio
    async def test_overlapping_keywords_do_not_duplicate(self, service):
        entities = await service.retrieve_by_keywords(REPO, ['auth', 'login'])
        assert len(entities) == len({e.id for e in entities}) == 2

    @pytest.mark.asyncio
    async def test_only_first_ten_keywords_are_queried(self):
        neptune = FakeNeptune([LOGIN])
        await EntityRetrievalService(neptune).retrieve_by_keywords(REPO, [f'kw{i}' for i in range(15)])
        assert neptune.count('find_entities_by_keyword') == 10

    @pytest.mark.asyncio
    async def test_store_failure_raises_retrieval_error(self):

        class BrokenNeptune(FakeNeptune):

            def find_entities_by_keyword(self, repository_id, keyword, limit=40):
                raise NeptuneError('connection closed')

        with pytest.raises(EntityRetrievalError):
            await EntityRetrievalService(BrokenNeptune()).retrieve_by_keywords(REPO, ['login'])


class TestDomainFallback:
    """Test retrying with dominant domains."""

    @pytest.mark.asyncio
    async def test_domains_used_when_keywords_match_nothing(self, service):
        entities, used = await service.retrieve_with_domain_fallback(REPO, ['refund'], ['booking'])
        assert used is True
        assert [e.id for e in entities] == [BOOKING.id]

    @pytest.mark.asyncio
    async def test_domains_not_used_when_keywords_match(self, service):
        entities, used = await service.retrieve_with_domain_fallback(REPO, ['login'], ['booking'])
        assert used is False
        assert [e.id for e in entities] == [LOGIN.id]

    @pytest.mark.asyncio
    async def test_nothing_found_anywhere(self, service):
        entities, used = await service.retrieve_with_domain_fallback(REPO, ['asdkjasd'], ['nonsense'])
        assert entities == []
        assert used is False

    @pytest.mark.asyncio
    async def test_dominant_domains_from_entity_scan(self, service):
        domains = await service.detect_dominant_domains(REPO)
        assert domains[0] == 'booking'
        assert 'auth' in domains


class TestSeedRanking:
    """Test the merge of keyword matches and session entities."""

    def test_session_entities_need_a_keyword_match(self):
        assert prioritize_session_entities([LOGIN, BOOKING], ['login']) == [LOGIN]

    def test_best_scored_seed_first(self):
        seeds = rank_seeds([BOOKING, LOGIN], [], ['login', 'auth'], [])
        assert seeds[0] is LOGIN

    def test_session_membership_breaks_ties(self):
        seeds = rank_seeds([BOOKING], [SESSION], ['ts'], [])
        assert seeds == [SESSION, BOOKING]

    def test_seed_limit(self):
        entities = [make_entity(f'e{i}.ts', f'pkg/e{i}.ts') for i in range(100)]
        assert len(rank_seeds(entities, [], ['pkg'], [])) == 80

    @pytest.mark.asyncio
    async def test_entities_by_ids_are_deduplicated(self, service):
        entities = await service.get_entities_by_ids(REPO, [LOGIN.id, LOGIN.id, SESSION.id])
        assert {e.id for e in entities} == {LOGIN.id, SESSION.id}
