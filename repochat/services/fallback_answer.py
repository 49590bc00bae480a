"""
Deterministic, local answer synthesis from entity and relationship evidence.

No external calls are made here: this is the answer of last resort and must
always produce clean product language, whatever happened upstream.
"""

from typing import Dict, List, Set

from ..models.core import Entity, Relationship
from ..utils.logging_config import get_logger
from .keyword_extraction import compact_text, contains_any_phrase, extract_question_keywords, score_entity_against_keywords

logger = get_logger(__name__)

MAX_ANCHOR_ENTITIES = 18
MAX_RELATED_EDGES = 180
MAX_RELATED_ENTITIES = 40
HIGH_CONFIDENCE_EDGES = 20

AUTH_QUESTION_PHRASES = ('auth', 'login', 'log in', 'sign in', 'signin', 'signup', 'sign up', 'oauth', 'session', 'token')

# capability -> phrases whose presence in related-entity text is evidence for it
AUTH_CAPABILITY_SIGNALS: Dict[str, tuple] = {
    'credential_sign_in': ('signin', 'sign in', 'login', 'password', 'credential', 'credentials', 'email'),
    'google_sign_in': ('google', 'oauth'),
    'github_sign_in': ('github', ),
    'sign_up': ('signup', 'sign up', 'register'),
    'sign_out': ('signout', 'sign out', 'logout'),
    'session': ('session', 'token', 'jwt', 'cookie'),
    'validation': ('validate', 'validation', 'verify', 'bcrypt', 'permission', 'guard'),
    'redirect': ('redirect', 'navigate', 'route'),
}

# Checked in order; the first stage with a matching phrase wins
STAGE_SIGNALS = (
    ('initiation', ('route', 'api', 'controller', 'handler', 'entry', 'submit', 'start', 'create', 'select', 'choose',
                    'book', 'checkout', 'login', 'sign')),
    ('validation', ('validate', 'verify', 'auth', 'permission', 'guard', 'check', 'policy', 'rule')),
    ('processing', ('service', 'process', 'apply', 'calculate', 'execute', 'reserve', 'payment', 'charge', 'update',
                    'compute')),
    ('state_update', ('model', 'store', 'save', 'persist', 'state', 'session', 'token', 'record', 'cache')),
    ('outcome', ('response', 'result', 'success', 'failed', 'notify', 'redirect', 'complete', 'status')),
)

PIPELINE_STAGES = ('initiation', 'validation', 'processing', 'state_update', 'integration', 'outcome')

STAGE_SENTENCES = {
    'initiation': '1) Users initiate the flow through a clear entry action in the product experience.',
    'validation': '2) The system runs validation and authorization checks before moving forward.',
    'processing': '3) Core business processing executes the requested operation.',
    'state_update': '4) Application state and records are updated to reflect the result.',
    'integration': '5) External or internal integrations are involved where required.',
    'outcome': '6) The user receives the final outcome and next-step status.',
}


def no_structure_answer(question: str) -> str:
    return (f'I could not find enough indexed structure to answer "{compact_text(question, 70)}" yet. '
            'Re-run ingestion to refresh the structure index.')


def low_evidence_answer(question: str) -> str:
    return (f'I cannot confidently confirm this specific flow from the currently indexed structure for '
            f'"{compact_text(question, 70)}". The repository index needs stronger matching evidence for this question '
            'before I can describe the behavior reliably.')


def is_auth_question(question: str) -> bool:
    return contains_any_phrase(question, AUTH_QUESTION_PHRASES)


def infer_stage(entity: Entity) -> str:
    """Pipeline stage an entity most likely plays, from its name and kind."""
    text = f'{entity.name} {entity.kind}'
    for stage, phrases in STAGE_SIGNALS:
        if contains_any_phrase(text, phrases):
            return stage
    if entity.kind == 'dependency':
        return 'integration'
    return 'processing'


def infer_auth_capabilities(entities: List[Entity]) -> Dict[str, bool]:
    """Which sign-in capabilities the related entities give evidence for."""
    corpus = ' '.join(f'{e.name} {e.kind} {e.file_path} {" ".join(e.metadata.tags)} {" ".join(e.metadata.keywords)}'
                      for e in entities)
    return {capability: contains_any_phrase(corpus, phrases) for capability, phrases in AUTH_CAPABILITY_SIGNALS.items()}


def _confidence_sentence(edge_count: int, auth: bool) -> str:
    if edge_count >= HIGH_CONFIDENCE_EDGES:
        if auth:
            return 'Confidence is high because multiple connected auth-related relationships were found.'
        return 'Confidence is high because the flow is supported by multiple connected structural relationships.'
    if auth:
        return 'Confidence is moderate because the auth flow is inferred from partial but relevant structural evidence.'
    return 'Confidence is moderate because the flow is inferred from partial but relevant structural relationships.'


def build_auth_narrative(capabilities: Dict[str, bool], edge_count: int) -> str:
    """Ordered sign-in narrative including only steps with positive evidence."""
    options = []
    if capabilities['credential_sign_in']:
        options.append('credentials-based sign-in')
    if capabilities['google_sign_in']:
        options.append('Google sign-in')
    if capabilities['github_sign_in']:
        options.append('GitHub sign-in')

    if options:
        steps = [f'Sign-in options visible in the implemented flow: {", ".join(options)}.']
    else:
        steps = ['The sign-in flow is present, but specific sign-in options are not strongly identifiable yet.']
    if capabilities['sign_up']:
        steps.append('New users can register before signing in.')
    if capabilities['validation']:
        steps.append('After sign-in is submitted, the system validates identity before granting access.')
    if capabilities['session']:
        steps.append('On success, an authenticated session is established so users can access protected areas.')
    if capabilities['redirect']:
        steps.append('Users are then moved into the main product experience after successful authentication.')
    if capabilities['sign_out']:
        steps.append('Sign-out is supported and clears active access.')

    steps.append(_confidence_sentence(edge_count, auth=True))
    return ' '.join(steps)


def build_stage_narrative(entities: List[Entity], edge_count: int) -> str:
    """Numbered entry -> check -> process -> persist -> integrate -> respond narrative."""
    buckets = {stage: 0 for stage in PIPELINE_STAGES}
    for entity in entities:
        buckets[infer_stage(entity)] += 1

    steps = [STAGE_SENTENCES[stage] for stage in PIPELINE_STAGES if buckets[stage] > 0]
    if not steps:
        steps = ['The flow appears to follow a standard request, validation, processing and outcome pattern.']
    steps.append(_confidence_sentence(edge_count, auth=False))
    return ' '.join(steps)


def build_fallback_answer(question: str, entities: List[Entity], relationships: List[Relationship]) -> str:
    """
    Synthesize a product-level answer from structural evidence alone.

    Args:
        question: The (refined) user question
        entities: Candidate entities, best first
        relationships: Edges among the candidates

    Returns:
        A non-empty narrative; an explicit low-evidence message when nothing matches
    """
    if not entities:
        return no_structure_answer(question)

    keywords = extract_question_keywords(question)
    scored = [(entity, score_entity_against_keywords(entity, keywords)) for entity in entities]
    scored = [item for item in scored if item[1] > 0]
    if not scored:
        return low_evidence_answer(question)
    scored.sort(key=lambda item: item[1], reverse=True)

    anchor_ids: Set[str] = {entity.id for entity, _ in scored[:MAX_ANCHOR_ENTITIES]}
    related_edges = [r for r in relationships if r.source_entity_id in anchor_ids or r.target_entity_id in anchor_ids]
    related_ids = set(anchor_ids)
    for relationship in related_edges[:MAX_RELATED_EDGES]:
        related_ids.add(relationship.source_entity_id)
        related_ids.add(relationship.target_entity_id)
    related = [entity for entity in entities if entity.id in related_ids][:MAX_RELATED_ENTITIES]

    edge_count = len(related_edges)
    if is_auth_question(question):
        logger.debug(f'Fallback auth narrative over {len(related)} entities, {edge_count} edges')
        return build_auth_narrative(infer_auth_capabilities(related), edge_count)

    logger.debug(f'Fallback stage narrative over {len(related)} entities, {edge_count} edges')
    return build_stage_narrative(related, edge_count)
