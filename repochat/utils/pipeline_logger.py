"""
Stage telemetry for the chat pipeline.

Every stage reports ``started``/``success``/``failed``/``skipped`` events with
short input and output summaries. Events go to the application log and, when
enabled, to the OpenSearch pipeline log index. Writing an event never raises.
"""

import asyncio
import json
from typing import Any, Dict, Optional

from .logging_config import get_logger
from .opensearch_client import OpenSearchClient, OpenSearchError
from .timestamp_utils import to_iso_str

logger = get_logger(__name__)

LOG_STATUSES = ('started', 'success', 'failed', 'skipped')


def format_summary(summary: Dict[str, Any]) -> str:
    """Render a summary dict as ``k=v`` pairs for log lines (first 12 keys)."""
    if not summary:
        return 'none'
    parts = []
    for key, value in list(summary.items())[:12]:
        parts.append(f'{key}={value if isinstance(value, str) else json.dumps(value, default=str)}')
    return ', '.join(parts)


class PipelineLogger:
    """Per-request stage event writer."""

    def __init__(self, repository_id: str, opensearch: Optional[OpenSearchClient] = None, persist: bool = True):
        self.repository_id = repository_id or 'unknown'
        self.opensearch = opensearch
        self.persist = persist and opensearch is not None
        self._index_unavailable = False

    async def log(self,
                  orchestrator_state: str,
                  agent_name: str,
                  step: str,
                  status: str,
                  input_summary: Optional[Dict[str, Any]] = None,
                  output_summary: Optional[Dict[str, Any]] = None,
                  error_message: Optional[str] = None) -> Dict[str, Any]:
        """Record one stage event.

        Returns:
            The event as written
        """
        entry: Dict[str, Any] = {
            'timestamp': to_iso_str(),
            'repository_id': self.repository_id,
            'orchestrator_state': orchestrator_state,
            'agent_name': agent_name,
            'step': step,
            'status': status if status in LOG_STATUSES else 'failed',
            'input_summary': input_summary or {},
            'output_summary': output_summary or {},
        }
        if error_message:
            entry['error_message'] = error_message

        line = f"[{agent_name}] {entry['status'].upper()} {step} (state={orchestrator_state}, repo={self.repository_id})"
        details = f"input: {format_summary(entry['input_summary'])} | output: {format_summary(entry['output_summary'])}"
        if entry['status'] == 'failed':
            logger.warning(f'{line} {details} | error: {error_message or "unknown"}')
        else:
            logger.info(f'{line} {details}')

        if self.persist and not self._index_unavailable:
            await self._persist(entry)
        return entry

    async def _persist(self, entry: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self.opensearch.index_document, entry, 'pipeline_log')
        except OpenSearchError as e:
            if 'index_not_found' in str(e).lower() or 'no such index' in str(e).lower():
                self._index_unavailable = True
                return
            logger.warning(f'Pipeline log write failed: {e}')
        except Exception as e:
            logger.warning(f'Pipeline log write failed: {e}')
