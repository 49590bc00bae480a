"""
JSON utilities for cleaning and parsing LLM responses.
"""

import json
from typing import Any, Optional


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def parse_json_object(response: str) -> Optional[dict]:
    """Parse an LLM response expected to hold a single JSON object.

    Models sometimes wrap the object in prose; the outermost braces are tried
    when the cleaned response is not valid JSON on its own.

    Returns:
        Parsed dict, or None if no JSON object could be recovered
    """
    cleaned = clean_json_response(response or '')
    if not cleaned:
        return None

    candidates = [cleaned]
    start, end = cleaned.find('{'), cleaned.rfind('}')
    if 0 <= start < end:
        candidates.append(cleaned[start:end + 1])

    for candidate in candidates:
        try:
            parsed: Any = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None
