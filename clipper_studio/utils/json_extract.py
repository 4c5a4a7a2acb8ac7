"""Tolerant extraction of a JSON array from model output."""
import json
import logging
from typing import Any, List, Tuple

from clipper_studio.errors import ParseError

logger = logging.getLogger(__name__)

DIRECT = "direct"
RECOVERED = "recovered"

_decoder = json.JSONDecoder()


def _as_array(value: Any):
    if isinstance(value, list):
        return value
    # {"clips": [...]} style wrappers produced by JSON-mode responses
    if isinstance(value, dict):
        lists = [v for v in value.values() if isinstance(v, list)]
        if len(lists) == 1:
            return lists[0]
    return None


def extract_json_array(text: str) -> Tuple[List[Any], str]:
    """
    Parse ``text`` as a JSON array.

    The text is first parsed as-is. If that fails, a single recovery pass
    scans for the first ``[`` that starts a well-formed JSON array and
    decodes from there, which handles prose or code fences around the
    payload.

    Returns:
        (items, mode) where mode is ``"direct"`` or ``"recovered"``

    Raises:
        ParseError: If neither pass yields an array
    """
    if text is None:
        raise ParseError("Empty analysis response")

    stripped = text.strip()
    try:
        array = _as_array(json.loads(stripped))
    except json.JSONDecodeError:
        array = None
    if array is not None:
        return array, DIRECT

    start = stripped.find("[")
    while start != -1:
        try:
            value, _ = _decoder.raw_decode(stripped, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, list):
            logger.info("Recovered JSON array from surrounding text")
            return value, RECOVERED
        start = stripped.find("[", start + 1)

    raise ParseError(
        "Analysis response did not contain a JSON array",
        diagnostics=stripped[:2000],
    )
