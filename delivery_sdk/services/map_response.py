"""
Helpers for turning response insertions back into the caller's content.
"""
import logging
from typing import Any, Dict, List, Mapping

from delivery_sdk.models.schemas import Insertion

logger = logging.getLogger(__name__)


def to_contents(
    response_insertions: List[Insertion],
    content_lookup: Mapping[str, Mapping[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Look up each insertion's content and attach its `insertion_id`.

    Insertions without a `content_id` are skipped with a warning. Content
    missing from `content_lookup` is skipped silently.
    """
    results = []
    for insertion in response_insertions:
        if not insertion.content_id:
            logger.warning("Encountered missing Insertion.contentId")
            continue
        content = content_lookup.get(insertion.content_id)
        if content is not None:
            results.append({**content, "insertion_id": insertion.insertion_id})
    return results


def to_contents_without_insertion_id(
    response_insertions: List[Insertion],
    content_lookup: Mapping[str, Any],
) -> List[Any]:
    """Like `to_contents`, but returns the looked-up content unchanged."""
    results = []
    for insertion in response_insertions:
        if not insertion.content_id:
            logger.warning("Encountered missing Insertion.contentId")
            continue
        content = content_lookup.get(insertion.content_id)
        if content is not None:
            results.append(content)
    return results
