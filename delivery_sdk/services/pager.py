"""
Insertion paging.
Takes a window of the caller's insertions and assigns positions.
"""
import logging
from typing import List, Optional

from delivery_sdk.models.schemas import Insertion, InsertionPageType, Paging

logger = logging.getLogger(__name__)


def get_offset(paging: Optional[Paging]) -> int:
    """Global offset of the page, clamped to 0."""
    if paging is None or paging.offset is None:
        return 0
    return max(0, paging.offset)


def get_size(paging: Optional[Paging], insertions: List[Insertion]) -> int:
    """Page size; unset, zero or negative means no limit."""
    size = paging.size if paging is not None and paging.size is not None else -1
    if size <= 0:
        return len(insertions)
    return size


class Pager:
    """Windows full insertions into a page of response insertions."""

    def apply_paging(
        self,
        insertions: List[Insertion],
        page_type: InsertionPageType = InsertionPageType.UNPAGED,
        paging: Optional[Paging] = None,
        insertion_start: int = 0,
    ) -> List[Insertion]:
        """
        Take a page of `insertions` and set positions.

        Args:
            insertions: The caller's full insertions
            page_type: UNPAGED windows from the offset, PRE_PAGED from index 0
            paging: Paging hints, may be None
            insertion_start: Global position of `insertions[0]` (UNPAGED only)

        Returns:
            Response insertions carrying `content_id` and `position`.
            Positions already set on the input are kept; the rest number
            from the offset. `insertion_id` is filled in by the caller.
        """
        offset = get_offset(paging)
        if page_type == InsertionPageType.PRE_PAGED:
            index = 0
        else:
            # Validator reports offset < insertion_start.
            index = max(0, offset - insertion_start)
        size = get_size(paging, insertions)

        count = min(size, len(insertions) - index)
        if count <= 0:
            return []

        page = []
        for insertion in insertions[index:index + count]:
            page.append(
                Insertion(
                    content_id=insertion.content_id,
                    position=insertion.position if insertion.position is not None else offset,
                )
            )
            offset += 1

        logger.debug(
            f"Paged {len(insertions)} insertions -> {len(page)} "
            f"(start={index}, page_type={page_type.name})"
        )
        return page
