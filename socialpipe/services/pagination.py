"""
Zero-based pagination of ordered results.
"""

import math
from typing import Any, Callable, Dict, List, Sequence, TypeVar

from socialpipe.services.errors import InvalidRequestError

T = TypeVar('T')

MAX_PAGE_SIZE = 100


def validate_page(page: int, page_size: int, max_page_size: int = MAX_PAGE_SIZE) -> None:
    """
    Raises:
        InvalidRequestError: If page is negative or page_size is out of range
    """
    if page < 0:
        raise InvalidRequestError(f"page must be >= 0, got {page}")
    if page_size < 1 or page_size > max_page_size:
        raise InvalidRequestError(
            f"page_size must be between 1 and {max_page_size}, got {page_size}"
        )


def paginate(
    items: Sequence[T],
    page: int,
    page_size: int,
    to_dict: Callable[[T], Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Slice an already ordered sequence into a page response.
    
    Args:
        items: Full ordered result
        page: Zero-based page number
        page_size: Items per page
        to_dict: Converts an item to its DTO
    
    Returns:
        {"items", "page", "totalPages", "totalItems"}
    """
    validate_page(page, page_size)
    
    total_items = len(items)
    start = page * page_size
    page_items: List[Dict[str, Any]] = [to_dict(item) for item in items[start:start + page_size]]
    
    return {
        "items": page_items,
        "page": page,
        "totalPages": math.ceil(total_items / page_size),
        "totalItems": total_items,
    }
