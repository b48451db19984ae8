"""Paging of search results."""
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

DEFAULT_PAGE_SIZE = 5
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_NUMBER = 0


@dataclass(frozen=True)
class Pageable:
    """0-based page *number* and page *size*; ``size == 0`` means unbounded."""
    number: int = DEFAULT_PAGE_NUMBER
    size: int = DEFAULT_PAGE_SIZE


@dataclass
class Slice:
    """One page of entities plus the number of matches across all pages."""
    content: List[Any]
    total_elements: int


def _to_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def create_pageable(number=None, size=None) -> Pageable:
    """Build a :class:`Pageable` from raw request values.

    Args:
        number: 1-based page number as sent by the client. Missing or
            invalid values select the first page.
        size:   Page size. Missing, invalid or out of range values fall back
            to :data:`DEFAULT_PAGE_SIZE`; ``0`` disables paging.

    Returns:
        Pageable with a 0-based page number.
    """
    page_size = _to_int(size)
    if page_size is None or page_size < 0 or page_size > MAX_PAGE_SIZE:
        page_size = DEFAULT_PAGE_SIZE

    page_number = _to_int(number)
    if page_number is None or page_number < 1:
        page_number = DEFAULT_PAGE_NUMBER
    else:
        page_number -= 1

    return Pageable(number=page_number, size=page_size)


def create_page(slice_: Slice, pageable: Pageable, serialize=None) -> Dict:
    """Render a :class:`Slice` as the JSON page structure.

    Args:
        slice_:    Result of a search.
        pageable:  Paging parameters the search ran with.
        serialize: Optional callable applied to every entity.
    """
    content = [serialize(item) for item in slice_.content] if serialize else list(slice_.content)
    total = slice_.total_elements
    if pageable.size == 0:
        size = total
        total_pages = 1 if total else 0
    else:
        size = pageable.size
        total_pages = math.ceil(total / size)
    return {
        'content': content,
        'page': {
            'size': size,
            'number': pageable.number,
            'totalElements': total,
            'totalPages': total_pages,
        },
    }
