"""
Sorting and pagination for per-user record lists (matches, journal entries).
"""
from typing import List, Dict, Tuple

MAX_PAGE_SIZE = 50

# Each sort is a list of (field, descending) pairs, most significant first.
MATCH_SORTS = {
    'date-desc': [('match_date', True), ('id', True)],
    'date-asc': [('match_date', False), ('id', False)],
    'opponent-asc': [('opponent_name', False), ('match_date', True)],
    'opponent-desc': [('opponent_name', True), ('match_date', True)],
}

JOURNAL_SORTS = {
    'date-desc': [('entry_date', True), ('id', True)],
    'date-asc': [('entry_date', False), ('id', False)],
    'title-asc': [('title', False), ('entry_date', True)],
    'title-desc': [('title', True), ('entry_date', True)],
}

DEFAULT_SORT = 'date-desc'


class InvalidSortError(ValueError):
    pass


def _to_int(value, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed or default


def parse_page_args(args, default_page_size: int) -> Tuple[int, int]:
    """Read ``page``/``page_size`` from query args, clamping to sane bounds."""
    page = max(1, _to_int(args.get('page'), 1))
    page_size = _to_int(args.get('page_size'), default_page_size)
    page_size = min(MAX_PAGE_SIZE, max(1, page_size))
    return page, page_size


def _sort_value(value):
    if value is None:
        return ''
    if isinstance(value, str):
        return value.lower()
    return value


def sort_records(records: List[Dict], sort: str, sorts: Dict[str, List[Tuple[str, bool]]]) -> List[Dict]:
    if sort not in sorts:
        raise InvalidSortError(f'Invalid sort parameter: {sort}')
    ordered = list(records)
    # Stable sorts applied least significant key first
    for field, descending in reversed(sorts[sort]):
        ordered.sort(key=lambda r: _sort_value(r.get(field)), reverse=descending)
    return ordered


def paginate(records: List[Dict], page: int, page_size: int) -> Dict:
    start = (page - 1) * page_size
    return {
        'items': records[start:start + page_size],
        'total': len(records),
        'page': page,
        'page_size': page_size,
    }


def list_page(records: List[Dict], args, sorts: Dict, default_page_size: int) -> Dict:
    """Sort and paginate records according to request query args.

    Raises InvalidSortError for an unknown ``sort`` value.
    """
    sort = args.get('sort') or DEFAULT_SORT
    page, page_size = parse_page_args(args, default_page_size)
    return paginate(sort_records(records, sort, sorts), page, page_size)
