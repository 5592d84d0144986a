"""
UTR (Universal Tennis Rating) helpers. Ratings are entered by the user;
nothing here talks to the UTR service.
"""
import math
from datetime import datetime
from typing import List, Dict, Optional

MIN_UTR = 1.0
MAX_UTR = 16.5


def parse_utr(value) -> Optional[float]:
    """Parse a UTR rating. Blank gives None; raises ValueError if out of range."""
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValueError('UTR rating must be a number')
    try:
        rating = float(value)
    except (TypeError, ValueError):
        raise ValueError('UTR rating must be a number')
    if not math.isfinite(rating) or not MIN_UTR <= rating <= MAX_UTR:
        raise ValueError(f'UTR rating must be between {MIN_UTR} and {MAX_UTR}')
    return rating


def latest_rating(history: List[Dict]) -> Optional[float]:
    if not history:
        return None
    latest = max(history, key=lambda h: (h.get('recorded_at', ''), h.get('id', 0)))
    return latest['rating']


def record_utr_history_if_changed(history: List[Dict], rating: Optional[float]) -> bool:
    """
    Append ``rating`` to ``history`` unless it matches the latest entry.

    Returns True if an entry was added.
    """
    if rating is None or isinstance(rating, bool) or not isinstance(rating, (int, float)):
        return False
    if not math.isfinite(rating):
        return False
    if history and latest_rating(history) == rating:
        return False

    next_id = max((h.get('id', 0) for h in history), default=0) + 1
    history.append({
        'id': next_id,
        'rating': float(rating),
        'recorded_at': datetime.now().isoformat(),
    })
    return True
