"""
Tennis match score engine.

Parses stored compact score strings, validates entered set scores against
standard set rules (6-game sets, tiebreak at 6-6), derives the match result
and serializes entered sets back into the compact form.

Compact form: sets separated by commas and/or whitespace, each written as
``U-O`` with an optional ``(L)`` suffix holding the tiebreak loser's points,
e.g. ``"7-6(5), 4-6, 7-6(8)"``.
"""
import re
from typing import List, Dict, Optional

from core.models import SetScore, ParsedSetScore, MatchOutcome


BEST_OF_3 = 'bo3'
BEST_OF_5 = 'bo5'

MATCH_FORMATS = {
    BEST_OF_3: {'max_sets': 3, 'sets_to_win': 2, 'label': 'best of 3'},
    BEST_OF_5: {'max_sets': 5, 'sets_to_win': 3, 'label': 'best of 5'},
}

MATCH_RESULTS = ('win', 'loss')

# Number of set rows the match form always shows
FORM_SET_ROWS = 5

_TOKEN_SPLIT_RE = re.compile(r'\s*,\s*|\s+')
_SET_TOKEN_RE = re.compile(r'^(\d+)-(\d+)(?:\((\d+)\))?$', re.ASCII)
_INT_PREFIX_RE = re.compile(r'^[+-]?\d+', re.ASCII)


class ScoreValidationError(Exception):
    """A rejected score submission.

    ``set_index`` is the 0-based index of the offending set, or None when the
    problem concerns the match as a whole.
    """

    def __init__(self, message: str, set_index: Optional[int] = None):
        self.message = message
        self.set_index = set_index
        if set_index is None:
            text = message
        else:
            text = f'Set {set_index + 1}: {message}'
        super().__init__(text)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_int_or_null(value) -> Optional[int]:
    """Parse raw form input. Blank gives None; otherwise the leading integer, if any."""
    if value is None:
        return None
    if _is_int(value):
        return value
    text = str(value).strip()
    if text == '':
        return None
    m = _INT_PREFIX_RE.match(text)
    return int(m.group()) if m else None


def is_tiebreak_set(user_games: int, opp_games: int) -> bool:
    return max(user_games, opp_games) == 7 and min(user_games, opp_games) == 6


def reconstruct_winner_tiebreak(loser_points: int) -> int:
    """Smallest tiebreak score that beats ``loser_points``."""
    return max(7, loser_points + 2)


def parse_compact_score(score: Optional[str]) -> List[ParsedSetScore]:
    """Decode a stored compact score. Tokens that don't look like a set are skipped."""
    if not score:
        return []
    parts = [p.strip() for p in _TOKEN_SPLIT_RE.split(score)]

    sets = []
    for part in parts:
        if not part:
            continue
        m = _SET_TOKEN_RE.match(part)
        if not m:
            continue
        tb_loser_points = int(m.group(3)) if m.group(3) is not None else None
        sets.append(ParsedSetScore(int(m.group(1)), int(m.group(2)), tb_loser_points))
    return sets


def validate_set(index: int, user_games, opp_games, user_tiebreak=None,
                 opp_tiebreak=None) -> Optional[ScoreValidationError]:
    """Check one set against tennis rules. Returns the first error found, or None."""

    def error(message):
        return ScoreValidationError(message, set_index=index)

    def in_range(games):
        return _is_int(games) and 0 <= games <= 7

    if not in_range(user_games) or not in_range(opp_games):
        return error('games must be an integer between 0 and 7.')

    if user_games == opp_games:
        return error('set score cannot be tied.')

    high = max(user_games, opp_games)
    low = min(user_games, opp_games)
    if not ((high == 6 and low <= 4) or (high == 7 and low in (5, 6))):
        return error(f'invalid set score {user_games}-{opp_games}.')

    if not is_tiebreak_set(user_games, opp_games):
        # Leftover tiebreak input on a regular set is ignored
        return None

    if user_tiebreak is None or opp_tiebreak is None:
        return error('tiebreak points are required for a 7-6 set.')
    if not all(_is_int(tb) and tb >= 0 for tb in (user_tiebreak, opp_tiebreak)):
        return error('tiebreak points must be non-negative integers.')

    if user_games > opp_games:
        winner_tb, loser_tb = user_tiebreak, opp_tiebreak
    else:
        winner_tb, loser_tb = opp_tiebreak, user_tiebreak
    if winner_tb < 7:
        return error('tiebreak winner must have at least 7 points.')
    if winner_tb - loser_tb < 2:
        return error('tiebreak must be won by 2 points.')

    return None


def validate_match(sets: List[SetScore], match_format: str = BEST_OF_3,
                   result: Optional[str] = None) -> MatchOutcome:
    """
    Validate a full match entry and derive its outcome.

    Sets must be filled in order; every filled set must be legal; the match
    must stop exactly when one side wins the required number of sets. If
    ``result`` is given ('win' or 'loss') it must agree with the sets.
    Rows past the format's maximum set count are ignored.

    Raises ScoreValidationError on the first problem found.
    """
    if match_format not in MATCH_FORMATS:
        raise ScoreValidationError(f'Unknown match format: {match_format}.')
    if result and result not in MATCH_RESULTS:
        raise ScoreValidationError('Result must be either win or loss.')
    sets_to_win = MATCH_FORMATS[match_format]['sets_to_win']
    max_sets = MATCH_FORMATS[match_format]['max_sets']

    filled = []
    found_empty = False
    for idx, set_score in enumerate(sets[:max_sets]):
        if set_score.is_empty:
            found_empty = True
            continue
        if found_empty:
            raise ScoreValidationError('please fill sets in order without gaps.', idx)
        if set_score.user_games is None or set_score.opp_games is None:
            raise ScoreValidationError("both players' game scores are required.", idx)

        err = validate_set(idx, set_score.user_games, set_score.opp_games,
                           set_score.user_tiebreak, set_score.opp_tiebreak)
        if err:
            raise err
        filled.append(set_score)

    if not filled:
        raise ScoreValidationError('Please enter at least one set score.')

    user_sets_won = 0
    opp_sets_won = 0
    decided_at = None
    for idx, set_score in enumerate(filled):
        if set_score.user_won:
            user_sets_won += 1
        else:
            opp_sets_won += 1
        if decided_at is None and sets_to_win in (user_sets_won, opp_sets_won):
            decided_at = idx

    if decided_at is not None and len(filled) > decided_at + 1:
        raise ScoreValidationError('Extra sets entered after the match is already decided.')

    if sets_to_win not in (user_sets_won, opp_sets_won):
        label = MATCH_FORMATS[match_format]['label']
        raise ScoreValidationError(f'Match must end when someone wins {sets_to_win} sets for {label}.')

    derived = 'win' if user_sets_won > opp_sets_won else 'loss'
    if result and result != derived:
        raise ScoreValidationError(
            f'Result does not match the score. Based on sets, this should be a {derived}.')

    return MatchOutcome(derived, user_sets_won, opp_sets_won)


def serialize_compact_score(sets: List[SetScore]) -> str:
    """Encode entered sets as a compact score string. Blank rows are skipped."""
    parts = []
    for set_score in sets:
        if set_score.is_empty:
            continue
        user_games, opp_games = set_score.user_games, set_score.opp_games
        if not is_tiebreak_set(user_games, opp_games):
            parts.append(f'{user_games}-{opp_games}')
            continue
        loser_tb = set_score.opp_tiebreak if user_games > opp_games else set_score.user_tiebreak
        parts.append(f'{user_games}-{opp_games}({loser_tb if loser_tb is not None else 0})')
    return ', '.join(parts)


def should_show_tiebreak_fields(user_games, opp_games) -> bool:
    """True when the entered games make (or may soon make) a tiebreak set."""
    user_games = parse_int_or_null(user_games)
    opp_games = parse_int_or_null(opp_games)
    if user_games is None or opp_games is None:
        return False
    return is_tiebreak_set(user_games, opp_games) or (user_games == 6 and opp_games == 6)


def infer_match_format(parsed_sets: List[ParsedSetScore]) -> str:
    """Guess the format of a stored match; four or more sets can only be best of 5."""
    return BEST_OF_5 if len(parsed_sets) >= 4 else BEST_OF_3


def format_tiebreak_display(parsed_set: ParsedSetScore) -> str:
    if parsed_set.tb_loser_points is None:
        return '-'
    loser = parsed_set.tb_loser_points
    return f'{reconstruct_winner_tiebreak(loser)}-{loser}'


def describe_sets(parsed_sets: List[ParsedSetScore]) -> List[Dict]:
    """Rows for displaying a stored score set by set."""
    return [
        {
            'set': idx + 1,
            'user_games': s.user_games,
            'opp_games': s.opp_games,
            'tiebreak': format_tiebreak_display(s),
        }
        for idx, s in enumerate(parsed_sets)
    ]


def _empty_form_row() -> Dict[str, str]:
    return {'user_games': '', 'opp_games': '', 'user_tiebreak': '', 'opp_tiebreak': ''}


def sets_to_form(parsed_sets: List[ParsedSetScore]) -> List[Dict[str, str]]:
    """
    Turn a stored score back into editable form rows.

    Only the tiebreak loser's points survive storage, so the winner's points
    are filled in with the smallest score that wins the tiebreak.
    """
    rows = [_empty_form_row() for _ in range(FORM_SET_ROWS)]
    for idx, s in enumerate(parsed_sets[:FORM_SET_ROWS]):
        rows[idx]['user_games'] = str(s.user_games)
        rows[idx]['opp_games'] = str(s.opp_games)
        if s.tb_loser_points is not None:
            loser = s.tb_loser_points
            winner = reconstruct_winner_tiebreak(loser)
            if s.user_won:
                rows[idx]['user_tiebreak'], rows[idx]['opp_tiebreak'] = str(winner), str(loser)
            else:
                rows[idx]['user_tiebreak'], rows[idx]['opp_tiebreak'] = str(loser), str(winner)
    return rows


def sets_from_form(rows) -> List[SetScore]:
    """Parse raw form rows (dicts of text fields) into SetScore objects."""
    if not isinstance(rows, list):
        raise ScoreValidationError('Set scores must be a list.')
    sets = []
    for idx, row in enumerate(rows):
        if not isinstance(row, dict):
            raise ScoreValidationError('invalid set data.', idx)
        sets.append(SetScore(
            user_games=parse_int_or_null(row.get('user_games')),
            opp_games=parse_int_or_null(row.get('opp_games')),
            user_tiebreak=parse_int_or_null(row.get('user_tiebreak')),
            opp_tiebreak=parse_int_or_null(row.get('opp_tiebreak')),
        ))
    return sets
