# Command-line score checker: prints a stored score set by set and validates it

import argparse
import sys
from core.scores import (
    MATCH_FORMATS, MATCH_RESULTS, ScoreValidationError,
    parse_compact_score, describe_sets, infer_match_format, validate_match,
    reconstruct_winner_tiebreak,
)
from core.models import SetScore


def parsed_to_sets(parsed_sets):
    """Rebuild SetScore objects from a decoded score, using minimal tiebreak winners."""
    sets = []
    for s in parsed_sets:
        user_tb = opp_tb = None
        if s.tb_loser_points is not None:
            winner = reconstruct_winner_tiebreak(s.tb_loser_points)
            if s.user_won:
                user_tb, opp_tb = winner, s.tb_loser_points
            else:
                user_tb, opp_tb = s.tb_loser_points, winner
        sets.append(SetScore(s.user_games, s.opp_games, user_tb, opp_tb))
    return sets


def print_set_table(parsed_sets):
    print(f"{'Set':<6}{'You':>5}{'Opp':>5}  Tiebreak")
    for row in describe_sets(parsed_sets):
        print(f"{row['set']:<6}{row['user_games']:>5}{row['opp_games']:>5}  {row['tiebreak']}")


def main(argv=None):
    parser = argparse.ArgumentParser(description='Check a compact tennis score such as "6-4, 3-6, 7-6(4)".')
    parser.add_argument('score', help='Compact score string')
    parser.add_argument('--format', choices=sorted(MATCH_FORMATS), help='Match format (inferred if omitted)')
    parser.add_argument('--result', choices=MATCH_RESULTS, help='Claimed result to check against the sets')
    args = parser.parse_args(argv)

    parsed = parse_compact_score(args.score)
    if not parsed:
        print("Error: no set scores found", file=sys.stderr)
        return 1

    match_format = args.format or infer_match_format(parsed)
    print_set_table(parsed)

    try:
        outcome = validate_match(parsed_to_sets(parsed), match_format, args.result)
    except ScoreValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"\n{MATCH_FORMATS[match_format]['label'].capitalize()}: "
          f"{outcome.result} ({outcome.user_sets_won}-{outcome.opp_sets_won} in sets)")
    return 0


if __name__ == '__main__':
    sys.exit(main())
