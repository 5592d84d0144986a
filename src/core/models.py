class SetScore:
    """One set as entered on the match form. Game fields are None when left blank."""

    def __init__(self, user_games=None, opp_games=None, user_tiebreak=None, opp_tiebreak=None):
        self.user_games = user_games
        self.opp_games = opp_games
        self.user_tiebreak = user_tiebreak
        self.opp_tiebreak = opp_tiebreak

    @property
    def is_empty(self):
        return self.user_games is None and self.opp_games is None

    @property
    def user_won(self):
        return self.user_games > self.opp_games

    def __repr__(self):
        return (f"SetScore(user_games={self.user_games}, opp_games={self.opp_games}, "
                f"user_tiebreak={self.user_tiebreak}, opp_tiebreak={self.opp_tiebreak})")


class ParsedSetScore:
    """One set decoded from a stored compact score string."""

    def __init__(self, user_games, opp_games, tb_loser_points=None):
        self.user_games = user_games
        self.opp_games = opp_games
        self.tb_loser_points = tb_loser_points  # Only the loser's tiebreak points are stored

    @property
    def user_won(self):
        return self.user_games > self.opp_games

    def __repr__(self):
        return (f"ParsedSetScore(user_games={self.user_games}, opp_games={self.opp_games}, "
                f"tb_loser_points={self.tb_loser_points})")


class MatchOutcome:
    def __init__(self, result, user_sets_won, opp_sets_won):
        self.result = result
        self.user_sets_won = user_sets_won
        self.opp_sets_won = opp_sets_won

    def to_dict(self):
        return {
            'result': self.result,
            'user_sets_won': self.user_sets_won,
            'opponent_sets_won': self.opp_sets_won,
        }

    def __repr__(self):
        return f"MatchOutcome(result={self.result}, sets={self.user_sets_won}-{self.opp_sets_won})"
