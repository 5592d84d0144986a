"""
Shared pytest fixtures for Court Notes tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os
from filelock import FileLock

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from core.models import SetScore


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point all data files at a temporary directory."""
    import app as app_module

    users_dir = tmp_path / "users"
    users_dir.mkdir()

    monkeypatch.setattr(app_module, 'DATA_DIR', str(tmp_path))
    monkeypatch.setattr(app_module, 'USERS_FILE', str(tmp_path / "users.yaml"))
    monkeypatch.setattr(app_module, 'USERS_DIR', str(users_dir))
    monkeypatch.setattr(app_module, 'INVITES_FILE', str(tmp_path / "invites.yaml"))
    monkeypatch.setattr(app_module, '_data_lock', FileLock(str(tmp_path / ".lock"), timeout=10))

    return tmp_path


def _login(user_id):
    from app import app
    app.config['TESTING'] = True
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['user_id'] = user_id
    return client


@pytest.fixture
def client(temp_data_dir):
    """Create a test client (unauthenticated)."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as c:
        yield c


@pytest.fixture
def student(temp_data_dir):
    """A registered student account."""
    from app import create_user, find_user
    create_user('student@example.com', 'pass1234', first_name='Sam', last_name='Student')
    return find_user(email='student@example.com')


@pytest.fixture
def coach(temp_data_dir):
    """A registered coach account."""
    from app import create_user, find_user
    create_user('coach@example.com', 'pass1234', first_name='Casey', last_name='Coach', role='coach')
    return find_user(email='coach@example.com')


@pytest.fixture
def student_client(student):
    """Test client logged in as the student."""
    return _login(student['id'])


@pytest.fixture
def coach_client(coach):
    """Test client logged in as the coach."""
    return _login(coach['id'])


@pytest.fixture
def login():
    """Factory returning a test client logged in as the given user id."""
    return _login


def form_row(user_games='', opp_games='', user_tiebreak='', opp_tiebreak=''):
    """Raw match-form row, as the browser sends it."""
    return {
        'user_games': str(user_games),
        'opp_games': str(opp_games),
        'user_tiebreak': str(user_tiebreak),
        'opp_tiebreak': str(opp_tiebreak),
    }


@pytest.fixture
def match_payload():
    """A valid best-of-3 match form: 6-4, 3-6, 7-6(4)."""
    return {
        'opponent_name': 'Alex Opponent',
        'opponent_utr': '7.5',
        'match_date': '2026-03-14',
        'location': 'City Courts',
        'surface': 'hard',
        'result': '',
        'notes': 'Served well in the third',
        'format': 'bo3',
        'sets': [
            form_row(6, 4),
            form_row(3, 6),
            form_row(7, 6, 7, 4),
            form_row(),
            form_row(),
        ],
    }


@pytest.fixture
def straight_sets_win():
    return [SetScore(6, 4), SetScore(6, 3)]
