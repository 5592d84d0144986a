"""
Flask web application for Court Notes, a tennis practice tracker.

Students log matches, journal entries and preferences; coaches they invite
can read that data and leave comments. All data lives in per-user YAML files
under DATA_DIR.
"""
import os
import re
import shutil
import logging
import yaml
from datetime import date, datetime, timedelta
from functools import wraps
from filelock import FileLock
from flask import Flask, request, jsonify, session, g
from core.scores import (
    ScoreValidationError, BEST_OF_3, MATCH_FORMATS,
    validate_match, serialize_compact_score, parse_compact_score,
    sets_from_form, sets_to_form, infer_match_format, describe_sets,
)
from core.listing import list_page, InvalidSortError, MATCH_SORTS, JOURNAL_SORTS
from core.utr import parse_utr, latest_rating, record_utr_history_if_changed

app = Flask(__name__)
app.logger.setLevel(logging.INFO)


def _get_or_create_secret_key() -> bytes:
    """Get SECRET_KEY from env, or generate and persist to file."""
    env_key = os.environ.get('SECRET_KEY')
    if env_key:
        return env_key.encode() if isinstance(env_key, str) else env_key
    key_file = os.path.join(DATA_DIR, '.secret_key')
    if os.path.exists(key_file):
        with open(key_file, 'rb') as f:
            return f.read()
    key = os.urandom(24)
    os.makedirs(os.path.dirname(key_file), exist_ok=True)
    with open(key_file, 'wb') as f:
        f.write(key)
    return key


BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('COURT_NOTES_DATA_DIR', os.path.join(BASE_DIR, 'data'))
os.makedirs(DATA_DIR, exist_ok=True)

app.secret_key = _get_or_create_secret_key()
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=30)

USERS_FILE = os.path.join(DATA_DIR, 'users.yaml')
USERS_DIR = os.path.join(DATA_DIR, 'users')
INVITES_FILE = os.path.join(DATA_DIR, 'invites.yaml')
_data_lock = FileLock(os.path.join(DATA_DIR, '.lock'), timeout=10)

ROLES = ('student', 'coach')
SURFACES = ('hard', 'clay', 'grass', 'carpet')
PRIMARY_HANDS = ('right', 'left', 'ambidextrous')
BACKHAND_TYPES = ('one-handed', 'two-handed')
MATCHES_PAGE_SIZE = 8
JOURNAL_PAGE_SIZE = 6
RECENT_MATCHES_COUNT = 5
EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

# Endpoints reachable without a session
PUBLIC_ENDPOINTS = ('static', 'api_register', 'api_login', 'api_logout', None)


# ---------------------------------------------------------------------------
# YAML storage
# ---------------------------------------------------------------------------

def _load_yaml(path: str, key: str, default):
    """Load ``key`` from a YAML file, falling back to ``default`` if missing or unreadable."""
    if not os.path.exists(path):
        return default
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        app.logger.warning(f'Failed to parse {path}: {e}')
        return default
    if not isinstance(data, dict) or data.get(key) is None:
        return default
    return data[key]


def _save_yaml(path: str, key: str, value):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump({key: value}, f, default_flow_style=False)


def _user_dir(user_id: int = None) -> str:
    """Return the data directory of a user. Uses the logged-in user if not given."""
    if user_id is None:
        return g.user_dir
    return os.path.join(USERS_DIR, str(user_id))


def _file_path(filename: str, user_id: int = None) -> str:
    return os.path.join(_user_dir(user_id), filename)


def _next_id(records: list) -> int:
    return max((r.get('id', 0) for r in records), default=0) + 1


def load_users() -> list:
    """Load user registry from YAML."""
    return _load_yaml(USERS_FILE, 'users', [])


def save_users(users: list):
    """Save user registry to YAML."""
    _save_yaml(USERS_FILE, 'users', users)


def load_invites() -> list:
    """Load coach invites from YAML."""
    return _load_yaml(INVITES_FILE, 'invites', [])


def save_invites(invites: list):
    _save_yaml(INVITES_FILE, 'invites', invites)


def load_matches(user_id: int = None) -> list:
    """Load a user's tennis matches."""
    return _load_yaml(_file_path('matches.yaml', user_id), 'matches', [])


def save_matches(matches: list, user_id: int = None):
    _save_yaml(_file_path('matches.yaml', user_id), 'matches', matches)


def load_journal(user_id: int = None) -> list:
    """Load a user's journal entries."""
    return _load_yaml(_file_path('journal.yaml', user_id), 'entries', [])


def save_journal(entries: list, user_id: int = None):
    _save_yaml(_file_path('journal.yaml', user_id), 'entries', entries)


def load_preferences(user_id: int = None):
    """Load a user's tennis preferences. Returns None if never saved."""
    return _load_yaml(_file_path('preferences.yaml', user_id), 'preferences', None)


def save_preferences(preferences: dict, user_id: int = None):
    _save_yaml(_file_path('preferences.yaml', user_id), 'preferences', preferences)


def load_utr_history(user_id: int = None) -> list:
    return _load_yaml(_file_path('utr_history.yaml', user_id), 'history', [])


def save_utr_history(history: list, user_id: int = None):
    _save_yaml(_file_path('utr_history.yaml', user_id), 'history', history)


def load_comments(user_id: int = None) -> list:
    """Load coach comments left on a student's data."""
    return _load_yaml(_file_path('comments.yaml', user_id), 'comments', [])


def save_comments(comments: list, user_id: int = None):
    _save_yaml(_file_path('comments.yaml', user_id), 'comments', comments)


# ---------------------------------------------------------------------------
# Users and sessions
# ---------------------------------------------------------------------------

def normalize_email(email: str) -> str:
    return (email or '').strip().lower()


def _non_string_fields(data: dict, *fields) -> list:
    """Names of ``fields`` present in a JSON body with a non-string value."""
    return [f for f in fields if data.get(f) is not None and not isinstance(data[f], str)]


def find_user(user_id: int = None, email: str = None):
    """Look up a user by id or by (normalized) email."""
    for u in load_users():
        if user_id is not None and u['id'] == user_id:
            return u
        if email is not None and u['email'] == normalize_email(email):
            return u
    return None


def public_user(user: dict) -> dict:
    """User fields safe to send to clients."""
    return {
        'id': user['id'],
        'email': user['email'],
        'first_name': user.get('first_name'),
        'last_name': user.get('last_name'),
        'role': user.get('role', 'student'),
    }


def create_user(email: str, password: str, first_name: str = None, last_name: str = None,
                role: str = 'student') -> tuple:
    """Create a new user. Returns (success, message)."""
    from werkzeug.security import generate_password_hash
    email = normalize_email(email)
    if not email or not password:
        return False, 'Email and password are required.'
    if not EMAIL_RE.match(email):
        return False, 'Invalid email address.'
    if len(password) < 4:
        return False, 'Password must be at least 4 characters.'
    if role not in ROLES:
        return False, 'Role must be student or coach.'
    with _data_lock:
        users = load_users()
        if any(u['email'] == email for u in users):
            return False, 'Email already exists.'
        user_id = _next_id(users)
        users.append({
            'id': user_id,
            'email': email,
            'password_hash': generate_password_hash(password),
            'first_name': first_name or None,
            'last_name': last_name or None,
            'role': role,
            'created': datetime.now().isoformat()
        })
        save_users(users)
    os.makedirs(_user_dir(user_id), exist_ok=True)
    app.logger.info(f'Created {role} account {user_id}')
    return True, 'User created successfully.'


def authenticate_user(email: str, password: str):
    """Check email/password. Returns the user dict if valid, else None."""
    from werkzeug.security import check_password_hash
    user = find_user(email=email)
    if user and check_password_hash(user['password_hash'], password or ''):
        return user
    return None


@app.before_request
def load_logged_in_user():
    """Attach the session user to ``g`` and reject anonymous API calls."""
    if request.endpoint in PUBLIC_ENDPOINTS:
        return

    user_id = session.get('user_id')
    user = find_user(user_id=user_id) if user_id is not None else None
    if user is None:
        session.clear()
        return jsonify({'error': 'Unauthorized'}), 401

    g.user = user
    g.user_dir = _user_dir(user['id'])
    os.makedirs(g.user_dir, exist_ok=True)


def role_required(role):
    """Reject the request with 403 unless the logged-in user has ``role``."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if g.user.get('role', 'student') != role:
                return jsonify({'error': f'Only {role}s can do this'}), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def _has_coach_access(coach_id: int, student_id: int) -> bool:
    return any(
        inv.get('coach_id') == coach_id and inv['student_id'] == student_id and inv['status'] == 'accepted'
        for inv in load_invites()
    )


def coach_access_required(f):
    """Require an accepted invite between the coach and ``student_id``."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _has_coach_access(g.user['id'], kwargs['student_id']):
            return jsonify({'error': 'Access not granted for this student'}), 403
        return f(*args, **kwargs)
    return decorated_function


@app.errorhandler(404)
def not_found(e):
    return jsonify({'error': 'Not found'}), 404


@app.errorhandler(405)
def method_not_allowed(e):
    return jsonify({'error': 'Method not allowed'}), 405


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------

def _parse_iso_date(value, field: str) -> str:
    """Validate an ISO date (YYYY-MM-DD). Raises ValueError with a user-facing message."""
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value).strip()[:10]).isoformat()
    except ValueError:
        raise ValueError(f'{field} must be a date in YYYY-MM-DD format')


def _optional_text(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def build_match_record(data: dict) -> dict:
    """
    Validate a submitted match form and build the stored match fields.

    The set rows are checked by the score engine and stored as a compact
    score string. Raises ValueError or ScoreValidationError.
    """
    opponent_name = _optional_text(data.get('opponent_name'))
    if not opponent_name or not data.get('match_date'):
        raise ValueError('Opponent name and match date are required')
    match_date = _parse_iso_date(data['match_date'], 'Match date')

    surface = _optional_text(data.get('surface'))
    if surface is not None and surface not in SURFACES:
        raise ValueError(f'Surface must be one of: {", ".join(SURFACES)}')

    match_format = data.get('format') or BEST_OF_3
    result = data.get('result') or ''
    sets = sets_from_form(data.get('sets', []))
    outcome = validate_match(sets, match_format, result)
    sets = sets[:MATCH_FORMATS[match_format]['max_sets']]

    return {
        'opponent_name': opponent_name,
        'opponent_utr': parse_utr(data.get('opponent_utr')),
        'match_date': match_date,
        'location': _optional_text(data.get('location')),
        'surface': surface,
        'user_sets_won': outcome.user_sets_won,
        'opponent_sets_won': outcome.opp_sets_won,
        'match_score': serialize_compact_score(sets),
        'result': result or outcome.result,
        'notes': _optional_text(data.get('notes')),
    }


def match_view(match: dict) -> dict:
    """Match record plus its set-by-set breakdown."""
    return {**match, 'sets': describe_sets(parse_compact_score(match.get('match_score')))}


def match_form(match: dict) -> dict:
    """Editable form state recovered from a stored match."""
    parsed = parse_compact_score(match.get('match_score'))
    return {
        'format': infer_match_format(parsed),
        'result': match.get('result') or '',
        'sets': sets_to_form(parsed),
    }


def build_journal_record(data: dict) -> dict:
    title = _optional_text(data.get('title'))
    if not title:
        raise ValueError('Title is required')
    entry_date = data.get('entry_date')
    return {
        'title': title,
        'content': _optional_text(data.get('content')),
        'entry_date': _parse_iso_date(entry_date, 'Entry date') if entry_date else date.today().isoformat(),
    }


def build_preferences(data: dict) -> dict:
    primary_hand = _optional_text(data.get('primary_hand'))
    if primary_hand is not None and primary_hand not in PRIMARY_HANDS:
        raise ValueError(f'Primary hand must be one of: {", ".join(PRIMARY_HANDS)}')
    backhand_type = _optional_text(data.get('backhand_type'))
    if backhand_type is not None and backhand_type not in BACKHAND_TYPES:
        raise ValueError(f'Backhand type must be one of: {", ".join(BACKHAND_TYPES)}')
    return {
        'primary_hand': primary_hand,
        'play_style': _optional_text(data.get('play_style')),
        'backhand_type': backhand_type,
        'utr_rating': parse_utr(data.get('utr_rating')),
        'utr_profile_url': _optional_text(data.get('utr_profile_url')),
    }


def _find_record(records: list, record_id: int):
    for r in records:
        if r['id'] == record_id:
            return r
    return None


def _record_utr(rating, user_id: int = None):
    history = load_utr_history(user_id)
    if record_utr_history_if_changed(history, rating):
        save_utr_history(history, user_id)


# ---------------------------------------------------------------------------
# Auth routes
# ---------------------------------------------------------------------------

@app.route('/api/auth/register', methods=['POST'])
def api_register():
    """Create an account and log it in."""
    data = request.get_json(silent=True) or {}
    if _non_string_fields(data, 'email', 'password', 'role'):
        return jsonify({'error': 'Email, password and role must be strings'}), 400
    ok, msg = create_user(
        data.get('email', ''),
        data.get('password', ''),
        first_name=_optional_text(data.get('first_name')),
        last_name=_optional_text(data.get('last_name')),
        role=data.get('role') or 'student',
    )
    if not ok:
        return jsonify({'error': msg}), 400
    user = find_user(email=data['email'])
    session['user_id'] = user['id']
    session.permanent = True
    return jsonify({'message': msg, 'user': public_user(user)}), 201


@app.route('/api/auth/login', methods=['POST'])
def api_login():
    data = request.get_json(silent=True) or {}
    if _non_string_fields(data, 'email', 'password'):
        return jsonify({'error': 'Email and password must be strings'}), 400
    if not data.get('email') or not data.get('password'):
        return jsonify({'error': 'Email and password are required'}), 400
    user = authenticate_user(data['email'], data['password'])
    if user is None:
        return jsonify({'error': 'Invalid credentials'}), 401
    session['user_id'] = user['id']
    session.permanent = True
    return jsonify({'user': public_user(user)})


@app.route('/api/auth/logout', methods=['POST'])
def api_logout():
    """Clear session."""
    session.clear()
    return jsonify({'success': True})


@app.route('/api/auth/me')
def api_me():
    return jsonify({'user': public_user(g.user)})


@app.route('/api/auth/delete-account', methods=['POST'])
def api_delete_account():
    """Delete the logged-in user's account, data and invites."""
    user = g.user

    with _data_lock:
        users = [u for u in load_users() if u['id'] != user['id']]
        save_users(users)
        invites = [
            inv for inv in load_invites()
            if inv['student_id'] != user['id'] and inv['coach_email'] != user['email']
        ]
        save_invites(invites)

    shutil.rmtree(_user_dir(user['id']), ignore_errors=True)
    session.clear()
    app.logger.info(f'Deleted account {user["id"]}')
    return jsonify({'success': True})


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------

@app.route('/api/matches', methods=['GET'])
def api_list_matches():
    """Paginated, sorted match history."""
    try:
        page = list_page(load_matches(), request.args, MATCH_SORTS, MATCHES_PAGE_SIZE)
    except InvalidSortError:
        return jsonify({'error': 'Invalid sort parameter'}), 400
    page['items'] = [match_view(m) for m in page['items']]
    return jsonify(page)


@app.route('/api/matches/<int:match_id>', methods=['GET'])
def api_get_match(match_id):
    match = _find_record(load_matches(), match_id)
    if match is None:
        return jsonify({'error': 'Match not found'}), 404
    return jsonify({**match_view(match), 'form': match_form(match)})


@app.route('/api/matches', methods=['POST'])
def api_create_match():
    """Validate the score form and store a new match."""
    data = request.get_json(silent=True) or {}
    try:
        fields = build_match_record(data)
    except ScoreValidationError as e:
        app.logger.debug(f'Rejected match score: {e}')
        return jsonify({'error': str(e)}), 400
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    matches = load_matches()
    now = datetime.now().isoformat()
    match = {'id': _next_id(matches), **fields, 'created_at': now, 'updated_at': now}
    matches.append(match)
    save_matches(matches)
    return jsonify({'message': 'Match created successfully', 'id': match['id'],
                    'match': match_view(match)}), 201


@app.route('/api/matches/<int:match_id>', methods=['PUT'])
def api_update_match(match_id):
    """Replace a match's fields with a resubmitted form."""
    data = request.get_json(silent=True) or {}
    matches = load_matches()
    match = _find_record(matches, match_id)
    if match is None:
        return jsonify({'error': 'Match not found'}), 404
    try:
        fields = build_match_record(data)
    except ScoreValidationError as e:
        app.logger.debug(f'Rejected match score: {e}')
        return jsonify({'error': str(e)}), 400
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    match.update(fields)
    match['updated_at'] = datetime.now().isoformat()
    save_matches(matches)
    return jsonify({'message': 'Match updated successfully', 'match': match_view(match)})


@app.route('/api/matches/<int:match_id>', methods=['DELETE'])
def api_delete_match(match_id):
    matches = load_matches()
    remaining = [m for m in matches if m['id'] != match_id]
    if len(remaining) == len(matches):
        return jsonify({'error': 'Match not found'}), 404
    save_matches(remaining)
    comments = load_comments()
    kept = [c for c in comments if not (c['target'] == 'match' and c['target_id'] == match_id)]
    if len(kept) != len(comments):
        save_comments(kept)
    return jsonify({'message': 'Match deleted successfully'})


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------

@app.route('/api/journal', methods=['GET'])
def api_list_journal():
    try:
        page = list_page(load_journal(), request.args, JOURNAL_SORTS, JOURNAL_PAGE_SIZE)
    except InvalidSortError:
        return jsonify({'error': 'Invalid sort parameter'}), 400
    return jsonify(page)


@app.route('/api/journal/<int:entry_id>', methods=['GET'])
def api_get_journal_entry(entry_id):
    entry = _find_record(load_journal(), entry_id)
    if entry is None:
        return jsonify({'error': 'Journal entry not found'}), 404
    return jsonify(entry)


@app.route('/api/journal', methods=['POST'])
def api_create_journal_entry():
    data = request.get_json(silent=True) or {}
    try:
        fields = build_journal_record(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    entries = load_journal()
    now = datetime.now().isoformat()
    entry = {'id': _next_id(entries), **fields, 'created_at': now, 'updated_at': now}
    entries.append(entry)
    save_journal(entries)
    return jsonify({'message': 'Journal entry created successfully', 'entry': entry}), 201


@app.route('/api/journal/<int:entry_id>', methods=['PUT'])
def api_update_journal_entry(entry_id):
    data = request.get_json(silent=True) or {}
    entries = load_journal()
    entry = _find_record(entries, entry_id)
    if entry is None:
        return jsonify({'error': 'Journal entry not found'}), 404
    try:
        fields = build_journal_record({**entry, **data})
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    entry.update(fields)
    entry['updated_at'] = datetime.now().isoformat()
    save_journal(entries)
    return jsonify({'message': 'Journal entry updated successfully', 'entry': entry})


@app.route('/api/journal/<int:entry_id>', methods=['DELETE'])
def api_delete_journal_entry(entry_id):
    entries = load_journal()
    remaining = [e for e in entries if e['id'] != entry_id]
    if len(remaining) == len(entries):
        return jsonify({'error': 'Journal entry not found'}), 404
    save_journal(remaining)
    comments = load_comments()
    kept = [c for c in comments if not (c['target'] == 'journal' and c['target_id'] == entry_id)]
    if len(kept) != len(comments):
        save_comments(kept)
    return jsonify({'message': 'Journal entry deleted successfully'})


# ---------------------------------------------------------------------------
# Preferences and UTR
# ---------------------------------------------------------------------------

@app.route('/api/preferences', methods=['GET'])
def api_get_preferences():
    return jsonify(load_preferences())


@app.route('/api/preferences', methods=['POST'])
def api_save_preferences():
    """Create or replace the user's preferences, tracking UTR changes."""
    data = request.get_json(silent=True) or {}
    try:
        preferences = build_preferences(data)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    created = load_preferences() is None
    save_preferences(preferences)
    _record_utr(preferences['utr_rating'])
    message = 'Preferences created successfully' if created else 'Preferences updated successfully'
    return jsonify({'message': message, 'preferences': preferences})


@app.route('/api/utr/my-utr', methods=['GET'])
def api_get_my_utr():
    preferences = load_preferences()
    if not preferences or not preferences.get('utr_profile_url'):
        return jsonify({
            'error': 'UTR profile not configured',
            'message': 'Please update your preferences with your UTR profile URL'
        }), 404
    return jsonify({
        'utr_rating': preferences.get('utr_rating'),
        'profile_url': preferences['utr_profile_url'],
    })


@app.route('/api/utr/my-utr', methods=['PUT'])
def api_update_my_utr():
    data = request.get_json(silent=True) or {}
    preferences = load_preferences() or build_preferences({})
    if 'utr_rating' in data:
        try:
            preferences['utr_rating'] = parse_utr(data['utr_rating'])
        except ValueError as e:
            return jsonify({'error': str(e)}), 400
    if 'utr_profile_url' in data:
        preferences['utr_profile_url'] = _optional_text(data['utr_profile_url'])

    save_preferences(preferences)
    _record_utr(preferences['utr_rating'])
    return jsonify({'message': 'UTR information updated successfully', 'preferences': preferences})


@app.route('/api/utr/history', methods=['GET'])
def api_utr_history():
    history = sorted(load_utr_history(), key=lambda h: (h['recorded_at'], h['id']), reverse=True)
    return jsonify({'history': history})


@app.route('/api/utr/search', methods=['GET'])
def api_utr_search():
    """Placeholder until UTR API credentials are available."""
    query = request.args.get('query', '').strip()
    if not query:
        return jsonify({'error': 'Search query is required'}), 400
    return jsonify({
        'message': 'UTR API integration required',
        'search_query': query,
    })


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

@app.route('/api/dashboard', methods=['GET'])
def api_dashboard():
    """Summary counts for the home screen."""
    matches = load_matches()
    recent = list_page(matches, {'page_size': RECENT_MATCHES_COUNT}, MATCH_SORTS, RECENT_MATCHES_COUNT)
    return jsonify({
        'matches_played': len(matches),
        'wins': sum(1 for m in matches if m.get('result') == 'win'),
        'losses': sum(1 for m in matches if m.get('result') == 'loss'),
        'recent_matches': [match_view(m) for m in recent['items']],
        'journal_entries': len(load_journal()),
        'utr_rating': latest_rating(load_utr_history()),
    })


# ---------------------------------------------------------------------------
# Coach access
# ---------------------------------------------------------------------------

def _invite_view(invite: dict, counterpart_id: int = None) -> dict:
    view = dict(invite)
    view['user'] = None
    if counterpart_id is not None:
        counterpart = find_user(user_id=counterpart_id)
        if counterpart:
            view['user'] = public_user(counterpart)
    return view


def _comments_for(student_id: int, target: str, target_id: int = None) -> list:
    comments = [
        c for c in load_comments(student_id)
        if c['target'] == target and c.get('target_id') == target_id
    ]
    for c in comments:
        coach = find_user(user_id=c['coach_id'])
        c['coach'] = public_user(coach) if coach else None
    return sorted(comments, key=lambda c: (c['created_at'], c['id']), reverse=True)


def _add_comment(student_id: int, target: str, target_id: int = None):
    data = request.get_json(silent=True) or {}
    content = _optional_text(data.get('content'))
    if not content:
        return jsonify({'error': 'Comment content is required'}), 400
    comments = load_comments(student_id)
    comment = {
        'id': _next_id(comments),
        'target': target,
        'target_id': target_id,
        'coach_id': g.user['id'],
        'content': content,
        'created_at': datetime.now().isoformat(),
    }
    comments.append(comment)
    save_comments(comments, student_id)
    return jsonify({'comment': comment}), 201


@app.route('/api/coach/invites', methods=['POST'])
@role_required('student')
def api_create_invite():
    """Student invites a registered coach by email."""
    data = request.get_json(silent=True) or {}
    if _non_string_fields(data, 'coach_email'):
        return jsonify({'error': 'Coach email must be a string'}), 400
    coach_email = normalize_email(data.get('coach_email'))
    if not coach_email:
        return jsonify({'error': 'Coach email is required'}), 400
    if not EMAIL_RE.match(coach_email):
        return jsonify({'error': 'Invalid email address'}), 400
    if coach_email == g.user['email']:
        return jsonify({'error': 'You cannot invite yourself'}), 400
    coach = find_user(email=coach_email)
    if coach is None or coach.get('role') != 'coach':
        return jsonify({'error': 'That user is not registered as a coach'}), 400

    with _data_lock:
        invites = load_invites()
        if any(inv['student_id'] == g.user['id'] and inv['coach_email'] == coach_email for inv in invites):
            return jsonify({'error': 'Invite already exists for that coach'}), 400
        now = datetime.now().isoformat()
        invite = {
            'id': _next_id(invites),
            'student_id': g.user['id'],
            'coach_id': None,
            'coach_email': coach_email,
            'status': 'pending',
            'created_at': now,
            'updated_at': now,
        }
        invites.append(invite)
        save_invites(invites)
    return jsonify({'invite': invite}), 201


@app.route('/api/coach/invites', methods=['GET'])
@role_required('student')
def api_list_invites():
    invites = [inv for inv in load_invites() if inv['student_id'] == g.user['id']]
    invites.sort(key=lambda inv: (inv['updated_at'], inv['id']), reverse=True)
    return jsonify({'invites': [_invite_view(inv, inv.get('coach_id')) for inv in invites]})


@app.route('/api/coach/invites/pending', methods=['GET'])
@role_required('coach')
def api_pending_invites():
    invites = [
        inv for inv in load_invites()
        if inv['coach_email'] == g.user['email'] and inv['status'] == 'pending'
    ]
    invites.sort(key=lambda inv: (inv['created_at'], inv['id']), reverse=True)
    return jsonify({'invites': [_invite_view(inv, inv['student_id']) for inv in invites]})


def _respond_to_invite(invite_id: int, status: str):
    with _data_lock:
        invites = load_invites()
        invite = _find_record(invites, invite_id)
        if invite is None or invite['coach_email'] != g.user['email']:
            return jsonify({'error': 'Invite not found'}), 404
        if invite['status'] != 'pending':
            return jsonify({'error': 'Invite is no longer pending'}), 400
        invite['status'] = status
        invite['coach_id'] = g.user['id']
        invite['updated_at'] = datetime.now().isoformat()
        save_invites(invites)
    app.logger.info(f'Invite {invite_id} {status} by coach {g.user["id"]}')
    return jsonify({'invite': invite})


@app.route('/api/coach/invites/<int:invite_id>/accept', methods=['POST'])
@role_required('coach')
def api_accept_invite(invite_id):
    return _respond_to_invite(invite_id, 'accepted')


@app.route('/api/coach/invites/<int:invite_id>/decline', methods=['POST'])
@role_required('coach')
def api_decline_invite(invite_id):
    return _respond_to_invite(invite_id, 'declined')


@app.route('/api/coach/students', methods=['GET'])
@role_required('coach')
def api_coach_students():
    invites = [
        inv for inv in load_invites()
        if inv.get('coach_id') == g.user['id'] and inv['status'] == 'accepted'
    ]
    invites.sort(key=lambda inv: (inv['updated_at'], inv['id']), reverse=True)
    students = []
    for inv in invites:
        student = find_user(user_id=inv['student_id'])
        if student:
            students.append(public_user(student))
    return jsonify({'students': students})


@app.route('/api/coach/students/<int:student_id>/profile', methods=['GET'])
@role_required('coach')
@coach_access_required
def api_student_profile(student_id):
    student = find_user(user_id=student_id)
    if student is None:
        return jsonify({'error': 'Student not found'}), 404
    return jsonify({
        'student': public_user(student),
        'preferences': load_preferences(student_id),
        'comments': _comments_for(student_id, 'profile'),
    })


@app.route('/api/coach/students/<int:student_id>/profile/comments', methods=['POST'])
@role_required('coach')
@coach_access_required
def api_comment_profile(student_id):
    return _add_comment(student_id, 'profile')


@app.route('/api/coach/students/<int:student_id>/matches', methods=['GET'])
@role_required('coach')
@coach_access_required
def api_student_matches(student_id):
    try:
        page = list_page(load_matches(student_id), request.args, MATCH_SORTS, MATCHES_PAGE_SIZE)
    except InvalidSortError:
        return jsonify({'error': 'Invalid sort parameter'}), 400
    page['items'] = [match_view(m) for m in page['items']]
    return jsonify(page)


@app.route('/api/coach/students/<int:student_id>/matches/<int:match_id>', methods=['GET'])
@role_required('coach')
@coach_access_required
def api_student_match(student_id, match_id):
    match = _find_record(load_matches(student_id), match_id)
    if match is None:
        return jsonify({'error': 'Match not found'}), 404
    return jsonify({'match': match_view(match), 'comments': _comments_for(student_id, 'match', match_id)})


@app.route('/api/coach/students/<int:student_id>/matches/<int:match_id>/comments', methods=['POST'])
@role_required('coach')
@coach_access_required
def api_comment_match(student_id, match_id):
    if _find_record(load_matches(student_id), match_id) is None:
        return jsonify({'error': 'Match not found'}), 404
    return _add_comment(student_id, 'match', match_id)


@app.route('/api/coach/students/<int:student_id>/journals', methods=['GET'])
@role_required('coach')
@coach_access_required
def api_student_journals(student_id):
    try:
        page = list_page(load_journal(student_id), request.args, JOURNAL_SORTS, JOURNAL_PAGE_SIZE)
    except InvalidSortError:
        return jsonify({'error': 'Invalid sort parameter'}), 400
    return jsonify(page)


@app.route('/api/coach/students/<int:student_id>/journals/<int:entry_id>', methods=['GET'])
@role_required('coach')
@coach_access_required
def api_student_journal_entry(student_id, entry_id):
    entry = _find_record(load_journal(student_id), entry_id)
    if entry is None:
        return jsonify({'error': 'Journal entry not found'}), 404
    return jsonify({'entry': entry, 'comments': _comments_for(student_id, 'journal', entry_id)})


@app.route('/api/coach/students/<int:student_id>/journals/<int:entry_id>/comments', methods=['POST'])
@role_required('coach')
@coach_access_required
def api_comment_journal_entry(student_id, entry_id):
    if _find_record(load_journal(student_id), entry_id) is None:
        return jsonify({'error': 'Journal entry not found'}), 404
    return _add_comment(student_id, 'journal', entry_id)


if __name__ == '__main__':
    app.run(debug=os.environ.get('FLASK_DEBUG') == '1')
