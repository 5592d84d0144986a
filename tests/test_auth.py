"""
Tests for user accounts, sessions and per-user data isolation.
"""
import pytest
import sys
import os
import yaml

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from app import create_user, authenticate_user, load_users, find_user


class TestUserCreation:
    """Tests for registration helpers."""

    def test_create_user_success(self, temp_data_dir):
        """Valid email and password creates a student."""
        ok, msg = create_user('alice@example.com', 'pass1234')
        assert ok is True
        assert 'created' in msg.lower()
        users = load_users()
        assert users[0]['email'] == 'alice@example.com'
        assert users[0]['role'] == 'student'
        assert users[0]['id'] == 1

    def test_password_is_hashed(self, temp_data_dir):
        """The stored user never holds the plain password."""
        create_user('alice@example.com', 'pass1234')
        assert load_users()[0]['password_hash'] != 'pass1234'

    def test_email_normalized(self, temp_data_dir):
        """Emails are trimmed and lowercased."""
        create_user('  Alice@Example.COM ', 'pass1234')
        assert find_user(email='alice@example.com') is not None

    def test_invalid_email(self, temp_data_dir):
        """Strings that are not email addresses are rejected."""
        ok, msg = create_user('alice', 'pass1234')
        assert ok is False
        assert 'email' in msg.lower()

    def test_short_password(self, temp_data_dir):
        """Password shorter than 4 chars is rejected."""
        ok, _ = create_user('alice@example.com', 'abc')
        assert ok is False

    def test_duplicate_email(self, temp_data_dir):
        """Duplicate email (any case) is rejected."""
        create_user('alice@example.com', 'pass1234')
        ok, msg = create_user('ALICE@example.com', 'otherpass')
        assert ok is False
        assert 'exists' in msg.lower()

    def test_invalid_role(self, temp_data_dir):
        """Only student and coach roles exist."""
        ok, _ = create_user('alice@example.com', 'pass1234', role='admin')
        assert ok is False

    def test_ids_increment(self, temp_data_dir):
        """Each new user gets the next id."""
        create_user('a@example.com', 'pass1234')
        create_user('b@example.com', 'pass1234', role='coach')
        assert [u['id'] for u in load_users()] == [1, 2]

    def test_creates_user_directory(self, temp_data_dir):
        """Creating a user also creates their data directory."""
        create_user('alice@example.com', 'pass1234')
        assert (temp_data_dir / 'users' / '1').is_dir()


class TestAuthentication:
    """Tests for credential checks."""

    def test_authenticate_valid(self, temp_data_dir):
        """Correct credentials return the user."""
        create_user('alice@example.com', 'secret123')
        user = authenticate_user('alice@example.com', 'secret123')
        assert user['email'] == 'alice@example.com'

    def test_authenticate_wrong_password(self, temp_data_dir):
        """Wrong password returns None."""
        create_user('alice@example.com', 'secret123')
        assert authenticate_user('alice@example.com', 'wrongpass') is None

    def test_authenticate_unknown_user(self, temp_data_dir):
        """Unknown email returns None."""
        assert authenticate_user('nobody@example.com', 'anything') is None

    def test_corrupt_users_file(self, temp_data_dir):
        """An unreadable users file behaves as empty."""
        (temp_data_dir / 'users.yaml').write_text('users: [unclosed')
        assert load_users() == []


class TestAuthRoutes:
    """Tests for register, login, logout and session checks."""

    def test_unauthenticated_request_rejected(self, client):
        """Protected endpoints answer 401 without a session."""
        response = client.get('/api/matches')
        assert response.status_code == 401
        assert response.get_json()['error'] == 'Unauthorized'

    def test_register_logs_in(self, client):
        """Registering creates the account and starts a session."""
        response = client.post('/api/auth/register', json={
            'email': 'new@example.com', 'password': 'pass1234',
            'first_name': 'New', 'last_name': 'Player',
        })
        assert response.status_code == 201
        user = response.get_json()['user']
        assert user['email'] == 'new@example.com'
        assert 'password_hash' not in user
        assert client.get('/api/auth/me').status_code == 200

    def test_register_missing_fields(self, client):
        """Email and password are required."""
        response = client.post('/api/auth/register', json={'email': 'new@example.com'})
        assert response.status_code == 400

    def test_register_duplicate(self, client, student):
        """Registering an existing email fails."""
        response = client.post('/api/auth/register', json={
            'email': 'student@example.com', 'password': 'pass1234'})
        assert response.status_code == 400
        assert 'exists' in response.get_json()['error'].lower()

    @pytest.mark.parametrize('payload', [
        {'email': 'a@b.co', 'password': 12345},
        {'email': 5, 'password': 'pass1234'},
        {'email': 'a@b.co', 'password': 'pass1234', 'role': ['coach']},
    ])
    def test_register_non_string_fields(self, client, payload):
        """Non-string credentials are a bad request."""
        response = client.post('/api/auth/register', json=payload)
        assert response.status_code == 400
        assert 'must be strings' in response.get_json()['error']

    def test_register_coach(self, client):
        """Accounts can register as coaches."""
        response = client.post('/api/auth/register', json={
            'email': 'c@example.com', 'password': 'pass1234', 'role': 'coach'})
        assert response.get_json()['user']['role'] == 'coach'

    def test_login_success(self, client, student):
        """Valid credentials start a session."""
        response = client.post('/api/auth/login', json={
            'email': 'student@example.com', 'password': 'pass1234'})
        assert response.status_code == 200
        me = client.get('/api/auth/me').get_json()['user']
        assert me['id'] == student['id']

    def test_login_failure(self, client, student):
        """Invalid credentials answer 401."""
        response = client.post('/api/auth/login', json={
            'email': 'student@example.com', 'password': 'nope'})
        assert response.status_code == 401
        assert response.get_json()['error'] == 'Invalid credentials'

    def test_login_missing_fields(self, client):
        """Login without a password is a bad request."""
        response = client.post('/api/auth/login', json={'email': 'student@example.com'})
        assert response.status_code == 400

    def test_login_non_string_fields(self, client, student):
        """Numeric email or password in the body answers 400."""
        response = client.post('/api/auth/login', json={'email': 5, 'password': 'pass1234'})
        assert response.status_code == 400
        response = client.post('/api/auth/login', json={'email': 'student@example.com', 'password': 1234})
        assert response.status_code == 400

    def test_logout(self, student_client):
        """Logging out ends the session."""
        assert student_client.post('/api/auth/logout').status_code == 200
        assert student_client.get('/api/auth/me').status_code == 401

    def test_session_for_deleted_user(self, login, temp_data_dir):
        """A session pointing at a missing user is rejected."""
        response = login(99).get('/api/auth/me')
        assert response.status_code == 401

    def test_unknown_route_is_json(self, student_client):
        """Unknown URLs answer JSON 404."""
        response = student_client.get('/api/nothing-here')
        assert response.status_code == 404
        assert response.get_json()['error'] == 'Not found'


class TestDeleteAccount:
    """Tests for account deletion."""

    def test_delete_account_removes_data(self, student_client, student, temp_data_dir):
        """Deleting an account removes the user and their directory."""
        student_client.post('/api/journal', json={'title': 'Footwork'})
        response = student_client.post('/api/auth/delete-account')
        assert response.status_code == 200
        assert find_user(user_id=student['id']) is None
        assert not (temp_data_dir / 'users' / str(student['id'])).exists()
        assert student_client.get('/api/auth/me').status_code == 401

    def test_delete_account_removes_invites(self, student_client, coach, temp_data_dir):
        """A deleted student's invites are removed."""
        student_client.post('/api/coach/invites', json={'coach_email': coach['email']})
        student_client.post('/api/auth/delete-account')
        invites = yaml.safe_load((temp_data_dir / 'invites.yaml').read_text())
        assert invites['invites'] == []


class TestIsolation:
    """Each user sees only their own data."""

    def test_matches_are_per_user(self, student_client, login, match_payload, temp_data_dir):
        """Another student's match list stays empty."""
        from app import create_user
        create_user('other@example.com', 'pass1234')
        other = login(find_user(email='other@example.com')['id'])

        student_client.post('/api/matches', json=match_payload)
        assert student_client.get('/api/matches').get_json()['total'] == 1
        assert other.get('/api/matches').get_json()['total'] == 0
        assert other.get('/api/matches/1').status_code == 404
