"""
Tests for SessionData.

Tests cover:
- Routing of serializable state to _data and live collaborators to _objects
- Identity projection properties (bundle, username, profile, flags)
- Dict and attribute style access
- Invalidation and change tracking
- jsonpickle snapshot of the serializable projection
"""
import pytest
from datetime import datetime

from ledger_session.conf import SESSION_KEY
from ledger_session.data import Profile, SessionData


class DummyClient:
    """Stands in for a bound ledger client (not serializable)."""
    def __init__(self, uris=None):
        self.uris = uris or []


@pytest.fixture
def session():
    return SessionData()


@pytest.fixture
def logged_session():
    session = SessionData(new=True)
    session[SESSION_KEY] = 'ab' * 32
    session.username = 'alice'
    session.logged_in = True
    session.profile = Profile(public_name='Alice', avatar='a.png', username='alice')
    session.client = DummyClient(['http://node-a:8080/graphql'])
    return session


class TestSessionInitialization:

    def test_empty_session(self, session):
        assert session.empty is True
        assert len(session) == 0
        assert session.is_changed is False

    def test_new_session_is_changed(self):
        assert SessionData(new=True).is_changed is True

    def test_initial_data(self):
        session = SessionData(data={'username': 'alice', 'logged_in': True})
        assert session.username == 'alice'
        assert session.logged_in is True

    def test_session_id(self, session):
        assert session.session_id
        assert SessionData(id='sid-1').session_id == 'sid-1'
        assert SessionData(data={'session_id': 'sid-2'}).session_id == 'sid-2'

    def test_created(self, session):
        assert isinstance(session.created, int)
        assert isinstance(session.logon_time, datetime)


class TestIdentityProperties:

    def test_defaults(self, session):
        assert session.bundle is None
        assert session.username is None
        assert session.profile is None
        assert session.client is None
        assert session.logged_in is False
        assert session.initialized is False
        assert session.has_error is False

    def test_identity_falls_back_to_session_id(self, session):
        assert session.identity == session.session_id

    def test_logged_session(self, logged_session):
        assert logged_session.bundle == 'ab' * 32
        assert logged_session.identity == 'ab' * 32
        assert logged_session.username == 'alice'
        assert logged_session.logged_in is True
        assert logged_session.profile.public_name == 'Alice'
        assert logged_session.client.uris == ['http://node-a:8080/graphql']

    def test_flags_via_attribute(self, session):
        session.has_error = True
        session.initialized = True
        assert session.has_error is True
        assert session.initialized is True
        assert session['has_error'] is True


class TestValueRouting:

    def test_state_goes_to_data(self, logged_session):
        for key in (SESSION_KEY, 'username', 'logged_in', 'profile'):
            assert key in logged_session.session_data()
            assert key not in logged_session.session_objects()

    def test_client_goes_to_objects(self, logged_session):
        assert 'client' in logged_session.session_objects()
        assert 'client' not in logged_session.session_data()

    def test_same_instance_returned(self, session):
        client = DummyClient()
        session['client'] = client
        assert session['client'] is client
        assert session.client is client

    def test_reassign_moves_storage(self, session):
        session['server_uris'] = DummyClient()
        assert 'server_uris' in session._objects
        session['server_uris'] = ['http://node-a:8080/graphql']
        assert 'server_uris' in session._data
        assert 'server_uris' not in session._objects

    def test_list_of_objects_goes_to_objects(self, session):
        session['clients'] = [DummyClient(), DummyClient()]
        assert 'clients' in session._objects

    def test_nested_primitives_are_data(self, session):
        session['metas'] = {'publicName': 'Alice', 'tags': ['a', 'b']}
        assert 'metas' in session._data


class TestMappingAccess:

    def test_getitem_missing(self, session):
        with pytest.raises(KeyError):
            _ = session['missing']

    def test_getattr_missing(self, session):
        with pytest.raises(AttributeError):
            _ = session.missing

    def test_delitem(self, logged_session):
        del logged_session['client']
        del logged_session['username']
        assert 'client' not in logged_session
        assert logged_session.username is None
        with pytest.raises(KeyError):
            del logged_session['client']

    def test_len_and_iter(self, logged_session):
        assert len(logged_session) == 5
        assert set(logged_session) == {SESSION_KEY, 'username', 'logged_in', 'profile', 'client'}

    def test_get(self, logged_session):
        assert logged_session.get('username') == 'alice'
        assert logged_session.get('missing', 'x') == 'x'


class TestSessionState:

    def test_changed_on_data(self, session):
        session.username = 'alice'
        assert session.is_changed is True

    def test_not_changed_on_object(self, session):
        session.client = DummyClient()
        assert session.is_changed is False

    def test_changed_on_delete(self, session):
        session.username = 'alice'
        session._changed = False
        del session['username']
        assert session.is_changed is True

    def test_changed_method(self, session):
        session.changed()
        assert session.is_changed is True

    def test_invalidate(self, logged_session):
        logged_session.invalidate()
        assert logged_session.empty is True
        assert logged_session.bundle is None
        assert logged_session.client is None
        assert logged_session.logged_in is False
        assert logged_session.is_changed is True


class TestSnapshot:

    def test_snapshot_excludes_objects(self, logged_session):
        snapshot = logged_session.snapshot()
        assert isinstance(snapshot, str)
        assert 'Alice' in snapshot
        assert 'DummyClient' not in snapshot
        assert 'node-a' not in snapshot

    def test_profile_round_trip(self, session):
        session._data['profile'] = session.encode(Profile(public_name='Bob', cover='c.png'))
        decoded = session.decode('profile')
        assert isinstance(decoded, Profile)
        assert decoded.public_name == 'Bob'
        assert decoded.cover == 'c.png'
        assert decoded.avatar is None

    def test_decode_missing(self, session):
        assert session.decode('missing') is None


class TestRepr:

    def test_repr(self, logged_session):
        text = repr(logged_session)
        assert 'Ledger-Session' in text
        assert 'logged_in:True' in text
        assert 'client' in text
