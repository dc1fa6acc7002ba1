import json

import jwt
import pytest
import requests
from fastapi.testclient import TestClient

from aklatan import auth, models, repositories, services
from aklatan.config import settings
from aklatan.main import app
from aklatan.utils import identity
from aklatan.utils.identity import ClerkIdentityProvider, IdentityProviderError

client = TestClient(app)


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b'' if payload is None else json.dumps(payload).encode()
        self.text = self.content.decode()

    def json(self):
        if self._payload is None:
            raise ValueError('no body')
        return self._payload


class FailingProvider:
    def create_invitation(self, email, public_metadata, redirect_url):
        raise IdentityProviderError('identity provider unreachable')

    def list_invitations(self, status=None):
        return []

    def revoke_invitation(self, invitation_id):
        raise IdentityProviderError('invitation not found', status_code=404)

    def delete_user(self, external_id):
        raise IdentityProviderError('server error', status_code=500)


class GoneProvider(FailingProvider):
    def delete_user(self, external_id):
        raise IdentityProviderError('user not found', status_code=404)


def _login(email, password):
    return client.post('/auth/login', json={'email': email, 'password': password})


def _invite(headers, email, role='teacher'):
    return client.post('/users/invite', json={'email': email, 'first_name': 'Maria', 'last_name': 'Santos', 'role': role}, headers=headers)


def test_admin_login_and_me(admin_headers):
    r = client.get('/auth/me', headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['role'] == 'admin'
    assert 'password_hash' not in r.json()


def test_bad_credentials_and_missing_token():
    assert _login('admin@example.com', 'wrong').status_code == 401
    assert _login('nobody@example.com', 'admin-pass').status_code == 401
    assert client.get('/auth/me').status_code in (401, 403)
    r = client.get('/auth/me', headers={'Authorization': 'Bearer not-a-token'})
    assert r.status_code == 401


def test_invite_accept_and_teacher_permissions(admin_headers):
    r = _invite(admin_headers, 'guro1@example.com')
    assert r.status_code == 201, r.text
    body = r.json()
    assert body['user']['status'] == 'invited'
    invitation = body['invitation']
    assert invitation['status'] == 'pending'
    assert invitation['public_metadata']['userId'] == body['user']['id']

    # invited accounts cannot log in yet
    assert _login('guro1@example.com', 'guro-pass').status_code == 401

    r = client.post('/auth/accept-invitation', json={'invitation_id': invitation['id'], 'password': 'guro-pass'})
    assert r.status_code == 200, r.text
    assert r.json()['user']['status'] == 'active'

    again = client.post('/auth/accept-invitation', json={'invitation_id': invitation['id'], 'password': 'guro-pass'})
    assert again.status_code == 404

    r = _login('guro1@example.com', 'guro-pass')
    assert r.status_code == 200
    teacher = {'Authorization': f"Bearer {r.json()['access_token']}"}
    assert client.get('/users', headers=teacher).status_code == 403
    assert client.get('/categories', headers=teacher).status_code == 200


def test_accept_invitation_password_too_short():
    r = client.post('/auth/accept-invitation', json={'invitation_id': 'x', 'password': '123'})
    assert r.status_code == 422


def test_duplicate_email_conflicts(admin_headers):
    assert _invite(admin_headers, 'dupe@example.com').status_code == 201
    r = _invite(admin_headers, 'DUPE@example.com')
    assert r.status_code == 409
    assert 'already exists' in r.json()['detail']


def test_create_user_directly_and_update(admin_headers):
    r = client.post('/users', json={'email': 'direct@example.com', 'first_name': 'Jose', 'last_name': 'Reyes', 'password': 'secret1'}, headers=admin_headers)
    assert r.status_code == 201, r.text
    user_id = r.json()['id']
    assert _login('direct@example.com', 'secret1').status_code == 200

    r = client.patch(f'/users/{user_id}', json={'role': 'admin'}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['role'] == 'admin'
    assert client.patch(f'/users/{user_id}', json={'role': 'principal'}, headers=admin_headers).status_code == 400

    r = client.patch(f'/users/{user_id}', json={'status': 'inactive'}, headers=admin_headers)
    assert r.json()['status'] == 'inactive'
    assert _login('direct@example.com', 'secret1').status_code == 401


def test_update_status_callback(admin_headers):
    assert _invite(admin_headers, 'signup@example.com').status_code == 201
    r = client.post('/api/user/update-status', json={'email': 'signup@example.com'})
    assert r.status_code == 200
    assert r.json()['message'] == 'User status updated to active'
    r = client.post('/api/user/update-status', json={'email': 'signup@example.com'})
    assert r.json()['message'] == 'User status is already active or not invited'
    r = client.post('/api/user/update-status', json={'email': 'ghost@example.com'})
    assert r.status_code == 404


class SignupProvider(FailingProvider):
    def get_user_emails(self, external_id):
        return {'user_owner': ['owner@example.com']}.get(external_id, ['attacker@example.com'])


def test_update_status_body_cannot_link_identity(admin_headers, db_session):
    assert _invite(admin_headers, 'victim-admin@example.com', role='admin').status_code == 201
    r = client.post('/api/user/update-status', json={'email': 'victim-admin@example.com', 'clerk_id': 'user_attacker'})
    assert r.status_code == 200
    repo = repositories.UserRepository(db_session)
    assert repo.get_by_email('victim-admin@example.com').clerk_id is None
    assert repo.get_by_clerk_id('user_attacker') is None


def test_update_status_links_only_verified_owner(monkeypatch, admin_headers, db_session):
    for email in ('owner@example.com', 'target-admin@example.com', 'anon-signup@example.com'):
        assert _invite(admin_headers, email, role='admin').status_code == 201
    monkeypatch.setattr(settings, 'AUTH_PROVIDER', 'clerk')
    monkeypatch.setattr(auth, 'verify_clerk_session_token', lambda token: {'sub': f'user_{token}'})
    monkeypatch.setattr(services, 'get_identity_provider', lambda session: SignupProvider())
    url = '/api/user/update-status'

    r = client.post(url, json={'email': 'target-admin@example.com'}, headers={'Authorization': 'Bearer attacker'})
    assert r.status_code == 403
    r = client.post(url, json={'email': 'owner@example.com'}, headers={'Authorization': 'Bearer owner'})
    assert r.status_code == 200
    r = client.post(url, json={'email': 'anon-signup@example.com'})
    assert r.status_code == 200

    repo = repositories.UserRepository(db_session)
    target = repo.get_by_email('target-admin@example.com')
    assert (target.status, target.clerk_id) == ('invited', None)
    assert repo.get_by_email('owner@example.com').clerk_id == 'user_owner'
    assert repo.get_by_email('anon-signup@example.com').clerk_id is None
    assert repo.get_by_clerk_id('user_attacker') is None


def test_update_status_rejects_bad_session_token(monkeypatch, admin_headers):
    assert _invite(admin_headers, 'badtoken@example.com').status_code == 201
    monkeypatch.setattr(settings, 'AUTH_PROVIDER', 'clerk')

    def reject(token):
        raise jwt.InvalidTokenError('bad signature')

    monkeypatch.setattr(auth, 'verify_clerk_session_token', reject)
    r = client.post('/api/user/update-status', json={'email': 'badtoken@example.com'}, headers={'Authorization': 'Bearer forged'})
    assert r.status_code == 401


def test_delete_invited_user_revokes_invitation(admin_headers):
    r = _invite(admin_headers, 'revoke-me@example.com')
    user_id = r.json()['user']['id']
    r = client.delete(f'/users/{user_id}', headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['message'] == 'Pending invitation revoked and user record has been deleted successfully'
    assert client.get(f'/users/{user_id}', headers=admin_headers).status_code == 404

    revoked = client.get('/invitations', params={'status': 'revoked'}, headers=admin_headers).json()
    assert 'revoke-me@example.com' in [i['email_address'] for i in revoked]
    pending = client.get('/invitations', params={'status': 'pending'}, headers=admin_headers).json()
    assert 'revoke-me@example.com' not in [i['email_address'] for i in pending]


def test_cannot_delete_own_account(admin_headers):
    me = client.get('/auth/me', headers=admin_headers).json()
    r = client.delete(f"/users/{me['id']}", headers=admin_headers)
    assert r.status_code == 400


def test_revoke_unknown_invitation(admin_headers):
    r = client.post('/invitations/does-not-exist/revoke', headers=admin_headers)
    assert r.status_code == 404


def test_failed_invitation_removes_user_row(monkeypatch, admin_headers, db_session):
    monkeypatch.setattr(services, 'get_identity_provider', lambda session: FailingProvider())
    r = _invite(admin_headers, 'unlucky@example.com')
    assert r.status_code == 502
    assert repositories.UserRepository(db_session).get_any_by_email('unlucky@example.com') is None


def _linked_user(db_session, email, clerk_id):
    user = models.User(email=email, first_name='Ana', last_name='Cruz', clerk_id=clerk_id)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


def test_delete_user_tolerates_missing_identity_account(db_session):
    user = _linked_user(db_session, 'gone@example.com', 'user_gone')
    message = services.UserService(db_session, provider=GoneProvider()).delete_user(user.id)
    assert message == 'Identity account already removed, user record has been deleted successfully'
    assert repositories.UserRepository(db_session).get(user.id) is None


def test_delete_user_when_identity_provider_fails(db_session):
    user = _linked_user(db_session, 'flaky@example.com', 'user_flaky')
    message = services.UserService(db_session, provider=FailingProvider()).delete_user(user.id)
    assert message == 'Identity deletion failed but user record has been deleted successfully'


def test_clerk_provider_requests(monkeypatch):
    calls = []

    def fake_request(method, url, headers=None, timeout=None, **kwargs):
        calls.append({'method': method, 'url': url, 'headers': headers, **kwargs})
        if method == 'GET':
            return FakeResponse(200, {'data': [{'id': 'inv_2', 'email_address': 'b@example.com', 'status': 'pending'}]})
        return FakeResponse(200, {'id': 'inv_1', 'email_address': 'a@example.com', 'status': 'pending', 'created_at': 1700000000000})

    monkeypatch.setattr(identity.requests, 'request', fake_request)
    provider = ClerkIdentityProvider(secret_key='sk_test', api_url='https://clerk.test/v1/')

    inv = provider.create_invitation('a@example.com', {'role': 'teacher'}, 'http://testserver/login')
    assert inv['id'] == 'inv_1'
    assert inv['created_at'].startswith('2023-11-14')
    assert calls[0]['method'] == 'POST'
    assert calls[0]['url'] == 'https://clerk.test/v1/invitations'
    assert calls[0]['headers'] == {'Authorization': 'Bearer sk_test'}
    assert calls[0]['json']['email_address'] == 'a@example.com'

    listed = provider.list_invitations(status='pending')
    assert [i['id'] for i in listed] == ['inv_2']
    assert calls[1]['params'] == {'status': 'pending'}


def test_clerk_provider_errors(monkeypatch):
    responses = {
        'POST': FakeResponse(422, {'errors': [{'message': 'bad', 'long_message': 'Email already invited'}]}),
        'DELETE': FakeResponse(404, {'errors': [{'message': 'not found'}]}),
    }
    monkeypatch.setattr(identity.requests, 'request', lambda method, url, **kw: responses[method])
    provider = ClerkIdentityProvider(secret_key='sk_test', api_url='https://clerk.test/v1')

    with pytest.raises(IdentityProviderError) as exc:
        provider.create_invitation('a@example.com', {}, 'http://testserver/login')
    assert str(exc.value) == 'Email already invited'
    assert exc.value.status_code == 422
    assert not exc.value.not_found

    with pytest.raises(IdentityProviderError) as exc:
        provider.delete_user('user_1')
    assert exc.value.not_found


def test_clerk_provider_unreachable(monkeypatch):
    def boom(method, url, **kw):
        raise requests.ConnectionError('connection refused')

    monkeypatch.setattr(identity.requests, 'request', boom)
    with pytest.raises(IdentityProviderError, match='unreachable'):
        ClerkIdentityProvider(secret_key='sk', api_url='https://clerk.test/v1').revoke_invitation('inv_1')


def test_clerk_provider_user_emails(monkeypatch):
    seen = []

    def fake_request(method, url, headers=None, timeout=None, **kwargs):
        seen.append((method, url))
        return FakeResponse(200, {'id': 'user_1', 'email_addresses': [{'email_address': 'Guro@Example.com'}]})

    monkeypatch.setattr(identity.requests, 'request', fake_request)
    provider = ClerkIdentityProvider(secret_key='sk_test', api_url='https://clerk.test/v1')
    assert provider.get_user_emails('user_1') == ['guro@example.com']
    assert seen == [('GET', 'https://clerk.test/v1/users/user_1')]
