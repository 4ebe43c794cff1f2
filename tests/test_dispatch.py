import json

import app
from chat_common.actions import ROUTES, SUPPORTED_ACTIONS, HandlerContext, check_routes
from chat_common.config import Settings

import pytest


def test_options_returns_cors_preflight(backend):
    response = app.dispatch({'httpMethod': 'OPTIONS'}, backend)

    assert response['statusCode'] == 200
    assert response['body'] == ''
    assert response['headers']['Access-Control-Allow-Origin'] == '*'
    assert response['headers']['Access-Control-Allow-Methods'] == 'GET, POST, OPTIONS'
    assert response['headers']['Content-Type'] == 'application/json'


def test_get_ably_key(backend):
    event = {'httpMethod': 'GET', 'queryStringParameters': {'getAblyKey': 'true'}}
    response = app.dispatch(event, backend)

    assert response['statusCode'] == 200
    assert json.loads(response['body']) == {'ablyKey': 'test-ably-key'}


def test_get_ably_key_unconfigured(backend):
    unconfigured = HandlerContext(store=backend.store, settings=Settings())
    event = {'httpMethod': 'GET', 'queryStringParameters': {'getAblyKey': '1'}}
    response = app.dispatch(event, unconfigured)

    assert response['statusCode'] == 500
    assert 'not configured' in json.loads(response['body'])['error']


@pytest.mark.parametrize('event', [
    {'httpMethod': 'GET'},
    {'httpMethod': 'GET', 'queryStringParameters': None},
    {'httpMethod': 'PUT', 'body': '{}'},
    {'httpMethod': 'DELETE'},
])
def test_other_methods_not_allowed(backend, event):
    response = app.dispatch(event, backend)

    assert response['statusCode'] == 405
    assert response['headers']['Access-Control-Allow-Origin'] == '*'


@pytest.mark.parametrize('body', ['{not json', '[1, 2]', '"login"'])
def test_unparseable_body(backend, body):
    response = app.dispatch({'httpMethod': 'POST', 'body': body}, backend)

    assert response['statusCode'] == 400
    assert json.loads(response['body'])['success'] is False


@pytest.mark.parametrize('payload', [{}, {'action': 'teleport'}, {'action': 7}])
def test_unknown_action(backend, payload):
    response = app.dispatch({'httpMethod': 'POST', 'body': json.dumps(payload)}, backend)

    assert response['statusCode'] == 400
    assert json.loads(response['body']) == {'success': False, 'message': 'Invalid action'}


def test_unexpected_failure_is_not_leaked(backend, monkeypatch):
    def explode(ctx, body):
        raise RuntimeError('connection string mongodb://admin:hunter2@db')

    monkeypatch.setitem(ROUTES, 'search', explode)
    response = app.dispatch({'httpMethod': 'POST', 'body': json.dumps({'action': 'search'})}, backend)

    assert response['statusCode'] == 500
    body = json.loads(response['body'])
    assert body == {'success': False, 'message': 'Internal server error'}
    assert 'hunter2' not in response['body']


def test_lambda_handler_uses_process_backend(backend, monkeypatch):
    monkeypatch.setattr(app, 'BACKEND', backend)
    event = {'httpMethod': 'POST', 'body': json.dumps({'action': 'login', 'handle': 'zoe', 'password': 'pw'})}

    response = app.lambda_handler(event, None)

    assert response['statusCode'] == 200
    assert json.loads(response['body']) == {'success': True, 'created': True}


def test_routing_table_is_exhaustive():
    assert set(ROUTES) == set(SUPPORTED_ACTIONS)
    check_routes()


def test_routing_table_mismatch_is_detected():
    partial = {name: ROUTES[name] for name in SUPPORTED_ACTIONS[1:]}
    with pytest.raises(RuntimeError):
        check_routes(routes=partial)
