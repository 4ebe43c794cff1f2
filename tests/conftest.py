import json
import os

# boto3 needs a region and credentials before the handler module builds its store
os.environ['AWS_DEFAULT_REGION'] = 'us-east-1'
os.environ['AWS_ACCESS_KEY_ID'] = 'testing'
os.environ['AWS_SECRET_ACCESS_KEY'] = 'testing'
os.environ['AWS_SECURITY_TOKEN'] = 'testing'
os.environ['AWS_SESSION_TOKEN'] = 'testing'

import boto3
import pytest
from boto3.dynamodb.conditions import Key
from moto import mock_aws

import app
from chat_common.actions import HandlerContext
from chat_common.config import Settings
from chat_common.store import ChatStore


def create_tables(dynamodb, settings):
    dynamodb.create_table(
        TableName=settings.users_table,
        KeySchema=[{'AttributeName': 'handle', 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': 'handle', 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST'
    )
    dynamodb.create_table(
        TableName=settings.groups_table,
        KeySchema=[{'AttributeName': 'name', 'KeyType': 'HASH'}],
        AttributeDefinitions=[{'AttributeName': 'name', 'AttributeType': 'S'}],
        BillingMode='PAY_PER_REQUEST'
    )
    dynamodb.create_table(
        TableName=settings.messages_table,
        KeySchema=[
            {'AttributeName': 'chatId', 'KeyType': 'HASH'},
            {'AttributeName': 'messageKey', 'KeyType': 'RANGE'}
        ],
        AttributeDefinitions=[
            {'AttributeName': 'chatId', 'AttributeType': 'S'},
            {'AttributeName': 'messageKey', 'AttributeType': 'S'}
        ],
        BillingMode='PAY_PER_REQUEST'
    )


@pytest.fixture
def settings():
    return Settings(bcrypt_rounds=4, ably_api_key='test-ably-key')


@pytest.fixture
def backend(settings):
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name='us-east-1')
        create_tables(dynamodb, settings)
        store = ChatStore(dynamodb, settings.users_table, settings.groups_table, settings.messages_table)
        yield HandlerContext(store=store, settings=settings)


@pytest.fixture
def call(backend):
    """POST an action through the dispatcher; returns (status code, decoded body)."""
    def _call(action, **fields):
        event = {'httpMethod': 'POST', 'body': json.dumps(dict(action=action, **fields))}
        response = app.dispatch(event, backend)
        return response['statusCode'], json.loads(response['body'])
    return _call


@pytest.fixture
def users(call):
    """Sign up alice, bob, carol, dave, erin and frank, all with password 'secret'."""
    handles = ['alice', 'bob', 'carol', 'dave', 'erin', 'frank']
    for handle in handles:
        status, _ = call('login', handle=handle, password='secret')
        assert status == 200
    return handles


def chat_items(backend, chat_id):
    response = backend.store.messages.query(KeyConditionExpression=Key('chatId').eq(chat_id))
    return [item['message'] for item in response['Items']]


def make_message(content, timestamp):
    return {'content': content, 'timestamp': timestamp, 'read': False, 'reactions': []}
