# src/layers/chat_layer/python/chat_common/store.py

import logging
import uuid

import boto3
from boto3.dynamodb.conditions import Attr, Key

from chat_common import chat_keys
from chat_common.utils import utc_now

logger = logging.getLogger(__name__)

# Above this many groups the chatId filter expression gets too large; scan everything instead.
MAX_FILTERED_GROUPS = 50


def new_message_key(created_at):
    """Sort key for a message: creation time first, random suffix against collisions."""
    return f"{created_at}#{uuid.uuid4().hex[:12]}"


class ChatStore:
    """
    DynamoDB access for users, groups and messages.

    One instance is built when the Lambda process starts and handed to every
    handler; the underlying boto3 resource is reused across warm invocations.
    """

    def __init__(self, dynamodb, users_table, groups_table, messages_table):
        self.dynamodb = dynamodb
        self.users = dynamodb.Table(users_table)
        self.groups = dynamodb.Table(groups_table)
        self.messages = dynamodb.Table(messages_table)
        self._conditional_failed = dynamodb.meta.client.exceptions.ConditionalCheckFailedException

    @classmethod
    def from_settings(cls, settings):
        kwargs = {}
        if settings.dynamodb_endpoint_url:
            kwargs['endpoint_url'] = settings.dynamodb_endpoint_url
        dynamodb = boto3.resource('dynamodb', **kwargs)
        return cls(dynamodb, settings.users_table, settings.groups_table, settings.messages_table)

    # Users

    def get_user(self, handle):
        response = self.users.get_item(Key={'handle': handle})
        return response.get('Item')

    def create_user(self, handle, password_hash):
        """
        Insert a new user marked online. Returns False if the handle was taken meanwhile.
        """
        item = {
            'handle': handle,
            'password': password_hash,
            'online': True,
            'lastSeen': 'Online',
            'createdAt': utc_now()
        }
        try:
            self.users.put_item(Item=item, ConditionExpression=Attr('handle').not_exists())
        except self._conditional_failed:
            return False
        return True

    def set_presence(self, handle, online, last_seen):
        """Set online/lastSeen on an existing user. Returns False if there is no such user."""
        try:
            self.users.update_item(
                Key={'handle': handle},
                UpdateExpression='SET #online = :online, #lastSeen = :lastSeen',
                ConditionExpression=Attr('handle').exists(),
                ExpressionAttributeNames={'#online': 'online', '#lastSeen': 'lastSeen'},
                ExpressionAttributeValues={':online': online, ':lastSeen': last_seen}
            )
        except self._conditional_failed:
            return False
        return True

    def set_password(self, handle, password_hash):
        self.users.update_item(
            Key={'handle': handle},
            UpdateExpression='SET #password = :password',
            ConditionExpression=Attr('handle').exists(),
            ExpressionAttributeNames={'#password': 'password'},
            ExpressionAttributeValues={':password': password_hash}
        )

    def rename_user(self, user, new_handle):
        """
        Move a user item to a new partition key: put under the new handle, then delete the old one.
        Returns False if the new handle is already taken. Not atomic.
        """
        renamed = dict(user, handle=new_handle)
        try:
            self.users.put_item(Item=renamed, ConditionExpression=Attr('handle').not_exists())
        except self._conditional_failed:
            return False
        self.users.delete_item(Key={'handle': user['handle']})
        return True

    def existing_handles(self, handles):
        """Subset of the given handles that have a user record."""
        found = set()
        keys = [{'handle': handle} for handle in sorted(set(handles))]
        for start in range(0, len(keys), 100):
            request = {self.users.name: {'Keys': keys[start:start + 100]}}
            while request:
                response = self.dynamodb.batch_get_item(RequestItems=request)
                for item in response.get('Responses', {}).get(self.users.name, []):
                    found.add(item['handle'])
                request = response.get('UnprocessedKeys') or None
        return found

    # Groups

    def get_group(self, name):
        response = self.groups.get_item(Key={'name': name})
        return response.get('Item')

    def create_group(self, name, members):
        """Returns False if a group with that name already exists."""
        item = {'name': name, 'members': list(members), 'createdAt': utc_now()}
        try:
            self.groups.put_item(Item=item, ConditionExpression=Attr('name').not_exists())
        except self._conditional_failed:
            return False
        return True

    def groups_for_member(self, handle):
        groups = _scan_all(self.groups, FilterExpression=Attr('members').contains(handle))
        return sorted(groups, key=lambda group: group['name'])

    # Messages

    def put_message(self, chat_id, message, created_at=None):
        created_at = created_at or utc_now()
        item = {
            'chatId': chat_id,
            'messageKey': new_message_key(created_at),
            'message': message,
            'createdAt': created_at
        }
        self.messages.put_item(Item=item)
        return item

    def chat_message_keys(self, chat_id):
        """Keys of all messages of a chat in creation order."""
        return _query_all(
            self.messages,
            KeyConditionExpression=Key('chatId').eq(chat_id),
            ScanIndexForward=True,
            ProjectionExpression='chatId, messageKey'
        )

    def message_key_at(self, chat_id, index):
        """
        Resolve a positional index (creation order) to a message key, or None if out of range.
        Indexes shift under concurrent inserts or deletes in the same chat.
        """
        seen = 0
        kwargs = {
            'KeyConditionExpression': Key('chatId').eq(chat_id),
            'ScanIndexForward': True,
            'ProjectionExpression': 'chatId, messageKey'
        }
        while True:
            response = self.messages.query(**kwargs)
            items = response.get('Items', [])
            if index < seen + len(items):
                return items[index - seen]
            seen += len(items)
            if 'LastEvaluatedKey' not in response:
                return None
            kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']

    def set_message_content(self, key, content):
        return self._update_message(
            key,
            'SET #message.#content = :content',
            {'#message': 'message', '#content': 'content'},
            {':content': content}
        )

    def append_reaction(self, key, reaction):
        return self._update_message(
            key,
            'SET #message.#reactions = list_append(if_not_exists(#message.#reactions, :empty), :reaction)',
            {'#message': 'message', '#reactions': 'reactions'},
            {':reaction': [reaction], ':empty': []}
        )

    def delete_message(self, key):
        try:
            self.messages.delete_item(Key=_message_key(key), ConditionExpression=Attr('chatId').exists())
        except self._conditional_failed:
            return False
        return True

    def mark_read(self, chat_id, timestamp):
        """
        Set read=True on the first message of the chat whose message.timestamp matches.
        Returns False when nothing matched.
        """
        kwargs = {
            'KeyConditionExpression': Key('chatId').eq(chat_id),
            'FilterExpression': Attr('message.timestamp').eq(timestamp),
            'ScanIndexForward': True,
            'ProjectionExpression': 'chatId, messageKey'
        }
        while True:
            response = self.messages.query(**kwargs)
            items = response.get('Items', [])
            if items:
                return self._update_message(
                    items[0],
                    'SET #message.#read = :read',
                    {'#message': 'message', '#read': 'read'},
                    {':read': True}
                )
            if 'LastEvaluatedKey' not in response:
                return False
            kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']

    def clear_chat(self, chat_id):
        keys = self.chat_message_keys(chat_id)
        self._delete_messages(keys)
        return len(keys)

    def messages_for_user(self, handle, groups=None):
        """
        Every message of every chat the user takes part in, ordered by chat then creation time.
        ``groups`` maps the user's group names to their members.
        """
        groups = dict(groups or {})
        scan_kwargs = {}
        if len(groups) <= MAX_FILTERED_GROUPS:
            condition = Attr('chatId').contains(handle)
            for name in sorted(groups):
                condition = condition | Attr('chatId').contains(name)
            scan_kwargs['FilterExpression'] = condition
        items = _scan_all(self.messages, **scan_kwargs)
        items = [item for item in items if chat_keys.belongs_to(item['chatId'], handle, groups)]
        return sorted(items, key=lambda item: (item['chatId'], item['messageKey']))

    def replace_user_data(self, handle, old_groups, messages, groups):
        """
        Delete everything the user takes part in and write the replacement data.
        ``old_groups`` is the user's current group list, as already checked by the caller.
        The delete and the insert are separate batches; a failure in between loses data.
        """
        old_messages = self.messages_for_user(handle, members_by_group(old_groups))
        self._delete_messages(old_messages)
        with self.groups.batch_writer() as batch:
            for group in old_groups:
                batch.delete_item(Key={'name': group['name']})
        logger.info("Removed %d messages and %d groups for %s", len(old_messages), len(old_groups), handle)

        with self.messages.batch_writer(overwrite_by_pkeys=['chatId', 'messageKey']) as batch:
            for message in messages:
                item = dict(message)
                item.setdefault('createdAt', utc_now())
                item.setdefault('messageKey', new_message_key(item['createdAt']))
                batch.put_item(Item=item)
        with self.groups.batch_writer(overwrite_by_pkeys=['name']) as batch:
            for group in groups:
                item = dict(group)
                item.setdefault('createdAt', utc_now())
                batch.put_item(Item=item)
        logger.info("Imported %d messages and %d groups for %s", len(messages), len(groups), handle)

    def _update_message(self, key, expression, names, values):
        try:
            self.messages.update_item(
                Key=_message_key(key),
                UpdateExpression=expression,
                ConditionExpression=Attr('chatId').exists(),
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values
            )
        except self._conditional_failed:
            return False
        return True

    def _delete_messages(self, items):
        with self.messages.batch_writer(overwrite_by_pkeys=['chatId', 'messageKey']) as batch:
            for item in items:
                batch.delete_item(Key=_message_key(item))


def _message_key(item):
    return {'chatId': item['chatId'], 'messageKey': item['messageKey']}


def _scan_all(table, **kwargs):
    items = []
    while True:
        response = table.scan(**kwargs)
        items.extend(response.get('Items', []))
        if 'LastEvaluatedKey' not in response:
            return items
        kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']


def _query_all(table, **kwargs):
    items = []
    while True:
        response = table.query(**kwargs)
        items.extend(response.get('Items', []))
        if 'LastEvaluatedKey' not in response:
            return items
        kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']


def members_by_group(groups):
    """Map group items to {name: members}, the shape chat_keys works with."""
    return {group['name']: group.get('members', []) for group in groups}
