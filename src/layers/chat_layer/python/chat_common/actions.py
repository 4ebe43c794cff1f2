# src/layers/chat_layer/python/chat_common/actions.py

import logging
from dataclasses import dataclass

from chat_common import chat_keys
from chat_common.config import Settings
from chat_common.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from chat_common.passwords import hash_password, verify_password
from chat_common.store import ChatStore, members_by_group
from chat_common.utils import require, require_index, success

logger = logging.getLogger(__name__)

MIN_GROUP_MEMBERS = 2
MAX_GROUP_MEMBERS = 5


@dataclass(frozen=True)
class HandlerContext:
    """Everything a handler may touch: the store and the settings it was built from."""
    store: ChatStore
    settings: Settings

    @classmethod
    def from_settings(cls, settings):
        return cls(store=ChatStore.from_settings(settings), settings=settings)


def login(ctx, body):
    """
    Log a user in, creating the account on first sight of the handle.
    """
    handle, password = require(body, 'handle', 'password', message='Handle and password are required')
    password = str(password)

    user = ctx.store.get_user(handle)
    if user is None:
        hashed = hash_password(password, ctx.settings.bcrypt_rounds)
        if ctx.store.create_user(handle, hashed):
            logger.info("Created user %s", handle)
            return success(created=True)
        # Lost a signup race; check the password against the winner.
        user = ctx.store.get_user(handle)

    if not verify_password(password, user.get('password')):
        logger.info("Rejected login for %s", handle)
        raise AuthenticationError('Invalid password')

    ctx.store.set_presence(handle, True, 'Online')
    return success(created=False)


def search(ctx, body):
    """Look the query up as a user handle first, then as a group name."""
    query, = require(body, 'query', message='Query is required')

    user = ctx.store.get_user(query)
    if user is not None:
        return success(isGroup=False, lastSeen=user.get('lastSeen'))

    group = ctx.store.get_group(query)
    if group is not None:
        return success(isGroup=True, members=group.get('members', []))

    raise NotFoundError('User or group not found')


def send_message(ctx, body):
    chat_id, message = require(body, 'chatId', 'message', message='Chat ID and message are required')
    if not isinstance(message, dict):
        raise ValidationError('message must be an object')
    message = dict(message)
    message.setdefault('read', False)
    message.setdefault('reactions', [])
    ctx.store.put_message(chat_id, message)
    return success()


def mark_as_read(ctx, body):
    chat_id, message = require(body, 'chatId', 'message', message='Chat ID and message are required')
    if not isinstance(message, dict) or message.get('timestamp') is None:
        raise ValidationError('message.timestamp is required')
    if not ctx.store.mark_read(chat_id, message['timestamp']):
        logger.info("No message with timestamp %s in %s", message['timestamp'], chat_id)
    return success()


def _message_at(ctx, chat_id, index):
    key = ctx.store.message_key_at(chat_id, index)
    if key is None:
        raise NotFoundError('Message not found')
    return key


def edit_message(ctx, body):
    chat_id, content = require(body, 'chatId', 'content', message='Chat ID, index, and content are required')
    key = _message_at(ctx, chat_id, require_index(body))
    if not ctx.store.set_message_content(key, content):
        raise NotFoundError('Message not found')
    return success()


def delete_message(ctx, body):
    chat_id, = require(body, 'chatId', message='Chat ID and index are required')
    key = _message_at(ctx, chat_id, require_index(body))
    if not ctx.store.delete_message(key):
        raise NotFoundError('Message not found')
    return success()


def add_reaction(ctx, body):
    chat_id, reaction = require(body, 'chatId', 'reaction', message='Chat ID, index, and reaction are required')
    key = _message_at(ctx, chat_id, require_index(body))
    if not ctx.store.append_reaction(key, reaction):
        raise NotFoundError('Message not found')
    return success()


def _check_members(members):
    if not all(isinstance(member, str) and member for member in members):
        raise ValidationError('Members must be user handles')
    if len(set(members)) != len(members):
        raise ValidationError('Members must be unique')


def create_group(ctx, body):
    """
    Create a group of 2-5 existing users under an unused name.
    """
    group_name = body.get('groupName')
    members = body.get('members')
    if (not group_name or not isinstance(group_name, str) or not isinstance(members, list)
            or not MIN_GROUP_MEMBERS <= len(members) <= MAX_GROUP_MEMBERS):
        raise ValidationError(f'Group name and {MIN_GROUP_MEMBERS}-{MAX_GROUP_MEMBERS} members are required')
    _check_members(members)

    if ctx.store.get_group(group_name) is not None:
        raise ConflictError('Group name already exists')
    if ctx.store.get_user(group_name) is not None:
        raise ConflictError('Group name is taken by a user')
    if ctx.store.existing_handles(members) != set(members):
        raise ValidationError('One or more members not found')
    if not ctx.store.create_group(group_name, members):
        raise ConflictError('Group name already exists')

    logger.info("Created group %s with %d members", group_name, len(members))
    return success(members=members)


def get_chats(ctx, body):
    """
    List the chats a user has messages in, with group or contact details.
    """
    user, = require(body, 'user', message='User is required')

    groups = members_by_group(ctx.store.groups_for_member(user))
    messages = ctx.store.messages_for_user(user, groups)

    # messages are sorted by chat then creation time, so the last one seen wins
    last_messages = {}
    for item in messages:
        last_messages[item['chatId']] = item.get('message')

    chats = []
    for chat_id, last_message in last_messages.items():
        group_name = chat_keys.group_for_chat(chat_id, groups)
        if group_name is not None:
            chats.append({
                'chatId': chat_id,
                'name': group_name,
                'isGroup': True,
                'lastSeen': '',
                'members': groups[group_name],
                'lastMessage': last_message
            })
            continue
        name = chat_keys.counterpart(chat_id, user)
        contact = ctx.store.get_user(name) if name else None
        chats.append({
            'chatId': chat_id,
            'name': name or chat_id,
            'isGroup': False,
            'lastSeen': contact.get('lastSeen', 'Offline') if contact else 'Offline',
            'members': [],
            'lastMessage': last_message
        })
    return success(chats=chats)


def _user_data(ctx, user):
    groups = ctx.store.groups_for_member(user)
    messages = ctx.store.messages_for_user(user, members_by_group(groups))
    return messages, groups


def export_data(ctx, body):
    user, = require(body, 'user', message='User is required')
    messages, groups = _user_data(ctx, user)
    return success(data={'messages': messages, 'groups': groups})


def _check_import(ctx, user, old_groups, messages, groups):
    """
    Validate an import against the user's current groups, before anything is deleted.
    Imported groups must include the user and may only reuse names the user is giving up.
    """
    old_names = {group['name'] for group in old_groups}
    names = set()
    for group in groups:
        name = group.get('name') if isinstance(group, dict) else None
        if not name or not isinstance(name, str):
            raise ValidationError('Every imported group needs a name')
        if name in names:
            raise ValidationError(f'Group {name} is imported twice')
        names.add(name)
        members = group.get('members')
        if not isinstance(members, list):
            raise ValidationError(f'Group {name} needs a members list')
        _check_members(members)
        if user not in members:
            raise ValidationError(f'Group {name} does not include {user}')
        if name not in old_names:
            if ctx.store.get_group(name) is not None:
                raise ConflictError(f'Group name {name} already exists')
            if ctx.store.get_user(name) is not None:
                raise ConflictError(f'Group name {name} is taken by a user')

    imported_groups = members_by_group(groups)
    for message in messages:
        chat_id = message.get('chatId') if isinstance(message, dict) else None
        if not chat_id or not isinstance(chat_id, str):
            raise ValidationError('Every imported message needs a chatId')
        if not isinstance(message.get('message'), dict):
            raise ValidationError('Every imported message needs a message object')
        if not chat_keys.belongs_to(chat_id, user, imported_groups):
            raise ValidationError(f'Chat {chat_id} does not belong to {user}')


def import_data(ctx, body):
    """
    Replace all of a user's messages and groups with the supplied data.
    Destructive: existing data is deleted before the new data is written.
    """
    user, data = require(body, 'user', 'data', message='User and data are required')
    if not isinstance(data, dict):
        raise ValidationError('data must be an object')
    messages = data.get('messages') or []
    groups = data.get('groups') or []
    if not isinstance(messages, list) or not isinstance(groups, list):
        raise ValidationError('data.messages and data.groups must be lists')

    old_groups = ctx.store.groups_for_member(user)
    _check_import(ctx, user, old_groups, messages, groups)

    ctx.store.replace_user_data(user, old_groups, messages, groups)
    messages, groups = _user_data(ctx, user)
    return success(messages=messages, groups=groups)


def update_status(ctx, body):
    handle, = require(body, 'handle', message='Handle is required')
    online = bool(body.get('online'))
    last_seen = body.get('lastSeen') or ('Online' if online else 'Offline')
    if not ctx.store.set_presence(handle, online, last_seen):
        raise NotFoundError('User not found')
    return success()


def update_profile(ctx, body):
    """
    Change a user's handle and/or password.
    Messages and groups keep referring to the old handle.
    """
    old_handle, = require(body, 'oldHandle', message='Old handle and at least one update field are required')
    new_handle = body.get('newHandle')
    new_password = body.get('newPassword')
    if not new_handle and not new_password:
        raise ValidationError('Old handle and at least one update field are required')

    user = ctx.store.get_user(old_handle)
    if user is None:
        raise NotFoundError('User not found')

    if new_password:
        user = dict(user, password=hash_password(str(new_password), ctx.settings.bcrypt_rounds))

    if new_handle and new_handle != old_handle:
        if not ctx.store.rename_user(user, new_handle):
            raise ConflictError('Handle already taken')
        logger.info("Renamed user %s to %s", old_handle, new_handle)
    elif new_password:
        ctx.store.set_password(old_handle, user['password'])
    return success()


def clear_chat(ctx, body):
    chat_id, = require(body, 'chatId', message='Chat ID is required')
    removed = ctx.store.clear_chat(chat_id)
    logger.info("Cleared %d messages from %s", removed, chat_id)
    return success()


SUPPORTED_ACTIONS = (
    'login',
    'search',
    'sendMessage',
    'markAsRead',
    'editMessage',
    'deleteMessage',
    'addReaction',
    'createGroup',
    'getChats',
    'exportData',
    'importData',
    'updateStatus',
    'updateProfile',
    'clearChat',
)

ROUTES = {
    'login': login,
    'search': search,
    'sendMessage': send_message,
    'markAsRead': mark_as_read,
    'editMessage': edit_message,
    'deleteMessage': delete_message,
    'addReaction': add_reaction,
    'createGroup': create_group,
    'getChats': get_chats,
    'exportData': export_data,
    'importData': import_data,
    'updateStatus': update_status,
    'updateProfile': update_profile,
    'clearChat': clear_chat,
}


def check_routes(routes=ROUTES, actions=SUPPORTED_ACTIONS):
    """
    Fail fast if the routing table and the list of supported actions disagree.
    """
    missing = set(actions) - set(routes)
    unexpected = set(routes) - set(actions)
    if missing or unexpected:
        raise RuntimeError(f"Routing table mismatch: missing={sorted(missing)} unexpected={sorted(unexpected)}")
    for name, handler in routes.items():
        if not callable(handler):
            raise RuntimeError(f"Handler for {name} is not callable")


check_routes()
