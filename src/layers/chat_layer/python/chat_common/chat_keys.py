# src/layers/chat_layer/python/chat_common/chat_keys.py
"""
Chat id convention.

A direct chat between two handles is "<a>-<b>". A group chat is keyed by the
group name, optionally prefixed with the handle of a member ("<member>-<group>").
Every lookup that needs to know which chats a user takes part in goes
through this module.

Functions taking ``groups`` expect a mapping of the user's group names to
their member lists.
"""

SEPARATOR = '-'


def counterpart(chat_id, user):
    """
    Strip the user's handle and its joining dash from a chat id.
    Returns None when the handle is neither the prefix nor the suffix.
    """
    prefix = f"{user}{SEPARATOR}"
    suffix = f"{SEPARATOR}{user}"
    if chat_id.startswith(prefix):
        return chat_id[len(prefix):]
    if chat_id.endswith(suffix):
        return chat_id[:-len(suffix)]
    return None


def group_for_chat(chat_id, groups):
    """
    Name of the group this chat belongs to, if any.
    A "<member>-<group>" id only counts when the prefix is one of the group's members.
    """
    if chat_id in groups:
        return chat_id
    for name, members in groups.items():
        suffix = f"{SEPARATOR}{name}"
        if chat_id.endswith(suffix) and chat_id[:-len(suffix)] in members:
            return name
    return None


def belongs_to(chat_id, user, groups=None):
    """True if the user is a party to the chat, directly or through a group."""
    if counterpart(chat_id, user) is not None:
        return True
    return group_for_chat(chat_id, groups or {}) is not None
