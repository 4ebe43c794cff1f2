# src/layers/chat_layer/python/chat_common/config.py

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration, read from the Lambda environment once per process.
    """
    users_table: str = 'users'
    groups_table: str = 'groups'
    messages_table: str = 'messages'
    dynamodb_endpoint_url: Optional[str] = None
    ably_api_key: Optional[str] = None
    bcrypt_rounds: int = 10
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        return cls(
            users_table=env.get('USERS_TABLE', 'users'),
            groups_table=env.get('GROUPS_TABLE', 'groups'),
            messages_table=env.get('MESSAGES_TABLE', 'messages'),
            dynamodb_endpoint_url=env.get('DYNAMODB_ENDPOINT_URL') or None,
            ably_api_key=env.get('ABLY_API_KEY') or None,
            bcrypt_rounds=int(env.get('BCRYPT_ROUNDS', '10')),
            log_level=env.get('LOG_LEVEL', 'INFO').upper(),
        )
