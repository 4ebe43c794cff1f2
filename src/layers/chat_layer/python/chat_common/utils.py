# src/layers/chat_layer/python/chat_common/utils.py

import json
from datetime import datetime, timezone
from decimal import Decimal

from chat_common.errors import ValidationError

CORS_HEADERS = {
    'Content-Type': 'application/json',
    'Access-Control-Allow-Origin': '*'
}

PREFLIGHT_HEADERS = {
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type'
}


def respond(status_code, body, headers=None):
    """
    Helper function to format the HTTP response.
    An empty string body is passed through as-is (CORS preflight).
    """
    all_headers = dict(CORS_HEADERS)
    if headers:
        all_headers.update(headers)
    return {
        'statusCode': status_code,
        'body': body if body == '' else json.dumps(body, cls=DecimalEncoder),
        'headers': all_headers
    }


def success(**fields):
    """Build a 200 envelope: {'success': True, **fields}."""
    return respond(200, dict(success=True, **fields))


def failure(status_code, message):
    return respond(status_code, {'success': False, 'message': message})


def parse_body(event):
    """
    Decode the JSON body of an API Gateway proxy event.
    Floats become Decimal so they can be written to DynamoDB untouched.
    """
    raw = event.get('body') or '{}'
    try:
        body = json.loads(raw, parse_float=Decimal)
    except (TypeError, ValueError):
        raise ValidationError('Invalid JSON in request body')
    if not isinstance(body, dict):
        raise ValidationError('Request body must be a JSON object')
    return body


def require(body, *fields, message=None):
    """
    Return the values of the given fields, raising ValidationError if any is missing or empty.
    """
    missing = [field for field in fields if body.get(field) in (None, '')]
    if missing:
        raise ValidationError(message or f"Missing required parameters: {', '.join(missing)}")
    return [body[field] for field in fields]


def require_index(body):
    """Positional message index: a non-negative integer (bools excluded)."""
    index = body.get('index')
    if isinstance(index, Decimal) and index == index.to_integral_value():
        index = int(index)
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        raise ValidationError('index must be a non-negative integer')
    return index


def utc_now():
    return datetime.now(timezone.utc).isoformat()


class DecimalEncoder(json.JSONEncoder):
    """
    Custom JSON Encoder to handle Decimal types from DynamoDB.
    Integral values are rendered as int so timestamps and indexes survive a round trip.
    """
    def default(self, obj):
        if isinstance(obj, Decimal):
            if obj == obj.to_integral_value():
                return int(obj)
            return float(obj)
        return super(DecimalEncoder, self).default(obj)
