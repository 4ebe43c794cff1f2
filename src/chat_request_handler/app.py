# src/chat_request_handler/app.py

import logging

from chat_common import utils
from chat_common.actions import ROUTES, HandlerContext
from chat_common.config import Settings
from chat_common.errors import RequestError, ValidationError

SETTINGS = Settings.from_env()

# Configure logging
logging.basicConfig(
    level=SETTINGS.log_level,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
# The Lambda runtime installs its own root handler, which makes basicConfig a no-op there
logging.getLogger().setLevel(SETTINGS.log_level)
logger = logging.getLogger(__name__)

# Built once per process and reused by warm invocations
BACKEND = HandlerContext.from_settings(SETTINGS)


def lambda_handler(event, context):
    """
    Main Lambda handler function.
    """
    return dispatch(event, BACKEND)


def dispatch(event, backend):
    """
    Routes requests based on HTTP method, then on the 'action' field of POST bodies.
    """
    http_method = event.get('httpMethod')
    query = event.get('queryStringParameters') or {}

    if http_method == 'OPTIONS':
        return utils.respond(200, '', headers=utils.PREFLIGHT_HEADERS)

    if http_method == 'GET' and query.get('getAblyKey'):
        return get_ably_key(backend)

    if http_method != 'POST':
        return utils.failure(405, 'Method not allowed')

    action = None
    try:
        body = utils.parse_body(event)
        action = body.get('action')
        handler = ROUTES.get(action) if isinstance(action, str) else None
        if handler is None:
            raise ValidationError('Invalid action')
        logger.info("Handling action %s", action)
        return handler(backend, body)
    except RequestError as e:
        logger.info("Rejected %s: %s (%d)", action, e.message, e.status_code)
        return utils.failure(e.status_code, e.message)
    except Exception:
        logger.exception("Error handling action %s", action)
        return utils.failure(500, 'Internal server error')


def get_ably_key(backend):
    """
    Hand the real-time messaging key to the client.
    """
    if not backend.settings.ably_api_key:
        logger.error("ABLY_API_KEY is not configured")
        return utils.respond(500, {'error': 'Ably API key not configured'})
    return utils.respond(200, {'ablyKey': backend.settings.ably_api_key})
