"""WebSocket authentication middleware for signed professional tokens."""

import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware

from common.utils.tokens import read_professional_token

logger = logging.getLogger(__name__)


@database_sync_to_async
def _get_professional(professional_id):
    from professionals.models import Professional
    return Professional.objects.filter(pk=professional_id).first()


class ProfessionalTokenAuthMiddleware(BaseMiddleware):
    """
    Authenticate WebSocket connections with the signed token
    (?token=...) handed to professionals alongside their offer links.

    Sets scope["professional"] to the Professional, or None.
    """

    async def __call__(self, scope, receive, send):
        query_string = scope.get("query_string", b"").decode()
        params = parse_qs(query_string)

        scope["professional"] = None
        token_list = params.get("token")
        if token_list:
            professional_id = read_professional_token(token_list[0])
            if professional_id is None:
                logger.debug("Rejected WebSocket token")
            else:
                scope["professional"] = await _get_professional(professional_id)

        return await super().__call__(scope, receive, send)
