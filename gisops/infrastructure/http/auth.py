"""Token suppliers consumed by the transport.

Credential acquisition itself (OAuth flows, token refresh) is left to the
caller; any async callable returning a token can be passed instead.
"""

from typing import Optional

from gisops.domain.interfaces.transport import TokenSupplier
from gisops.domain.models.common import AuthToken


def static_token(api_key: Optional[str]) -> Optional[TokenSupplier]:
    """Wraps a fixed API key. Returns None when no key is configured."""
    if not api_key:
        return None
    token = AuthToken(api_key)

    async def supply() -> Optional[AuthToken]:
        return token

    return supply

