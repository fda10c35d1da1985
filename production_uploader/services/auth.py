"""Bearer token sign-in state for the storage provider."""
import logging
import time
from typing import Awaitable, Callable, Optional, Tuple, Union

from ..errors import AuthRequired, describe_exception

logger = logging.getLogger(__name__)

# A provider returns a token, or (token, lifetime in seconds)
TokenProvider = Callable[[], Awaitable[Union[str, Tuple[str, float]]]]


class TokenAuthenticator:
    """
    Implements IAuthenticator over an OAuth access token.

    How the token is obtained is up to the provider callable; this class
    only tracks whether a usable token is present.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        provider: Optional[TokenProvider] = None,
        expires_in: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._provider = provider
        self._token: Optional[str] = None
        self._expires_at: Optional[float] = None
        if token:
            self._store(token, expires_in)

    @property
    def access_token(self) -> Optional[str]:
        return self._token if self._valid() else None

    async def is_signed_in(self) -> bool:
        return self._valid()

    async def sign_in(self) -> None:
        if self._provider is None:
            raise AuthRequired("No sign-in method configured; provide an access token")
        try:
            result = await self._provider()
        except AuthRequired:
            raise
        except Exception as exc:
            raise AuthRequired(f"Sign-in failed: {describe_exception(exc)}") from exc

        if isinstance(result, tuple):
            token, expires_in = result
        else:
            token, expires_in = result, None
        if not token:
            raise AuthRequired("Sign-in returned no access token")
        self._store(token, expires_in)
        logger.info("Signed in to storage provider")

    def sign_out(self) -> None:
        self._token = None
        self._expires_at = None

    def _store(self, token: str, expires_in: Optional[float]) -> None:
        self._token = token
        self._expires_at = self._clock() + expires_in if expires_in else None

    def _valid(self) -> bool:
        if not self._token:
            return False
        return self._expires_at is None or self._clock() < self._expires_at
