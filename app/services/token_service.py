"""Platform credential lookup for the comparison services."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from platform_clients import PsnAPIError

logger = logging.getLogger('gametrack.psn')


class TokenService:
    """Resolves the credentials a user has linked for live platform calls.

    All methods accept a *db* SQLAlchemy session as the first argument so
    that callers control the session lifecycle.
    """

    # Refresh PSN access tokens this long before they actually expire.
    REFRESH_BUFFER = timedelta(minutes=5)

    def __init__(self, db_module, psn_client) -> None:
        """
        Args:
            db_module:  The imported ``database`` module (or any object that
                exposes ``get_psn_token``, ``save_psn_token`` and
                ``get_xbox_api_key``).
            psn_client: :class:`platform_clients.PSNClient` used to refresh
                expired access tokens.
        """
        self._db = db_module
        self._psn = psn_client

    def get_valid_access_token(self, db, user_id: int) -> Optional[str]:
        """Return a usable PSN access token for *user_id*.

        An access token that expires within ``REFRESH_BUFFER`` is refreshed
        with the stored refresh token and the new pair is saved.

        Returns:
            The access token, or ``None`` when PSN is not linked or the
            refresh failed.
        """
        tokens = self._db.get_psn_token(db, user_id)
        if not tokens:
            return None

        if tokens.expires_at - datetime.utcnow() >= self.REFRESH_BUFFER:
            return tokens.access_token

        try:
            fresh = self._psn.refresh_access_token(tokens.refresh_token)
        except PsnAPIError as e:
            logger.warning("Failed to refresh PSN token for user %s: %s", user_id, e)
            return None
        self._db.save_psn_token(db, user_id, fresh['access_token'],
                                fresh['refresh_token'], fresh['expires_in'])
        return fresh['access_token']

    def get_valid_api_key(self, db, user_id: int) -> Optional[str]:
        """Return the OpenXBL API key *user_id* linked, or ``None``."""
        return self._db.get_xbox_api_key(db, user_id)
