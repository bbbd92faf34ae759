"""
Google OAuth shared by the Gmail scraper and Google Contacts adapters.
"""
from typing import Dict

from app.integrations.base import OAuthProvider
from app.integrations.credentials import Credential

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"


class GoogleOAuthProvider(OAuthProvider):
    authorize_url = GOOGLE_AUTHORIZE_URL
    token_url = GOOGLE_TOKEN_URL
    # offline + consent guarantees a refresh token on every grant
    extra_authorize_params: Dict[str, str] = {
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
    }

    async def _revoke(self, credential: Credential) -> None:
        client = await self.get_client()
        token = credential.refresh_token or credential.access_token
        response = await client.post(
            GOOGLE_REVOKE_URL,
            data={"token": token},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        response.raise_for_status()
