"""OAuth credentials for the Google Calendar API."""
import logging
from pathlib import Path

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from processor.errors import AuthError

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/calendar']
CLIENT_SECRET_FILE = 'client_secret.json'
TOKEN_FILE = 'token.json'


def load_credentials(config_dir: Path) -> Credentials:
    """
    Load cached credentials, refreshing or re-authorizing as needed.

    On first run the user authorizes in a browser and the token is saved to
    ``config_dir`` for later runs.

    Args:
        config_dir: Directory holding client_secret.json and token.json

    Returns:
        Valid user credentials

    Raises:
        AuthError: If no client secret is available, the token cannot be
            refreshed over the network, or authorization fails
    """
    config_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    token_path = config_dir / TOKEN_FILE
    secret_path = config_dir / CLIENT_SECRET_FILE

    creds = None
    if token_path.exists():
        try:
            creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable token cache {token_path}: {e}")

    if creds and creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
        except RefreshError as e:
            logger.warning(f"Token refresh failed, authorizing again: {e}")
            creds = None
        except TransportError as e:
            raise AuthError(f"Cannot reach Google to refresh the token: {e}") from e

    if not creds or not creds.valid:
        if not secret_path.exists():
            raise AuthError(f"Client secret file not found: {secret_path}")
        flow = InstalledAppFlow.from_client_secrets_file(str(secret_path), SCOPES)
        creds = flow.run_local_server(port=0, open_browser=False)

    logger.info(f"Saving credential file to: {token_path}")
    token_path.write_text(creds.to_json(), encoding='utf-8')
    token_path.chmod(0o600)
    return creds
