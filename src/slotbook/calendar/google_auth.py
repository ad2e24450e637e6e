"""Google OAuth credentials for the free/busy feed."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from pathlib import Path

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

logger = logging.getLogger(__name__)

# Free/busy only: the service never reads event details or writes events
SCOPES = ["https://www.googleapis.com/auth/calendar.freebusy"]


def _load_json(env_var: str, file_path: str) -> dict | None:
    """JSON from an env var (base64 or plain), falling back to a file."""
    env_value = os.environ.get(env_var)
    if env_value:
        for decode in (lambda v: base64.b64decode(v, validate=True), lambda v: v):
            try:
                return json.loads(decode(env_value))
            except (binascii.Error, ValueError):
                continue
        logger.warning("Failed to parse %s env var", env_var)
    path = Path(file_path)
    if path.exists():
        return json.loads(path.read_text())
    return None


def get_google_credentials(
    credentials_path: str = "credentials.json",
    token_path: str = "token.json",
    interactive: bool = False,
) -> Credentials:
    """Load, refresh or (interactively) obtain Google OAuth credentials.

    Token and client secrets may come from GOOGLE_TOKEN_JSON /
    GOOGLE_CREDENTIALS_JSON for containerized deployments. A running server
    never opens a browser: without a usable token it raises, and
    `slotbook check --authorize` has to be run once.
    """
    creds = None
    token_data = _load_json("GOOGLE_TOKEN_JSON", token_path)
    if token_data:
        creds = Credentials.from_authorized_user_info(token_data, token_data.get("scopes", SCOPES))

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        logger.info("Refreshing expired Google token")
        creds.refresh(Request())
        _save_token(creds, token_path)
        return creds

    if not interactive:
        raise FileNotFoundError(
            f"No usable Google token in GOOGLE_TOKEN_JSON or {token_path}. "
            "Run 'slotbook check --authorize' once."
        )

    client_config = _load_json("GOOGLE_CREDENTIALS_JSON", credentials_path)
    if not client_config:
        raise FileNotFoundError(
            f"Google client secrets not found in GOOGLE_CREDENTIALS_JSON env var or {credentials_path}"
        )
    flow = InstalledAppFlow.from_client_config(client_config, SCOPES)
    creds = flow.run_local_server(port=0)
    _save_token(creds, token_path)
    return creds


def _save_token(creds: Credentials, token_path: str) -> None:
    try:
        Path(token_path).write_text(creds.to_json())
        logger.info("Token saved to %s", token_path)
    except OSError:
        logger.warning("Could not save token to %s", token_path)
