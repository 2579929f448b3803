from __future__ import annotations

import base64
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from otpcore.config import settings
from otpcore.schemas.errors import EmailSendError

LOGGER = logging.getLogger(__name__)

GMAIL_SEND_ENDPOINT = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
TOKEN_EXPIRY_MARGIN = timedelta(minutes=1)


class GmailEmailGateway:
    def __init__(
        self,
        sender: str = settings.otp_email_sender,
        token_file: str = settings.gmail_token_file,
        credentials_file: str = settings.gmail_credentials_file,
    ) -> None:
        self._sender = sender
        self._token_file = token_file
        self._credentials_file = credentials_file

    @property
    def configured(self) -> bool:
        return bool(self._sender)

    def send_email(
        self,
        to_email: str,
        subject: str,
        body: str,
        is_html: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        if not self._sender:
            raise EmailSendError("OTP email sender is not configured")

        if timeout is None:
            timeout = settings.dispatch_timeout_seconds
        raw_message = build_raw_message(self._sender, to_email, subject, body, is_html)
        token = self._get_access_token(timeout)

        payload = json.dumps({"raw": raw_message}).encode("utf-8")
        request = Request(
            GMAIL_SEND_ENDPOINT,
            data=payload,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            method="POST",
        )

        try:
            with urlopen(request, timeout=timeout) as response:
                response.read()
        except HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Gmail API error: %s", error_body)
            raise EmailSendError("Failed to send OTP email") from exc
        except URLError as exc:
            raise EmailSendError("Failed to reach Gmail API") from exc
        except TimeoutError as exc:
            raise EmailSendError("Timed out sending OTP email") from exc

    def _token_file_path(self) -> Path:
        if self._token_file:
            return Path(self._token_file)
        root = Path(__file__).resolve().parents[2]
        return root / "credentials" / "token.json"

    def _credentials_file_path(self) -> Path:
        if self._credentials_file:
            return Path(self._credentials_file)
        root = Path(__file__).resolve().parents[2]
        return root / "credentials" / "credentials.json"

    def _get_access_token(self, timeout: float) -> str:
        token_path = self._token_file_path()
        token_data = _load_json(token_path)

        token = token_data.get("token")
        expiry = _parse_expiry(token_data.get("expiry"))
        if token and expiry and expiry > datetime.now(timezone.utc) + TOKEN_EXPIRY_MARGIN:
            return token

        access_token, expires_in = self._refresh_access_token(token_data, timeout)
        token_data["token"] = access_token
        token_data["expiry"] = (
            datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        ).isoformat()
        _write_json(token_path, token_data)
        LOGGER.info("Gmail access token refreshed, expires_in=%s", expires_in)
        return access_token

    def _refresh_access_token(
        self, token_data: dict[str, Any], timeout: float
    ) -> tuple[str, int]:
        refresh_token = token_data.get("refresh_token")
        if not refresh_token:
            raise EmailSendError("Gmail refresh token is missing")

        client_id, client_secret = self._client_credentials(token_data)
        form = urlencode(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": client_id,
                "client_secret": client_secret,
            }
        ).encode("utf-8")
        request = Request(
            token_data.get("token_uri") or GOOGLE_TOKEN_ENDPOINT,
            data=form,
            method="POST",
        )
        try:
            with urlopen(request, timeout=timeout) as response:
                granted = json.loads(response.read().decode("utf-8"))
        except HTTPError as exc:
            LOGGER.error(
                "Gmail token refresh rejected: %s",
                exc.read().decode("utf-8", errors="replace"),
            )
            raise EmailSendError("Failed to refresh Gmail token") from exc
        except (URLError, TimeoutError) as exc:
            raise EmailSendError("Failed to reach Gmail token endpoint") from exc

        access_token = granted.get("access_token")
        if not access_token:
            raise EmailSendError("Gmail token refresh did not return an access token")
        return access_token, int(granted.get("expires_in", 3600))

    def _client_credentials(self, token_data: dict[str, Any]) -> tuple[str, str]:
        # token.json may carry the client pair, otherwise it lives in
        # credentials.json under "installed" or "web".
        sources = [token_data]
        if not (token_data.get("client_id") and token_data.get("client_secret")):
            credentials = _load_json(self._credentials_file_path())
            sources = [
                credentials.get("installed", {}),
                credentials.get("web", {}),
                credentials,
            ]
        for source in sources:
            if source.get("client_id") and source.get("client_secret"):
                return source["client_id"], source["client_secret"]
        raise EmailSendError("Gmail client credentials are missing")


class NullEmailGateway:
    """Accepts every message without sending it; for local runs."""

    def send_email(
        self,
        to_email: str,
        subject: str,
        body: str,
        is_html: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        LOGGER.warning("Email gateway is not configured, dropping message to=%s", to_email)


def build_email_gateway():
    gateway = GmailEmailGateway()
    if gateway.configured:
        return gateway
    return NullEmailGateway()


def build_raw_message(
    sender: str, recipient: str, subject: str, body: str, is_html: bool = False
) -> str:
    content_type = "text/html" if is_html else "text/plain"
    lines = [
        f"From: {sender}",
        f"To: {recipient}",
        f"Subject: {subject}",
        "MIME-Version: 1.0",
        f"Content-Type: {content_type}; charset=utf-8",
        "",
        body,
    ]
    message = "\r\n".join(lines)
    # Gmail API expects base64url-encoded RFC 2822 content.
    return base64.urlsafe_b64encode(message.encode("utf-8")).decode("ascii")


def _parse_expiry(raw_value: Optional[str]) -> Optional[datetime]:
    if not raw_value:
        return None
    try:
        expiry = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if expiry.tzinfo is None:
        return expiry.replace(tzinfo=timezone.utc)
    return expiry


def _load_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise EmailSendError(f"Missing Gmail file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _write_json(path: Path, data: dict[str, Any]) -> None:
    staged = path.with_name(path.name + ".tmp")
    staged.write_text(json.dumps(data, indent=2), encoding="utf-8")
    staged.replace(path)
