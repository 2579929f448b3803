import base64
import json
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch
from urllib.error import URLError

from otpcore.schemas.errors import EmailSendError, SmsSendError
from otpcore.services.email import GmailEmailGateway, NullEmailGateway, build_raw_message
from otpcore.services.sms import NullSmsGateway, TwilioSmsGateway


def _response(payload=None):
    response = MagicMock()
    response.__enter__.return_value = response
    response.read.return_value = json.dumps(payload or {}).encode("utf-8")
    return response


class TwilioSmsGatewayTests(unittest.TestCase):
    def setUp(self):
        self.gateway = TwilioSmsGateway(
            account_sid="AC123",
            auth_token="secret",
            from_phone="+15550000000",
            default_country_code="+1",
        )

    def test_unconfigured_gateway_raises(self):
        gateway = TwilioSmsGateway(account_sid="", auth_token="", from_phone="")
        self.assertFalse(gateway.configured)
        with self.assertRaises(SmsSendError):
            gateway.send_sms("+15551112222", "hello")

    def test_posts_message_with_caller_timeout(self):
        with patch("otpcore.services.sms.urlopen", return_value=_response()) as urlopen:
            self.gateway.send_sms("555 111 2222", "Your pin is 1234", timeout=2.5)

        request = urlopen.call_args.args[0]
        self.assertEqual(urlopen.call_args.kwargs["timeout"], 2.5)
        self.assertIn("/Accounts/AC123/Messages.json", request.full_url)
        body = request.data.decode("utf-8")
        self.assertIn("To=%2B15551112222", body)
        self.assertIn("Body=Your+pin+is+1234", body)

    def test_explicit_zero_timeout_is_not_replaced(self):
        with patch("otpcore.services.sms.urlopen", return_value=_response()) as urlopen:
            self.gateway.send_sms("+15551112222", "hello", timeout=0)
        self.assertEqual(urlopen.call_args.kwargs["timeout"], 0)

    def test_network_error_becomes_send_error(self):
        with patch("otpcore.services.sms.urlopen", side_effect=URLError("down")):
            with self.assertRaises(SmsSendError):
                self.gateway.send_sms("+15551112222", "hello")

    def test_invalid_number_is_rejected(self):
        with self.assertRaises(SmsSendError):
            self.gateway.send_sms("12", "hello")

    def test_null_gateway_accepts_everything(self):
        NullSmsGateway().send_sms("+15551112222", "hello", timeout=1)


class GmailEmailGatewayTests(unittest.TestCase):
    def test_raw_message_content_type_follows_html_flag(self):
        plain = base64.urlsafe_b64decode(
            build_raw_message("a@example.com", "b@example.com", "Hi", "body")
        ).decode("utf-8")
        html = base64.urlsafe_b64decode(
            build_raw_message("a@example.com", "b@example.com", "Hi", "<p>x</p>", is_html=True)
        ).decode("utf-8")

        self.assertIn("Content-Type: text/plain; charset=utf-8", plain)
        self.assertIn("Content-Type: text/html; charset=utf-8", html)
        self.assertTrue(html.endswith("<p>x</p>"))

    def test_missing_sender_raises(self):
        with self.assertRaises(EmailSendError):
            GmailEmailGateway(sender="").send_email("b@example.com", "Hi", "body")

    def test_sends_with_cached_token(self):
        gateway = GmailEmailGateway(sender="a@example.com", token_file="/tmp/token.json")
        token_data = {"token": "cached", "expiry": "2999-01-01T00:00:00+00:00"}
        with (
            patch("otpcore.services.email._load_json", return_value=token_data),
            patch("otpcore.services.email.urlopen", return_value=_response()) as urlopen,
        ):
            gateway.send_email("b@example.com", "Hi", "<p>x</p>", is_html=True, timeout=3)

        request = urlopen.call_args.args[0]
        self.assertEqual(request.get_header("Authorization"), "Bearer cached")
        self.assertEqual(urlopen.call_args.kwargs["timeout"], 3)
        raw = json.loads(request.data.decode("utf-8"))["raw"]
        self.assertIn("text/html", base64.urlsafe_b64decode(raw).decode("utf-8"))

    def test_null_gateway_accepts_everything(self):
        NullEmailGateway().send_email("b@example.com", "Hi", "body", is_html=True)

    def _write_token_files(self, directory, token_data, credentials=None):
        token_path = Path(directory) / "token.json"
        token_path.write_text(json.dumps(token_data), encoding="utf-8")
        credentials_path = Path(directory) / "credentials.json"
        credentials_path.write_text(json.dumps(credentials or {}), encoding="utf-8")
        gateway = GmailEmailGateway(
            sender="a@example.com",
            token_file=str(token_path),
            credentials_file=str(credentials_path),
        )
        return gateway, token_path

    def test_expired_token_is_refreshed_and_saved(self):
        with tempfile.TemporaryDirectory() as directory:
            gateway, token_path = self._write_token_files(
                directory,
                {
                    "token": "stale",
                    "expiry": "2020-01-01T00:00:00Z",
                    "refresh_token": "refresh-1",
                },
                {"installed": {"client_id": "cid", "client_secret": "csecret"}},
            )
            responses = [
                _response({"access_token": "fresh", "expires_in": 600}),
                _response(),
            ]
            with patch("otpcore.services.email.urlopen", side_effect=responses) as urlopen:
                gateway.send_email("b@example.com", "Hi", "body", timeout=4)

            refresh_request, send_request = [c.args[0] for c in urlopen.call_args_list]
            form = refresh_request.data.decode("utf-8")
            self.assertEqual(refresh_request.full_url, "https://oauth2.googleapis.com/token")
            self.assertIn("grant_type=refresh_token", form)
            self.assertIn("refresh_token=refresh-1", form)
            self.assertIn("client_id=cid", form)
            self.assertEqual(send_request.get_header("Authorization"), "Bearer fresh")
            self.assertEqual([c.kwargs["timeout"] for c in urlopen.call_args_list], [4, 4])

            saved = json.loads(token_path.read_text(encoding="utf-8"))
            self.assertEqual(saved["token"], "fresh")
            self.assertEqual(saved["refresh_token"], "refresh-1")
            self.assertGreater(
                datetime.fromisoformat(saved["expiry"]), datetime.now(timezone.utc)
            )

    def test_client_pair_in_token_file_skips_credentials_file(self):
        with tempfile.TemporaryDirectory() as directory:
            gateway, _ = self._write_token_files(
                directory,
                {"refresh_token": "r", "client_id": "tid", "client_secret": "tsecret"},
            )
            with patch(
                "otpcore.services.email.urlopen",
                side_effect=[_response({"access_token": "fresh"}), _response()],
            ) as urlopen:
                gateway.send_email("b@example.com", "Hi", "body")

            self.assertIn("client_id=tid", urlopen.call_args_list[0].args[0].data.decode("utf-8"))

    def test_refresh_without_refresh_token_raises(self):
        with tempfile.TemporaryDirectory() as directory:
            gateway, _ = self._write_token_files(directory, {"token": "stale"})
            with patch("otpcore.services.email.urlopen") as urlopen:
                with self.assertRaises(EmailSendError):
                    gateway.send_email("b@example.com", "Hi", "body")
            urlopen.assert_not_called()

    def test_refresh_without_access_token_raises(self):
        with tempfile.TemporaryDirectory() as directory:
            gateway, token_path = self._write_token_files(
                directory,
                {"refresh_token": "r"},
                {"web": {"client_id": "cid", "client_secret": "csecret"}},
            )
            with patch("otpcore.services.email.urlopen", return_value=_response({})):
                with self.assertRaises(EmailSendError):
                    gateway.send_email("b@example.com", "Hi", "body")
            self.assertNotIn("token", json.loads(token_path.read_text(encoding="utf-8")))
