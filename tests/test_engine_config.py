from datetime import timedelta

from tests.base import DictPersonDirectory, EngineTestCase, make_config, make_settings
from otpcore.schemas.errors import (
    InvalidArgumentError,
    InvalidConfigurationError,
    OtpNotFoundError,
)
from otpcore.schemas.otp import NotificationTemplate, OtpChannel, OtpSendStatus, Person


class SendPinWithConfigTests(EngineTestCase):
    def test_config_drives_record_and_message(self):
        response = self.engine.send_pin_with_config(
            "accounts", "phone-change", "+1000", source_entity_id="e-1"
        )

        record = self.record(response.operation_id)
        self.assertEqual(response.module_name, "accounts")
        self.assertEqual(response.action_type, "change-phone")
        self.assertEqual(record.composite_key(), ("accounts", "change-phone", "e-1"))
        self.assertEqual(record.recipient_type, "person")
        self.assertEqual(record.send_status, OtpSendStatus.SENT)
        self.assertEqual(record.expires_on, self.clock.now + timedelta(seconds=120))
        self.assertEqual(self.sms.messages[0]["body"], f"Use {record.pin} to confirm the change")

    def test_action_type_defaults_to_config_name(self):
        self.configs.add(make_config(name="login", action_type=None))
        response = self.engine.send_pin_with_config("accounts", "login", "+1000")
        self.assertEqual(response.action_type, "login")

    def test_email_config_renders_subject(self):
        self.configs.add(make_config(name="email-change", send_type=OtpChannel.EMAIL))
        response = self.engine.send_pin_with_config("accounts", "email-change", "a@example.com")
        pin = self.record(response.operation_id).pin

        message = self.email.messages[0]
        self.assertEqual(message["subject"], f"Code {pin}")
        self.assertFalse(message["is_html"])

    def test_email_link_config_uses_token_and_default_subject(self):
        self.configs.add(
            make_config(
                name="invite",
                send_type=OtpChannel.EMAIL_LINK,
                notification_template=NotificationTemplate(body="<a href='/join?t={{token}}'>Join</a>"),
            )
        )
        response = self.engine.send_pin_with_config("accounts", "invite", "a@example.com")
        token = self.record(response.operation_id).pin

        message = self.email.messages[0]
        self.assertEqual(message["subject"], "One Time Pin")
        self.assertEqual(message["body"], f"<a href='/join?t={token}'>Join</a>")
        self.assertTrue(message["is_html"])

    def test_config_without_lifetime_uses_settings_default(self):
        self.settings_store.value = make_settings(default_lifetime=45)
        self.configs.add(make_config(name="short", lifetime=None))
        response = self.engine.send_pin_with_config("accounts", "short", "+1000")
        record = self.record(response.operation_id)
        self.assertEqual(record.expires_on, self.clock.now + timedelta(seconds=45))

    def test_bypass_skips_config_dispatch(self):
        self.settings_store.value = make_settings(ignore_otp_validation=True)
        response = self.engine.send_pin_with_config("accounts", "phone-change", "+1000")
        self.assertEqual(self.record(response.operation_id).send_status, OtpSendStatus.IGNORED)
        self.assertEqual(self.sms.messages, [])

    def test_unknown_config_is_invalid(self):
        with self.assertRaises(InvalidConfigurationError):
            self.engine.send_pin_with_config("accounts", "missing", "+1000")

    def test_missing_or_disabled_template_fails_before_anything_is_stored(self):
        self.configs.add(make_config(name="no-template", notification_template=None))
        self.configs.add(
            make_config(
                name="disabled",
                notification_template=NotificationTemplate(body="{{password}}", is_enabled=False),
            )
        )
        for name in ("no-template", "disabled"):
            with self.assertRaises(InvalidConfigurationError):
                self.engine.send_pin_with_config("accounts", name, "+1000", source_entity_id="e-9")

        self.assertEqual(self.sms.messages, [])
        self.assertIsNone(self.store.get_by_composite_key("accounts", "change-phone", "e-9"))

    def test_config_without_channel_is_invalid_argument(self):
        self.configs.add(make_config(name="no-channel", send_type=None))
        with self.assertRaises(InvalidArgumentError):
            self.engine.send_pin_with_config("accounts", "no-channel", "+1000")

    def test_blank_destination_is_rejected(self):
        with self.assertRaises(InvalidArgumentError):
            self.engine.send_pin_with_config("accounts", "phone-change", " ")

    def test_latest_send_wins_for_composite_key(self):
        first = self.engine.send_pin_with_config("accounts", "phone-change", "+1000", source_entity_id="e-1")
        self.clock.advance(5)
        second = self.engine.send_pin_with_config("accounts", "phone-change", "+1000", source_entity_id="e-1")

        found = self.engine.get_with_composite_key("accounts", "change-phone", "e-1")

        self.assertNotEqual(first.operation_id, second.operation_id)
        self.assertEqual(found.operation_id, second.operation_id)

    def test_engine_without_resolver_rejects_config_calls(self):
        self.configs = None
        self.engine = self.build_engine()
        with self.assertRaises(InvalidConfigurationError):
            self.engine.send_pin_with_config("accounts", "phone-change", "+1000")


class SendPinToPersonTests(EngineTestCase):
    def setUp(self):
        super().setUp()
        self.persons = DictPersonDirectory(
            Person(id="p-1", mobile_number1="+2001", email_address1="one@example.com"),
            Person(id="p-2", mobile_number1="", mobile_number2="+2002", email_address2="two@example.com"),
            Person(id="p-3"),
        )
        self.configs.add(make_config(name="email-change", send_type=OtpChannel.EMAIL))
        self.engine = self.build_engine()

    def test_primary_mobile_for_sms(self):
        response = self.engine.send_pin_to_person_with_config("accounts", "phone-change", "p-1")
        record = self.record(response.operation_id)
        self.assertEqual(response.sent_to, "+2001")
        self.assertEqual(record.recipient_id, "p-1")
        self.assertEqual(self.sms.messages[0]["to"], "+2001")

    def test_secondary_mobile_when_primary_blank(self):
        response = self.engine.send_pin_to_person_with_config("accounts", "phone-change", "p-2")
        self.assertEqual(response.sent_to, "+2002")

    def test_email_addresses_for_email_channels(self):
        first = self.engine.send_pin_to_person_with_config("accounts", "email-change", "p-1")
        second = self.engine.send_pin_to_person_with_config("accounts", "email-change", "p-2")
        self.assertEqual(first.sent_to, "one@example.com")
        self.assertEqual(second.sent_to, "two@example.com")

    def test_person_without_address_is_invalid_argument(self):
        with self.assertRaises(InvalidArgumentError):
            self.engine.send_pin_to_person_with_config("accounts", "phone-change", "p-3")
        with self.assertRaises(InvalidArgumentError):
            self.engine.send_pin_to_person_with_config("accounts", "email-change", "p-3")

    def test_unknown_person_raises(self):
        with self.assertRaises(OtpNotFoundError):
            self.engine.send_pin_to_person_with_config("accounts", "phone-change", "p-404")

    def test_config_without_channel_is_invalid_argument(self):
        self.configs.add(make_config(name="no-channel", send_type=None))
        with self.assertRaises(InvalidArgumentError):
            self.engine.send_pin_to_person_with_config("accounts", "no-channel", "p-1")


class RecordReadTests(EngineTestCase):
    def test_get_by_operation_id(self):
        response = self.engine.send_pin("+1000", OtpChannel.SMS)
        self.assertEqual(self.engine.get(response.operation_id).send_to, "+1000")
        self.assertIsNone(self.engine.get("missing"))

    def test_composite_read_requires_module_and_action(self):
        with self.assertRaises(InvalidArgumentError):
            self.engine.get_with_composite_key("", "login")
        with self.assertRaises(InvalidArgumentError):
            self.engine.get_with_composite_key("accounts", "")
