#!/usr/bin/env python
"""
Test module for SMS import summaries.
Run this module from the root directory:
python -m tests.test_twilio_notifier
"""

import sys
import unittest
import logging
from unittest.mock import patch, MagicMock

from twilio.base.exceptions import TwilioRestException

from facebook_ads_importer import twilio_notifier

# Setup logging with stdout handler
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

TWILIO_CFG = {
    "account_sid": "AC123",
    "auth_token": "secret",
    "from_number": "+15550000001",
    "to_number": "+15550000002",
}


class TwilioNotifierTests(unittest.TestCase):
    def setUp(self):
        print(f"\n{'='*70}")

    @patch("facebook_ads_importer.twilio_notifier.Client")
    def test_send_import_summary(self, mock_client):
        print("\nTEST: SMS Import Summary")
        mock_client.return_value.messages.create.return_value = MagicMock(sid="SM1")

        sid = twilio_notifier.send_import_summary(TWILIO_CFG, "FB Ads import complete")

        self.assertEqual(sid, "SM1")
        mock_client.assert_called_once_with("AC123", "secret")
        mock_client.return_value.messages.create.assert_called_once_with(
            body="FB Ads import complete", from_="+15550000001", to="+15550000002"
        )

    @patch("facebook_ads_importer.twilio_notifier.Client")
    def test_incomplete_config_skips_sms(self, mock_client):
        self.assertIsNone(twilio_notifier.send_import_summary({}, "hello"))
        self.assertIsNone(
            twilio_notifier.send_import_summary(dict(TWILIO_CFG, to_number=""), "hello")
        )
        self.assertIsNone(twilio_notifier.send_import_summary(None, "hello"))
        mock_client.assert_not_called()

    @patch("facebook_ads_importer.twilio_notifier.Client")
    def test_long_message_is_truncated(self, mock_client):
        twilio_notifier.send_sms("AC123", "secret", "+1", "+2", "x" * 2000)
        body = mock_client.return_value.messages.create.call_args[1]["body"]
        self.assertEqual(len(body), twilio_notifier.MAX_MESSAGE_LENGTH)
        self.assertTrue(body.endswith("..."))

    def test_missing_credentials(self):
        with self.assertRaises(ValueError):
            twilio_notifier.send_sms("", "secret", "+1", "+2", "hello")

    @patch("facebook_ads_importer.twilio_notifier.Client")
    def test_twilio_errors(self, mock_client):
        mock_client.return_value.messages.create.side_effect = TwilioRestException(
            401, "https://api.twilio.com", msg="Authenticate", code=20003
        )
        with self.assertRaises(RuntimeError) as ctx:
            twilio_notifier.send_sms("AC123", "secret", "+1", "+2", "hello")
        self.assertIn("Invalid Twilio credentials", str(ctx.exception))

        # Summary sending never raises
        self.assertIsNone(twilio_notifier.send_import_summary(TWILIO_CFG, "hello"))


def main():
    unittest.main(argv=[sys.argv[0]])


if __name__ == "__main__":
    main()
