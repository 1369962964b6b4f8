#!/usr/bin/env python
"""
Test module for managing existing campaigns.
Run this module from the root directory:
python -m tests.test_campaign_manager
"""

import sys
import unittest
import logging
from unittest.mock import patch, MagicMock

from facebook_ads_importer import campaign_manager
from facebook_ads_importer.campaign_manager import ManagementRequestError

# Setup logging with stdout handler
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

VALID_TOKEN = "EAAB" + "x" * 60
CONFIG = {
    "facebook": {
        "access_token": VALID_TOKEN,
        "ad_account_id": "act_12345",
        "api_version": "v23.0",
    }
}


class RequestValidationTests(unittest.TestCase):
    """Bad input is rejected before the API is initialized."""

    def setUp(self):
        print(f"\n{'='*70}")
        self.api_patcher = patch("facebook_ads_importer.facebook_api.FacebookAdsApi")
        self.mock_fb_api = self.api_patcher.start()

    def tearDown(self):
        self.api_patcher.stop()

    def test_missing_access_token(self):
        with self.assertRaises(ManagementRequestError) as ctx:
            campaign_manager.list_campaigns("12345", config={})
        self.assertIn("accessToken is required", str(ctx.exception))

    def test_malformed_access_token(self):
        with self.assertRaises(ManagementRequestError):
            campaign_manager.campaign_status("999", "not a token", config={})

    def test_missing_account(self):
        with self.assertRaises(ManagementRequestError) as ctx:
            campaign_manager.list_campaigns(None, VALID_TOKEN, config={})
        self.assertIn("accountId", str(ctx.exception))

    def test_bad_account_id(self):
        with self.assertRaises(ManagementRequestError):
            campaign_manager.list_campaigns("act_abc", VALID_TOKEN, config={})

    def test_bad_status(self):
        print("\nTEST: Status Validation")
        with self.assertRaises(ManagementRequestError) as ctx:
            campaign_manager.set_campaign_status("999", "DELETED", VALID_TOKEN)
        self.assertIn("ACTIVE or PAUSED", str(ctx.exception))
        self.mock_fb_api.init.assert_not_called()

    def test_bad_campaign_id(self):
        with self.assertRaises(ManagementRequestError):
            campaign_manager.set_campaign_status("spring", "PAUSED", VALID_TOKEN)

    def test_bad_limit(self):
        for limit in (0, 501, "ten"):
            with self.assertRaises(ManagementRequestError):
                campaign_manager.list_campaigns("12345", VALID_TOKEN, limit=limit)

    def test_unknown_effective_status(self):
        with self.assertRaises(ManagementRequestError):
            campaign_manager.list_campaigns("12345", VALID_TOKEN, statuses=["RUNNING"])

    def test_bad_date_preset_and_level(self):
        with self.assertRaises(ManagementRequestError):
            campaign_manager.campaign_insights("12345", VALID_TOKEN, date_preset="lastweek")
        with self.assertRaises(ManagementRequestError):
            campaign_manager.campaign_insights("12345", VALID_TOKEN, level="creative")


@patch("facebook_ads_importer.facebook_api.FacebookAdsApi")
class ManagementCallTests(unittest.TestCase):
    """Calls made with credentials from arguments or configuration."""

    def setUp(self):
        print(f"\n{'='*70}")

    @patch("facebook_ads_importer.facebook_api.AdAccount")
    def test_list_campaigns_uses_config_credentials(self, mock_ad_account, mock_fb_api):
        print("\nTEST: Credentials From Configuration")
        mock_ad_account.return_value.get_campaigns.return_value = [
            {"id": "1", "name": "Spring", "effective_status": "ACTIVE"}
        ]

        result = campaign_manager.list_campaigns(
            None, config=CONFIG, statuses=["active"]
        )

        self.assertEqual(result["account_id"], "act_12345")
        self.assertEqual(result["count"], 1)
        self.assertEqual(result["campaigns"][0]["name"], "Spring")
        args, kwargs = mock_fb_api.init.call_args
        self.assertEqual(args[2], VALID_TOKEN)
        self.assertEqual(kwargs["api_version"], "v23.0")
        _, kwargs = mock_ad_account.return_value.get_campaigns.call_args
        self.assertEqual(kwargs["params"]["effective_status"], ["ACTIVE"])

    @patch("facebook_ads_importer.facebook_api.Campaign")
    def test_set_campaign_status(self, mock_campaign, mock_fb_api):
        result = campaign_manager.set_campaign_status(
            "c:999", "paused", VALID_TOKEN, config={}
        )

        self.assertEqual(
            result, {"success": True, "campaign_id": "999", "status": "PAUSED"}
        )
        mock_campaign.return_value.api_update.assert_called_once_with(
            params={"status": "PAUSED"}
        )

    @patch("facebook_ads_importer.facebook_api.Campaign")
    def test_campaign_status(self, mock_campaign, mock_fb_api):
        mock_campaign.return_value.api_get.return_value = {
            "id": "999",
            "status": "PAUSED",
            "effective_status": "CAMPAIGN_PAUSED",
        }

        status = campaign_manager.campaign_status("999", config=CONFIG)

        self.assertEqual(status["status"], "PAUSED")

    @patch("facebook_ads_importer.facebook_api.Campaign")
    @patch("facebook_ads_importer.facebook_api.AdAccount")
    def test_campaign_insights_totals(self, mock_ad_account, mock_campaign, mock_fb_api):
        print("\nTEST: Campaign Insights")
        first, second = MagicMock(), MagicMock()
        first.get_insights.return_value = [
            {"campaign_id": "1", "spend": "10.00", "impressions": "100"}
        ]
        second.get_insights.return_value = [
            {"campaign_id": "2", "spend": "2.50", "impressions": "40", "clicks": "3"}
        ]
        mock_campaign.side_effect = [first, second]

        result = campaign_manager.campaign_insights(
            None, config=CONFIG, date_preset="last_30d", level="ad", campaign_ids=["1", "2", ""]
        )

        self.assertEqual(result["level"], "campaign")
        self.assertEqual(len(result["data"]), 2)
        self.assertEqual(result["totals"]["spend"], "12.50")
        self.assertEqual(result["totals"]["impressions"], 140)
        self.assertEqual(result["totals"]["clicks"], 3)

    @patch("facebook_ads_importer.facebook_api.AdAccount")
    def test_list_ad_sets_of_account(self, mock_ad_account, mock_fb_api):
        mock_ad_account.return_value.get_ad_sets.return_value = [{"id": "77"}]

        result = campaign_manager.list_ad_sets("12345", VALID_TOKEN, limit=5)

        self.assertEqual(result, {"campaign_id": None, "ad_sets": [{"id": "77"}], "count": 1})

    @patch("facebook_ads_importer.campaign_manager.inspect_access_token")
    def test_inspect_token_uses_configured_version(self, mock_inspect, mock_fb_api):
        mock_inspect.return_value = {"user": {"id": "42"}, "can_manage_ads": True}
        config = {"facebook": {"access_token": VALID_TOKEN, "api_version": "v22.0"}}

        info = campaign_manager.inspect_token(config=config)

        self.assertTrue(info["can_manage_ads"])
        mock_inspect.assert_called_once_with(VALID_TOKEN, "v22.0", 30.0)
        mock_fb_api.init.assert_not_called()


def main():
    unittest.main(argv=[sys.argv[0]])


if __name__ == "__main__":
    main()
