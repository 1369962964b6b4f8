#!/usr/bin/env python
"""
Test module for Facebook API functionality.
Run this module from the root directory:
python -m tests.test_facebook_api
"""

import sys
import unittest
import logging
from unittest.mock import patch, MagicMock

import requests
from facebook_business.exceptions import FacebookRequestError

from facebook_ads_importer.facebook_api import (
    AdAccountClient,
    FacebookAPIInitError,
    FacebookAPITimeoutError,
    FacebookCampaignCreationError,
    FacebookCreativeError,
    FacebookManagementError,
    FacebookNetworkError,
    ads_manager_url,
    get_campaign_status,
    init_facebook_api,
    inspect_access_token,
    normalize_ad_account_id,
    summarize_insights,
    update_campaign_status,
    validate_access_token_format,
    verify_access_token,
)

# Setup logging with stdout handler
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

VALID_TOKEN = "EAAB" + "x" * 60


def graph_error(message, code=100):
    return FacebookRequestError(
        message="Call was not successful",
        request_context={"method": "POST"},
        http_status=400,
        http_headers={},
        body='{"error": {"message": "%s", "code": %d}}' % (message, code),
    )


class AccountAndTokenTests(unittest.TestCase):
    """Local checks on account ids and access tokens."""

    def setUp(self):
        print(f"\n{'='*70}")

    def test_normalize_ad_account_id(self):
        self.assertEqual(normalize_ad_account_id("123456"), "act_123456")
        self.assertEqual(normalize_ad_account_id("act_123456"), "act_123456")
        self.assertEqual(normalize_ad_account_id(" '1.23456E+5' "), "act_123456")
        with self.assertRaises(ValueError):
            normalize_ad_account_id("act_abc")
        with self.assertRaises(ValueError):
            normalize_ad_account_id("")

    def test_validate_access_token_format(self):
        self.assertTrue(validate_access_token_format(VALID_TOKEN))
        self.assertFalse(validate_access_token_format("short"))
        self.assertFalse(validate_access_token_format("EAAB" + "x" * 60 + " spaces inside"))
        self.assertFalse(validate_access_token_format(None))

    def test_ads_manager_url(self):
        self.assertEqual(
            ads_manager_url("act_123", "999"),
            "https://www.facebook.com/adsmanager/manage/campaigns?act=123&selected_campaign_ids=999",
        )


class VerifyAccessTokenTests(unittest.TestCase):
    """Token checks against the Graph API /me endpoint."""

    def setUp(self):
        print(f"\n{'='*70}")

    @patch("facebook_ads_importer.facebook_api.requests.get")
    def test_accepted_token(self, mock_get):
        print("\nTEST: Access Token Verification")
        mock_get.return_value = MagicMock(ok=True)
        mock_get.return_value.json.return_value = {"id": "42", "name": "Ads Bot"}

        user = verify_access_token(VALID_TOKEN, "v23.0", timeout=5)

        self.assertEqual(user["id"], "42")
        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], "https://graph.facebook.com/v23.0/me")
        self.assertEqual(kwargs["timeout"], 5)

    @patch("facebook_ads_importer.facebook_api.requests.get")
    def test_rejected_token_carries_graph_message(self, mock_get):
        mock_get.return_value = MagicMock(ok=False, status_code=400)
        mock_get.return_value.json.return_value = {
            "error": {"message": "Error validating access token: Session has expired"}
        }

        with self.assertRaises(FacebookAPIInitError) as ctx:
            verify_access_token(VALID_TOKEN)
        self.assertIn("Session has expired", ctx.exception.api_message)

    @patch("facebook_ads_importer.facebook_api.requests.get")
    def test_timeout_is_distinct(self, mock_get):
        mock_get.side_effect = requests.exceptions.Timeout("read timed out")

        with self.assertRaises(FacebookAPITimeoutError) as ctx:
            verify_access_token(VALID_TOKEN)
        self.assertEqual(ctx.exception.kind, "timeout")
        self.assertEqual(ctx.exception.step, "init")

    def test_malformed_token_is_rejected_locally(self):
        with patch("facebook_ads_importer.facebook_api.requests.get") as mock_get:
            with self.assertRaises(FacebookAPIInitError):
                verify_access_token("bad token")
            mock_get.assert_not_called()


class AdAccountClientTests(unittest.TestCase):
    """Creation calls and error mapping on a mocked ad account."""

    def setUp(self):
        print(f"\n{'='*70}")

    @patch("facebook_ads_importer.facebook_api.FacebookAdsApi")
    def test_init_facebook_api(self, mock_fb_api):
        init_facebook_api(VALID_TOKEN, "app", "secret", "v23.0", 30)
        mock_fb_api.init.assert_called_once_with(
            "app", "secret", VALID_TOKEN, api_version="v23.0", timeout=30
        )

    @patch("facebook_ads_importer.facebook_api.FacebookAdsApi")
    def test_init_failure(self, mock_fb_api):
        mock_fb_api.init.side_effect = Exception("bad app secret")
        with self.assertRaises(FacebookAPIInitError):
            init_facebook_api(VALID_TOKEN)

    @patch("facebook_ads_importer.facebook_api.AdAccount")
    def test_create_campaign_returns_id(self, mock_ad_account):
        print("\nTEST: Campaign Creation Call")
        mock_ad_account_instance = MagicMock()
        mock_ad_account.return_value = mock_ad_account_instance
        mock_ad_account_instance.create_campaign.return_value = {"id": "123456789"}

        client = AdAccountClient("12345")
        campaign_id = client.create_campaign({"name": "Spring Sale"})

        self.assertEqual(campaign_id, "123456789")
        self.assertEqual(client.ad_account_id, "act_12345")
        mock_ad_account.assert_called_once_with("act_12345", api=None)
        mock_ad_account_instance.create_campaign.assert_called_once_with(
            params={"name": "Spring Sale"}
        )

    @patch("facebook_ads_importer.facebook_api.AdAccount")
    def test_graph_error_is_wrapped_with_api_message(self, mock_ad_account):
        mock_ad_account_instance = MagicMock()
        mock_ad_account.return_value = mock_ad_account_instance
        mock_ad_account_instance.create_campaign.side_effect = graph_error(
            "Invalid parameter", 100
        )

        client = AdAccountClient("act_12345")
        with self.assertRaises(FacebookCampaignCreationError) as ctx:
            client.create_campaign({})

        self.assertEqual(ctx.exception.api_message, "Invalid parameter")
        self.assertEqual(ctx.exception.error_code, 100)
        self.assertEqual(ctx.exception.step, "campaign")
        self.assertEqual(ctx.exception.kind, "api_error")

    @patch("facebook_ads_importer.facebook_api.AdAccount")
    def test_timeout_and_network_errors(self, mock_ad_account):
        mock_ad_account_instance = MagicMock()
        mock_ad_account.return_value = mock_ad_account_instance
        mock_ad_account_instance.create_ad_creative.side_effect = (
            requests.exceptions.ReadTimeout("timed out")
        )
        mock_ad_account_instance.create_ad.side_effect = requests.exceptions.ConnectionError(
            "connection reset"
        )

        client = AdAccountClient("act_12345")
        with self.assertRaises(FacebookAPITimeoutError) as ctx:
            client.create_ad_creative({})
        self.assertEqual(ctx.exception.step, "creative")
        self.assertNotIsInstance(ctx.exception, FacebookCreativeError)

        with self.assertRaises(FacebookNetworkError) as ctx:
            client.create_ad({})
        self.assertEqual(ctx.exception.step, "ad")
        self.assertEqual(ctx.exception.kind, "network")


class CampaignManagementTests(unittest.TestCase):
    """Reading and updating campaigns that already exist."""

    def setUp(self):
        print(f"\n{'='*70}")

    @patch("facebook_ads_importer.facebook_api.AdAccount")
    def test_list_campaigns_passes_limit_and_statuses(self, mock_ad_account):
        print("\nTEST: List Campaigns")
        mock_ad_account_instance = MagicMock()
        mock_ad_account.return_value = mock_ad_account_instance
        mock_ad_account_instance.get_campaigns.return_value = iter(
            [
                {"id": "1", "name": "Spring", "effective_status": "ACTIVE"},
                {"id": "2", "name": "Summer", "effective_status": "PAUSED"},
                {"id": "3", "name": "Autumn", "effective_status": "ACTIVE"},
            ]
        )

        client = AdAccountClient("12345")
        campaigns = client.list_campaigns(limit=2, statuses=["ACTIVE", "PAUSED"])

        self.assertEqual([c["id"] for c in campaigns], ["1", "2"])
        _, kwargs = mock_ad_account_instance.get_campaigns.call_args
        self.assertEqual(
            kwargs["params"], {"limit": 2, "effective_status": ["ACTIVE", "PAUSED"]}
        )
        self.assertIn("effective_status", kwargs["fields"])

    @patch("facebook_ads_importer.facebook_api.AdAccount")
    def test_list_campaigns_graph_error(self, mock_ad_account):
        mock_ad_account.return_value.get_campaigns.side_effect = graph_error(
            "Unsupported get request", 100
        )

        with self.assertRaises(FacebookManagementError) as ctx:
            AdAccountClient("12345").list_campaigns()
        self.assertEqual(ctx.exception.api_message, "Unsupported get request")
        self.assertEqual(ctx.exception.step, "manage")

    @patch("facebook_ads_importer.facebook_api.Campaign")
    @patch("facebook_ads_importer.facebook_api.AdAccount")
    def test_list_ad_sets_of_campaign(self, mock_ad_account, mock_campaign):
        mock_campaign.return_value.get_ad_sets.return_value = [
            {"id": "77", "campaign_id": "999", "name": "Spring - Ad Set"}
        ]

        ad_sets = AdAccountClient("12345").list_ad_sets(campaign_id="999", limit=10)

        self.assertEqual(ad_sets[0]["id"], "77")
        mock_campaign.assert_called_once_with("999", api=None)
        mock_ad_account.return_value.get_ad_sets.assert_not_called()

    @patch("facebook_ads_importer.facebook_api.Campaign")
    def test_get_campaign_status(self, mock_campaign):
        mock_campaign.return_value.api_get.return_value = {
            "id": "999",
            "status": "ACTIVE",
            "effective_status": "ACTIVE",
        }

        status = get_campaign_status("999")

        self.assertEqual(status["effective_status"], "ACTIVE")
        mock_campaign.return_value.api_get.assert_called_once()

    @patch("facebook_ads_importer.facebook_api.Campaign")
    def test_update_campaign_status(self, mock_campaign):
        print("\nTEST: Pause Campaign")
        result = update_campaign_status("999", "PAUSED")

        self.assertEqual(result, {"campaign_id": "999", "status": "PAUSED"})
        mock_campaign.assert_called_once_with("999", api=None)
        mock_campaign.return_value.api_update.assert_called_once_with(
            params={"status": "PAUSED"}
        )

    @patch("facebook_ads_importer.facebook_api.Campaign")
    def test_update_campaign_status_graph_error(self, mock_campaign):
        mock_campaign.return_value.api_update.side_effect = graph_error(
            "Object with ID '999' does not exist", 100
        )

        with self.assertRaises(FacebookManagementError) as ctx:
            update_campaign_status("999", "ACTIVE")
        self.assertIn("does not exist", ctx.exception.api_message)

    @patch("facebook_ads_importer.facebook_api.AdAccount")
    def test_account_insights_use_level(self, mock_ad_account):
        mock_ad_account.return_value.get_insights.return_value = [
            {"adset_id": "77", "spend": "10.50", "impressions": "100"}
        ]

        rows = AdAccountClient("12345").get_insights(date_preset="yesterday", level="adset")

        self.assertEqual(len(rows), 1)
        _, kwargs = mock_ad_account.return_value.get_insights.call_args
        self.assertEqual(kwargs["params"], {"date_preset": "yesterday", "level": "adset"})

    @patch("facebook_ads_importer.facebook_api.Campaign")
    @patch("facebook_ads_importer.facebook_api.AdAccount")
    def test_campaign_insights_skip_refused_campaign(self, mock_ad_account, mock_campaign):
        print("\nTEST: Insights With A Stale Campaign")
        good = MagicMock()
        good.get_insights.return_value = [{"campaign_id": "1", "spend": "5"}]
        stale = MagicMock()
        stale.get_insights.side_effect = graph_error("Unsupported get request", 100)
        mock_campaign.side_effect = [stale, good]

        rows = AdAccountClient("12345").get_insights(campaign_ids=["2", "1"])

        self.assertEqual(rows, [{"campaign_id": "1", "spend": "5"}])
        mock_ad_account.return_value.get_insights.assert_not_called()

    def test_summarize_insights(self):
        totals = summarize_insights(
            [
                {"spend": "10.50", "impressions": "100", "reach": "80", "clicks": "4"},
                {"spend": "2.25", "impressions": "50", "clicks": None},
                {"spend": "n/a"},
            ]
        )
        self.assertEqual(
            totals, {"spend": "12.75", "impressions": 150, "reach": 80, "clicks": 4}
        )


class InspectAccessTokenTests(unittest.TestCase):
    def setUp(self):
        print(f"\n{'='*70}")

    @staticmethod
    def _response(payload):
        response = MagicMock(ok=True)
        response.json.return_value = payload
        return response

    @patch("facebook_ads_importer.facebook_api.requests.get")
    def test_inspect_access_token(self, mock_get):
        print("\nTEST: Token Inspection")
        mock_get.side_effect = [
            self._response({"id": "42", "name": "Ads Bot"}),
            self._response(
                {
                    "data": [
                        {"permission": "ads_read", "status": "granted"},
                        {"permission": "ads_management", "status": "granted"},
                        {"permission": "pages_show_list", "status": "declined"},
                    ]
                }
            ),
            self._response({"data": [{"id": "act_12345", "name": "Main"}]}),
        ]

        info = inspect_access_token(VALID_TOKEN, "v23.0", timeout=5)

        self.assertEqual(info["user"]["id"], "42")
        self.assertEqual(info["permissions"], ["ads_management", "ads_read"])
        self.assertEqual(info["declined_permissions"], ["pages_show_list"])
        self.assertEqual(info["ad_accounts"][0]["id"], "act_12345")
        self.assertTrue(info["can_manage_ads"])
        urls = [call.args[0] for call in mock_get.call_args_list]
        self.assertEqual(
            urls,
            [
                "https://graph.facebook.com/v23.0/me",
                "https://graph.facebook.com/v23.0/me/permissions",
                "https://graph.facebook.com/v23.0/me/adaccounts",
            ],
        )


def main():
    unittest.main(argv=[sys.argv[0]])


if __name__ == "__main__":
    main()
