from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException
import logging

logger = logging.getLogger(__name__)

REQUIRED_KEYS = ("account_sid", "auth_token", "from_number", "to_number")
MAX_MESSAGE_LENGTH = 1600


def is_configured(twilio_cfg: dict) -> bool:
    return bool(twilio_cfg) and all(twilio_cfg.get(k) for k in REQUIRED_KEYS)


def send_sms(
    account_sid: str, auth_token: str, from_number: str, to_number: str, message: str
) -> str:
    """
    Send an SMS using Twilio with the given message.

    Args:
        account_sid: Twilio account SID
        auth_token: Twilio auth token
        from_number: Sender phone number (must be registered with Twilio)
        to_number: Recipient phone number
        message: SMS message content

    Returns:
        The Twilio message SID if successful

    Raises:
        ValueError: If required parameters are missing
        RuntimeError: If Twilio API call fails
    """
    if not all([account_sid, auth_token, from_number, to_number]):
        logger.error("Missing required Twilio credentials")
        raise ValueError(
            "All Twilio parameters (account_sid, auth_token, from_number, to_number) are required"
        )

    if not message:
        logger.warning("Empty message provided to Twilio notifier")
        message = "No message content provided"

    # Twilio splits long bodies into segments; cap at ten segments
    if len(message) > MAX_MESSAGE_LENGTH:
        logger.warning(
            f"Message too long ({len(message)} chars), truncating to {MAX_MESSAGE_LENGTH} chars"
        )
        message = message[: MAX_MESSAGE_LENGTH - 3] + "..."

    try:
        client = Client(account_sid, auth_token)
        twilio_message = client.messages.create(
            body=message, from_=from_number, to=to_number
        )
        logger.info(f"SMS sent successfully with SID: {twilio_message.sid}")
        return twilio_message.sid
    except TwilioRestException as e:
        if e.code == 20003:
            error_message = "Invalid Twilio credentials"
        elif e.code == 21211:
            error_message = f"Invalid 'to' phone number: {to_number}"
        elif e.code == 21606:
            error_message = f"Invalid 'from' phone number: {from_number}"
        else:
            error_message = f"Twilio API error: {e.msg}"
        logger.error(error_message)
        raise RuntimeError(f"Twilio SMS sending failed: {error_message}") from e
    except Exception as e:
        logger.error(f"Failed to send Twilio SMS: {e}")
        raise RuntimeError("Twilio SMS sending failed") from e


def send_import_summary(twilio_cfg: dict, message: str):
    """
    Send an import summary if Twilio is configured.

    Notification failures are logged and never affect the import result.

    Returns:
        The message SID, or None if nothing was sent
    """
    if not is_configured(twilio_cfg):
        logger.info(
            "Twilio configuration not provided or incomplete; skipping SMS notification."
        )
        return None

    try:
        return send_sms(
            twilio_cfg.get("account_sid"),
            twilio_cfg.get("auth_token"),
            twilio_cfg.get("from_number"),
            twilio_cfg.get("to_number"),
            message,
        )
    except (ValueError, RuntimeError) as e:
        logger.error(f"Failed to send Twilio SMS notification: {e}")
        return None
