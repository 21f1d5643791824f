"""
OpenPhone SMS transport and a logging stand-in for development
"""

import uuid
import requests
from typing import Tuple, Optional, Dict, Any
from logging_config import get_logger

logger = get_logger(__name__)


class OpenPhoneService:
    """Sends SMS through the OpenPhone messages API"""

    def __init__(self, api_key: Optional[str], phone_number_id: Optional[str],
                 base_url: str = "https://api.openphone.com/v1"):
        self.api_key = api_key
        self.phone_number_id = phone_number_id
        self.base_url = base_url
        self.timeout = (5, 30)  # Connection timeout, read timeout

    def send_sms(self, to_number: str, body: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """
        Send one SMS.

        Returns:
            Tuple of (response_data, error_message)
        """
        if not self.api_key or not self.phone_number_id:
            logger.error("OpenPhone credentials not configured")
            return None, "API Key not configured"

        payload = {
            "from": self.phone_number_id,
            "to": [to_number],
            "content": body
        }

        try:
            response = requests.post(
                f"{self.base_url}/messages",
                headers={"Authorization": self.api_key},
                json=payload,
                timeout=self.timeout,
                verify=True
            )
            response.raise_for_status()
            logger.info("SMS sent via OpenPhone", to_number=to_number[-4:], status_code=response.status_code)
            return response.json(), None

        except requests.exceptions.Timeout as e:
            logger.error("OpenPhone API request timeout", to_number=to_number[-4:], error=str(e))
            return None, "Request timeout"

        except requests.exceptions.RequestException as e:
            status_code = getattr(e.response, 'status_code', None) if e.response is not None else None
            logger.error("OpenPhone API request failed",
                         to_number=to_number[-4:], status_code=status_code, error=str(e))
            return None, f"OpenPhone API request failed: {str(e)}"


class LoggingSmsTransport:
    """Writes the SMS to the log instead of sending it"""

    def send_sms(self, to_number: str, body: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        message_id = f"log-{uuid.uuid4().hex[:12]}"
        logger.info("SMS (log transport)", to_number=to_number[-4:], message_id=message_id,
                    message_length=len(body))
        return {"data": {"id": message_id}}, None
