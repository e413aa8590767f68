"""
Notification Service - Amazon SES templated email delivery
Sends reminder and registration confirmation emails for webinars
"""
import asyncio
import json
import logging
from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import (
    AWS_ACCESS_KEY_ID,
    AWS_SECRET_ACCESS_KEY,
    AWS_REGION,
    SENDER_EMAIL,
    SENDER_NAME,
    CLIENT_URL,
    WEBINAR_JOIN_PATH,
)
from utils.contact_helpers import get_first_name, get_last_name
from utils.errors import ExternalServiceError
from utils.time_helpers import format_reminder_date, format_reminder_time

logger = logging.getLogger(__name__)

REMINDER_SUBJECT = "Webinar Reminder"
CONFIRMATION_SUBJECT = "Webinar Registration"


def build_join_link(webinar: dict) -> str:
    """Attendee-facing URL of the webinar room"""
    return f"{CLIENT_URL.rstrip('/')}{WEBINAR_JOIN_PATH.format(slug=webinar.get('slug', ''))}"


def build_merge_fields(webinar: dict, user: dict, subject: str) -> Dict[str, str]:
    """Template data shared by reminder and confirmation emails"""
    title = webinar.get("line1") or webinar.get("name") or ""
    scheduled_at = webinar.get("scheduled_at")
    return {
        "firstName": get_first_name(user),
        "lastName": get_last_name(user),
        "link": build_join_link(webinar),
        "subject": subject,
        "date": format_reminder_date(scheduled_at) if scheduled_at else "",
        "time": format_reminder_time(scheduled_at) if scheduled_at else "",
        "webinarName": title,
        "description": title,
    }


class NotificationService:
    """Service for sending templated emails via Amazon SES"""

    def __init__(self):
        self.sender_email = SENDER_EMAIL
        self.sender_name = SENDER_NAME
        self.region = AWS_REGION

    def _get_client(self):
        """Get SES client instance"""
        if not AWS_ACCESS_KEY_ID or not AWS_SECRET_ACCESS_KEY:
            raise ExternalServiceError("AWS credentials not configured", service="ses")
        return boto3.client(
            'ses',
            region_name=self.region,
            aws_access_key_id=AWS_ACCESS_KEY_ID,
            aws_secret_access_key=AWS_SECRET_ACCESS_KEY
        )

    def _send_templated(self, address: str, template_id: str, merge_fields: Dict[str, str]) -> Optional[str]:
        ses = self._get_client()
        try:
            response = ses.send_templated_email(
                Source=f"{self.sender_name} <{self.sender_email}>",
                Destination={'ToAddresses': [address]},
                Template=template_id,
                TemplateData=json.dumps(merge_fields)
            )
        except ClientError as error:
            error_code = error.response['Error']['Code']
            error_message = error.response['Error']['Message']
            raise ExternalServiceError(f"SES Error {error_code}: {error_message}", service="ses")
        except BotoCoreError as error:
            raise ExternalServiceError(f"SES Error: {error}", service="ses")
        return response.get('MessageId')

    async def send_template_notification(
        self,
        address: str,
        template_id: str,
        merge_fields: Dict[str, str]
    ) -> Optional[str]:
        """
        Send one templated email.

        Args:
            address: Recipient email address
            template_id: SES template name
            merge_fields: Template data

        Returns:
            SES message id

        Raises:
            ExternalServiceError: on any delivery failure
        """
        # boto3 is blocking; keep the event loop free
        message_id = await asyncio.to_thread(self._send_templated, address, template_id, merge_fields)
        logger.info(f"Email sent to {address} with template {template_id}. Message ID: {message_id}")
        return message_id


# Singleton instance
notification_service = NotificationService()
