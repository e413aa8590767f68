"""
Tests for Notification Service (SES templated email) and merge fields
"""

import pytest
import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
import sys
import os

from botocore.exceptions import ClientError

# Configure pytest-asyncio
pytestmark = pytest.mark.asyncio(loop_scope="function")

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.notification_service import NotificationService, build_merge_fields, REMINDER_SUBJECT
from utils.errors import ExternalServiceError
from utils.time_helpers import format_reminder_date, format_reminder_time


@pytest.fixture
def ses_client():
    client = MagicMock()
    client.send_templated_email.return_value = {"MessageId": "ses-123"}
    return client


@pytest.fixture
def service(ses_client):
    with patch("services.notification_service.AWS_ACCESS_KEY_ID", "key"), \
         patch("services.notification_service.AWS_SECRET_ACCESS_KEY", "secret"), \
         patch("services.notification_service.boto3.client", return_value=ses_client):
        yield NotificationService()


class TestSend:
    """Tests for send_template_notification"""

    async def test_sends_templated_email(self, service, ses_client):
        message_id = await service.send_template_notification("ana@example.com", "reminder-tpl", {"firstName": "Ana"})

        assert message_id == "ses-123"
        kwargs = ses_client.send_templated_email.call_args.kwargs
        assert kwargs["Destination"] == {"ToAddresses": ["ana@example.com"]}
        assert kwargs["Template"] == "reminder-tpl"
        assert json.loads(kwargs["TemplateData"]) == {"firstName": "Ana"}

    async def test_client_error_becomes_external_service_error(self, service, ses_client):
        ses_client.send_templated_email.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "Rate exceeded"}},
            "SendTemplatedEmail"
        )

        with pytest.raises(ExternalServiceError) as exc:
            await service.send_template_notification("ana@example.com", "reminder-tpl", {})

        assert exc.value.message == "SES Error Throttling: Rate exceeded"
        assert exc.value.service == "ses"

    async def test_missing_credentials(self):
        with patch("services.notification_service.AWS_ACCESS_KEY_ID", None):
            with pytest.raises(ExternalServiceError) as exc:
                await NotificationService().send_template_notification("ana@example.com", "tpl", {})
        assert exc.value.message == "AWS credentials not configured"


class TestMergeFields:
    """Tests for reminder rendering"""

    def test_winter_time_is_est(self):
        value = datetime(2025, 11, 11, 20, 30, tzinfo=timezone.utc)
        assert format_reminder_date(value, "America/New_York") == "November 11, 2025"
        assert format_reminder_time(value, "America/New_York") == "3:30 PM EST"

    def test_summer_time_is_edt(self):
        value = datetime(2025, 7, 4, 13, 5, tzinfo=timezone.utc)
        assert format_reminder_time(value, "America/New_York") == "9:05 AM EDT"

    def test_name_is_used_when_line1_missing(self):
        webinar = {"slug": "s", "name": "Fallback", "line1": "", "scheduled_at": datetime(2025, 11, 11, 20, 30, tzinfo=timezone.utc)}
        fields = build_merge_fields(webinar, {"first_name": "Ana", "last_name": "Lopez"}, REMINDER_SUBJECT)

        assert fields["webinarName"] == "Fallback"
        assert fields["description"] == "Fallback"
        assert fields["firstName"] == "Ana"
        assert fields["lastName"] == "Lopez"
        assert fields["subject"] == "Webinar Reminder"
