"""Shared pytest fixtures for Peanut packages."""

import pytest
from unittest.mock import MagicMock, patch


@pytest.fixture
def mock_bigquery_client():
    """Mock google.cloud.bigquery.Client for testing."""
    with patch("google.cloud.bigquery.Client") as mock:
        client = MagicMock()
        mock.return_value = client
        yield client


@pytest.fixture
def sample_visitor_events():
    """Raw tracking events for one visitor journey."""
    return [
        {
            "visitor_id": "v_100",
            "event_type": "pageview",
            "timestamp": "2025-01-10T09:00:00Z",
            "utm_source": "google",
            "utm_medium": "cpc",
            "utm_campaign": "winter_sale",
            "page_url": "https://shop.example.com/",
        },
        {
            "visitor_id": "v_100",
            "event_type": "click",
            "timestamp": "2025-01-12T18:30:00Z",
            "utm_source": "newsletter",
            "utm_medium": "email",
        },
        {
            "visitor_id": "v_100",
            "event_type": "pageview",
            "timestamp": "2025-01-14T08:15:00Z",
            "referrer": "https://www.reddit.com/r/deals",
        },
    ]


@pytest.fixture
def sample_form_submission():
    """Lead form webhook payload."""
    return {
        "visitor_id": "v_100",
        "form_type": "lead",
        "form_id": 12,
        "form_name": "Request a demo",
        "submission_id": "sub_778",
        "email": "jordan@example.com",
        "name": "Jordan Lee",
    }
