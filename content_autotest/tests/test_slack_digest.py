"""
Tests for the Slack cycle digest.

Uses the mock_slack_client fixture to patch slack-sdk's WebhookClient.
"""

from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest

from content_autotest.jobs.slack_digest import (
    MAX_ERRORS_SHOWN,
    format_cycle_message,
    is_noteworthy,
    send_cycle_digest,
)
from content_autotest.models.enums import RunStatus, RunTrigger
from content_autotest.models.schemas import CycleSummary


WEBHOOK_URL = 'https://hooks.slack.com/services/T000/B000/XXXX'


def _summary(**overrides) -> CycleSummary:
    fields = dict(
        run_id='run-7',
        status=RunStatus.COMPLETED,
        trigger=RunTrigger.SCHEDULED,
        baselines_updated=50,
        candidates_found=2,
        tests_created=2,
        tests_evaluated=3,
        winners_promoted=1,
        started_at=datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc),
        duration_seconds=12.34,
    )
    fields.update(overrides)
    return CycleSummary(**fields)


@pytest.fixture
def slack_settings(settings):
    return settings.model_copy(update={'slack_webhook_url': WEBHOOK_URL})


class TestFormatting:

    def test_noteworthy_cycles(self) -> None:
        quiet = _summary(tests_created=0, winners_promoted=0)

        assert is_noteworthy(_summary()) is True
        assert is_noteworthy(quiet) is False
        assert is_noteworthy(quiet.model_copy(update={'tests_stopped': 1})) is True
        assert is_noteworthy(quiet.model_copy(update={'status': RunStatus.FAILED})) is True

    def test_message_layout(self) -> None:
        blocks = format_cycle_message(_summary())

        assert blocks[0]['type'] == 'header'
        assert 'Content Automation Cycle Completed' in blocks[0]['text']['text']
        assert 'Tests created: *2*' in blocks[2]['text']['text']
        assert blocks[-1]['type'] == 'context'
        assert blocks[-1]['elements'][0]['text'] == 'Run run-7 | scheduled trigger | 12.3s'

    def test_errors_are_truncated(self) -> None:
        errors = [f"exp-{i}: timeout" for i in range(MAX_ERRORS_SHOWN + 3)]

        blocks = format_cycle_message(_summary(errors=errors))

        error_text = next(
            block['text']['text'] for block in blocks
            if block['type'] == 'section' and 'Errors' in block['text']['text']
        )
        assert f'Errors ({len(errors)})' in error_text
        assert 'exp-4: timeout' in error_text
        assert 'exp-5: timeout' not in error_text
        assert 'and 3 more' in error_text


@pytest.mark.asyncio
class TestSendCycleDigest:

    async def test_skipped_without_webhook(self, settings, mock_slack_client) -> None:
        result = await send_cycle_digest(_summary(), settings)

        assert result == {'success': True, 'skipped': True, 'reason': 'SLACK_WEBHOOK_URL not configured'}
        mock_slack_client.send.assert_not_called()

    async def test_quiet_cycle_is_skipped(self, slack_settings, mock_slack_client) -> None:
        result = await send_cycle_digest(_summary(tests_created=0, winners_promoted=0), slack_settings)

        assert result['skipped'] is True
        mock_slack_client.send.assert_not_called()

    async def test_quiet_cycle_sent_when_notifying_all(self, slack_settings, mock_slack_client) -> None:
        settings = slack_settings.model_copy(update={'slack_notify_all_cycles': True})

        result = await send_cycle_digest(_summary(tests_created=0, winners_promoted=0), settings)

        assert result['success'] is True
        mock_slack_client.send.assert_called_once()

    async def test_sends_blocks(self, slack_settings, mock_slack_client) -> None:
        result = await send_cycle_digest(_summary(), slack_settings)

        assert result['success'] is True
        assert result['run_id'] == 'run-7'
        assert 'sent_at' in result
        kwargs = mock_slack_client.send.call_args.kwargs
        assert kwargs['text'] == 'Content automation cycle completed: 2 created, 1 promoted'
        assert kwargs['blocks'][0]['type'] == 'header'

    async def test_non_200_response(self, slack_settings, mock_slack_client) -> None:
        mock_slack_client.send.return_value.status_code = 404
        mock_slack_client.send.return_value.body = 'no_service'

        result = await send_cycle_digest(_summary(), slack_settings)

        assert result['success'] is False
        assert 'status 404' in result['error']

    async def test_client_exception(self, slack_settings) -> None:
        client = Mock()
        client.send.side_effect = ConnectionError('connection reset')

        with patch('content_autotest.jobs.slack_digest.WebhookClient', return_value=client):
            result = await send_cycle_digest(_summary(), slack_settings)

        assert result == {'success': False, 'error': 'Failed to send Slack message: connection reset'}
