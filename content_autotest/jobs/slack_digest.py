"""
Slack cycle digest notification for the content automation engine.

After every automation cycle the scheduler hands its CycleSummary to
send_cycle_digest, which posts a Block Kit message through slack-sdk's
WebhookClient.

Notification rules:
- Nothing is sent when SLACK_WEBHOOK_URL is not configured
- Quiet cycles (no tests created, no winners promoted, no tests stopped, not
  failed) are skipped unless SLACK_NOTIFY_ALL_CYCLES is set
- Errors are captured in the returned dict; this job never raises, so a Slack
  outage cannot fail a cycle

Usage:
    result = await send_cycle_digest(summary)
    if not result['success']:
        logger.warning(result['error'])
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from slack_sdk.webhook import WebhookClient

from content_autotest.core.config import Settings, get_settings
from content_autotest.models.enums import RunStatus
from content_autotest.models.schemas import CycleSummary


logger = logging.getLogger(__name__)

MAX_ERRORS_SHOWN = 5


def is_noteworthy(summary: CycleSummary) -> bool:
    """A cycle is worth a message when it changed something or failed."""
    return (
        summary.status == RunStatus.FAILED
        or summary.tests_created > 0
        or summary.winners_promoted > 0
        or summary.tests_stopped > 0
    )


# =============================================================================
# Slack Message Formatting
# =============================================================================

def format_cycle_message(summary: CycleSummary) -> List[Dict[str, Any]]:
    """
    Format a cycle summary into Slack Block Kit blocks.

    Layout: header with status, counts section, errors section (if any),
    context footer with run id, trigger and duration.
    """
    blocks: List[Dict[str, Any]] = []

    status_emoji = "🚨" if summary.status == RunStatus.FAILED else "🧪"
    started = summary.started_at.strftime('%B %d, %Y %H:%M UTC')
    blocks.append({
        "type": "header",
        "text": {
            "type": "plain_text",
            "text": f"{status_emoji} Content Automation Cycle {summary.status.value.title()} - {started}",
            "emoji": True
        }
    })

    blocks.append({"type": "divider"})

    counts_text = (
        f"*📊 Cycle Summary*\n\n"
        f"Baselines updated: *{summary.baselines_updated:,}*\n"
        f"Candidates found: *{summary.candidates_found:,}*  |  "
        f"Tests created: *{summary.tests_created:,}*\n"
        f"Tests evaluated: *{summary.tests_evaluated:,}*  |  "
        f"🏆 Winners promoted: *{summary.winners_promoted:,}*  |  "
        f"🛑 Tests stopped: *{summary.tests_stopped:,}*"
    )
    blocks.append({
        "type": "section",
        "text": {
            "type": "mrkdwn",
            "text": counts_text
        }
    })

    if summary.errors:
        shown = summary.errors[:MAX_ERRORS_SHOWN]
        error_lines = "\n".join(f"• {error}" for error in shown)
        more = len(summary.errors) - len(shown)
        if more > 0:
            error_lines += f"\n_…and {more} more_"
        blocks.append({"type": "divider"})
        blocks.append({
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"*⚠️ Errors ({len(summary.errors)})*\n\n{error_lines}"
            }
        })

    blocks.append({"type": "divider"})

    run_label = summary.run_id or "unrecorded"
    blocks.append({
        "type": "context",
        "elements": [
            {
                "type": "mrkdwn",
                "text": (
                    f"Run {run_label} | {summary.trigger.value} trigger | "
                    f"{summary.duration_seconds:.1f}s"
                )
            }
        ]
    })

    return blocks


# =============================================================================
# Main Entry Point
# =============================================================================

async def send_cycle_digest(
    summary: CycleSummary,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Post the cycle digest to Slack.

    Returns:
        Dict with:
        - success: True if the message was sent or skipped on purpose
        - skipped: True when nothing was sent
        - reason: Why it was skipped
        - error: Error message (if failed)
    """
    settings = settings or get_settings()

    if not settings.slack_webhook_url:
        return {
            'success': True,
            'skipped': True,
            'reason': 'SLACK_WEBHOOK_URL not configured'
        }

    if not settings.slack_notify_all_cycles and not is_noteworthy(summary):
        return {
            'success': True,
            'skipped': True,
            'reason': 'Nothing to report for this cycle'
        }

    blocks = format_cycle_message(summary)
    text = (
        f"Content automation cycle {summary.status.value}: "
        f"{summary.tests_created} created, {summary.winners_promoted} promoted"
    )

    try:
        client = WebhookClient(settings.slack_webhook_url)
        response = client.send(text=text, blocks=blocks)
    except Exception as e:
        logger.error(f"Failed to send Slack cycle digest: {e}")
        return {
            'success': False,
            'error': f'Failed to send Slack message: {str(e)}'
        }

    if response.status_code != 200:
        logger.error(f"Slack webhook returned {response.status_code}: {response.body}")
        return {
            'success': False,
            'error': f'Slack API returned status {response.status_code}: {response.body}'
        }

    logger.info(f"Sent Slack digest for automation run {summary.run_id}")
    return {
        'success': True,
        'run_id': summary.run_id,
        'sent_at': datetime.now(timezone.utc).isoformat()
    }
