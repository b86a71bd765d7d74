"""
Discord notification sink for segment pull run summaries.

Best-effort only: a missing webhook, a 4xx, or an exhausted retry loop is
logged and swallowed. Notifying must never fail a run.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import requests

from .models import RunSummary

logger = logging.getLogger(__name__)

USERNAME = "LeadPull"
_COLOR_OK = 0x5865F2
_COLOR_WARN = 0xFFA500
_COLOR_ERROR = 0xFF0000


def _post(url: Optional[str], payload: Dict[str, Any], *, attempts: int = 3, timeout_s: float = 5.0) -> bool:
    """Robust sender with retries and rate-limit handling. Returns True on 2xx."""
    if not url:
        logger.warning("[discord] no webhook URL configured; summary not sent")
        return False

    for attempt in range(attempts):
        try:
            resp = requests.post(url, json=payload, timeout=timeout_s)
        except requests.RequestException as e:
            logger.warning("[discord] send failed (attempt %s): %s", attempt + 1, e)
            time.sleep(1 + attempt)
            continue

        if resp.status_code in (200, 204):
            return True

        if resp.status_code == 429:
            try:
                retry = float(resp.headers.get("Retry-After", 2 ** attempt))
            except ValueError:
                retry = float(2 ** attempt)
            logger.info("[discord] rate limited, retrying in %ss", retry)
            time.sleep(retry)
            continue

        # Other 4xx: do not retry endlessly
        if 400 <= resp.status_code < 500:
            logger.error("[discord] client error: %s %s", resp.status_code, resp.text[:200])
            return False

        logger.warning("[discord] server error: %s %s", resp.status_code, resp.text[:200])
        time.sleep(1 + attempt)

    return False


def build_summary_embed(summary: RunSummary) -> Dict[str, Any]:
    if summary.status == "error":
        title, color = "❌ Segment pull failed", _COLOR_ERROR
    elif summary.status == "skipped":
        title, color = "ℹ️ Segment pull skipped", _COLOR_WARN
    elif summary.errors:
        title, color = "⚠️ Segment pull finished with errors", _COLOR_WARN
    else:
        title, color = "✅ Segment pull finished", _COLOR_OK

    description = (
        f"{summary.inserted} new lead(s) pulled, {summary.skipped} skipped, "
        f"{summary.assignments} assignment(s) across {summary.combos_processed} combo(s)."
    )
    if summary.reason:
        description += f"\nReason: {summary.reason}"

    fields = [
        {"name": "combos_processed", "value": str(summary.combos_processed), "inline": True},
        {"name": "inserted", "value": str(summary.inserted), "inline": True},
        {"name": "skipped", "value": str(summary.skipped), "inline": True},
    ]
    if summary.errors:
        listed = "\n".join(f"- {e[:180]}" for e in list(summary.errors)[:10])
        fields.append({"name": f"errors ({len(summary.errors)})", "value": listed[:1000], "inline": False})
    if summary.run_id:
        fields.append({"name": "run_id", "value": f"`{summary.run_id}`", "inline": False})

    return {"title": title, "description": description, "color": color, "fields": fields}


class DiscordNotifier:
    def __init__(self, webhook_url: Optional[str], *, username: str = USERNAME) -> None:
        self.webhook_url = webhook_url
        self.username = username

    def __call__(self, summary: RunSummary) -> bool:
        payload = {"username": self.username, "embeds": [build_summary_embed(summary)]}
        return _post(self.webhook_url, payload)
