# hotelwatch/services/alert_queue_processor.py

"""Delivers queued price drop alerts by email, with retries and digests."""

import html
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from curl_cffi import requests as curl_requests

from hotelwatch.config.settings import Settings
from hotelwatch.models.price_alert import QueuedAlert
from hotelwatch.storage.table_client import (
    Range,
    Row,
    TableClient,
    format_timestamp,
)

logger = logging.getLogger("hotelwatch.alert_queue")


class AlertDeliveryError(Exception):
    """The email provider rejected or failed an alert."""


class AlertSender(Protocol):
    """Anything that can deliver one HTML email."""

    def send(self, to: str, subject: str, html_body: str) -> None: ...


class ResendEmailSender:
    """Sends alert emails through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        from_address: str | None = None,
        session: curl_requests.Session | None = None,
    ) -> None:
        self._api_key = api_key
        self._from = from_address or Settings.ALERT_FROM_ADDRESS
        self.session = session or curl_requests.Session()

    def send(self, to: str, subject: str, html_body: str) -> None:
        try:
            resp = self.session.post(
                Settings.RESEND_API_URL,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "from": self._from,
                    "to": to,
                    "subject": subject,
                    "html": html_body,
                },
                timeout=Settings.REQUEST_TIMEOUT,
            )
        except Exception as exc:
            raise AlertDeliveryError(f"Resend request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise AlertDeliveryError(
                f"Resend returned HTTP {resp.status_code}: {resp.text[:200]}"
            )


@dataclass
class AlertRunSummary:
    """Outcome of one pass over the alert queue."""

    job_run_id: object | None = None
    status: str = "running"
    total_groups: int = 0
    processed_count: int = 0
    success_count: int = 0      # emails sent
    failure_count: int = 0      # rows that failed this run
    dead_count: int = 0
    skipped_count: int = 0
    deferred_count: int = 0
    error: str | None = None
    sent_ids: list[object] = field(
        default_factory=lambda: list[object]()
    )


def render_alert_email(
    alerts: list[QueuedAlert],
    site_url: str | None = None,
) -> tuple[str, str]:
    """Build the subject and HTML body for a group of alerts."""
    base = (site_url or Settings.SITE_BASE_URL).rstrip("/")
    cards: list[str] = []
    for alert in alerts:
        hotel = html.escape(alert.hotel_id)
        cards.append(
            '<div style="border: 1px solid #e5e7eb; border-radius: 8px; '
            'padding: 16px; margin-bottom: 16px;">'
            f'<h3 style="margin: 0 0 8px 0;">Hotel #{hotel}</h3>'
            "<p>Price dropped by "
            f'<strong style="color: #059669;">{alert.drop_percent}%</strong></p>'
            '<p><span style="text-decoration: line-through; color: #9ca3af;">'
            f"${alert.previous_price:,.2f}</span> "
            '<span style="font-weight: bold; color: #059669;">'
            f"${alert.new_price:,.2f}</span></p>"
            f'<a href="{base}/hotel/{hotel}">View Deal</a>'
            "</div>"
        )
    body = (
        '<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">'
        "<h2>Price Drop Alert!</h2>"
        "<p>Good news! Prices have dropped for hotels you are watching.</p>"
        + "".join(cards)
        + '<p style="color: #6b7280; font-size: 12px;">'
        "You are receiving this because you enabled price alerts on LuxeStay."
        "</p></div>"
    )
    count = len(alerts)
    subject = (
        f"Price Drop Alert: {count} hotel{'s' if count > 1 else ''} on sale!"
    )
    return subject, body


def _to_alert(row: Row) -> QueuedAlert:
    return QueuedAlert(
        id=row["id"],
        user_id=str(row["user_id"]),
        hotel_id=str(row["hotel_id"]),
        previous_price=float(row["previous_price"]),
        new_price=float(row["new_price"]),
        drop_percent=int(row["drop_percent"]),
        status=str(row.get("status") or "pending"),
        digest_group=row.get("digest_group"),
        retry_count=int(row.get("retry_count") or 0),
    )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AlertQueueProcessor:
    """Works through due queue rows, one email per user digest group.

    Each run is logged in the job runs table.  Rows that fail are
    retried on later runs until ``ALERT_MAX_RETRIES`` attempts, then
    marked ``dead``.  Users who disabled alerts get their rows marked
    ``skipped``; users over the daily email cap are left pending.
    """

    def __init__(
        self,
        client: TableClient,
        sender: AlertSender | None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._sender = sender
        self._clock = clock or _utc_now
        self._max_retries = Settings.ALERT_MAX_RETRIES

    # ── Queue access ─────────────────────────────────────

    def _load_due(self, now: datetime) -> list[QueuedAlert]:
        # Due and retry filters run in storage so the batch limit only
        # ever counts deliverable rows
        rows = self._client.select(
            Settings.ALERT_QUEUE_TABLE,
            filters={
                "status": ["pending", "failed"],
                "retry_count": Range("lt", self._max_retries),
                "scheduled_for": Range("lte", format_timestamp(now)),
            },
            order_by="scheduled_for",
            limit=Settings.ALERT_BATCH_SIZE,
        )
        return [_to_alert(row) for row in rows]

    def _mark(
        self, ids: list[object], values: dict[str, object],
    ) -> None:
        if ids:
            self._client.update(
                Settings.ALERT_QUEUE_TABLE, values, {"id": ids},
            )

    # ── Per-user checks ──────────────────────────────────

    def _alerts_enabled(self, user_id: str) -> bool:
        rows = self._client.select(
            Settings.NOTIFICATION_SETTINGS_TABLE,
            columns="price_drop_alerts",
            filters={"user_id": user_id},
            limit=1,
        )
        return bool(rows) and bool(rows[0].get("price_drop_alerts"))

    def _sent_today(self, user_id: str, today: str) -> int:
        rows = self._client.select(
            Settings.EMAIL_SEND_LOG_TABLE,
            columns="count",
            filters={"user_id": user_id, "sent_date": today},
            limit=1,
        )
        return int(rows[0]["count"] or 0) if rows else 0

    def _log_send(self, user_id: str, today: str, count: int) -> None:
        self._client.upsert(
            Settings.EMAIL_SEND_LOG_TABLE,
            [{
                "user_id": user_id,
                "sent_date": today,
                "count": count,
                "updated_at": format_timestamp(self._clock()),
            }],
            on_conflict="user_id,sent_date",
        )

    # ── Job run bookkeeping ──────────────────────────────

    def _start_run(self) -> object | None:
        try:
            rows = self._client.insert(
                Settings.JOB_RUNS_TABLE, [{"status": "running"}],
            )
        except Exception as exc:
            logger.warning("Could not create job run row: %s", exc)
            return None
        return rows[0].get("id") if rows else None

    def _finish_run(self, summary: AlertRunSummary) -> None:
        if summary.job_run_id is None:
            return
        values: dict[str, object] = {
            "status": summary.status,
            "finished_at": format_timestamp(self._clock()),
            "processed_count": summary.processed_count,
            "success_count": summary.success_count,
            "failure_count": summary.failure_count,
            "dead_count": summary.dead_count,
            "skipped_count": summary.skipped_count,
        }
        if summary.error:
            values["error_message"] = summary.error
        try:
            self._client.update(
                Settings.JOB_RUNS_TABLE, values, {"id": summary.job_run_id},
            )
        except Exception as exc:
            logger.warning(
                "Could not update job run %s: %s", summary.job_run_id, exc,
            )

    # ── Entry point ──────────────────────────────────────

    def process(self) -> AlertRunSummary:
        """Deliver all due alerts once; never raises."""
        summary = AlertRunSummary()
        if self._sender is None:
            summary.status = "failed"
            summary.error = "Missing RESEND_API_KEY"
            logger.error("Alert processing skipped: %s", summary.error)
            return summary

        summary.job_run_id = self._start_run()
        try:
            self._process(summary)
        except Exception as exc:
            logger.error("Alert processing failed", exc_info=True)
            summary.status = "failed"
            summary.error = str(exc)
        self._finish_run(summary)

        logger.info(
            "Alert run %s: %s (groups=%d sent=%d failed=%d dead=%d "
            "skipped=%d deferred=%d)",
            summary.job_run_id,
            summary.status,
            summary.total_groups,
            summary.success_count,
            summary.failure_count,
            summary.dead_count,
            summary.skipped_count,
            summary.deferred_count,
        )
        return summary

    def _process(self, summary: AlertRunSummary) -> None:
        now = self._clock()
        today = now.date().isoformat()
        due = self._load_due(now)
        summary.processed_count = len(due)
        if not due:
            summary.status = "success"
            return

        groups: dict[str, list[QueuedAlert]] = {}
        for alert in due:
            key = f"{alert.user_id}:{alert.digest_group or alert.id}"
            groups.setdefault(key, []).append(alert)
        summary.total_groups = len(groups)

        failed: list[QueuedAlert] = []
        skipped: list[QueuedAlert] = []
        sends_by_user: dict[str, int] = {}

        for alerts in groups.values():
            user_id = alerts[0].user_id
            try:
                if not self._alerts_enabled(user_id):
                    skipped.extend(alerts)
                    continue

                if user_id not in sends_by_user:
                    sends_by_user[user_id] = self._sent_today(user_id, today)
                if sends_by_user[user_id] >= Settings.ALERT_DAILY_EMAIL_CAP:
                    summary.deferred_count += len(alerts)
                    continue

                email = self._client.get_user_email(user_id)
                if not email:
                    logger.warning("No email for user %s", user_id)
                    failed.extend(alerts)
                    continue

                subject, body = render_alert_email(alerts)
                self._sender.send(email, subject, body)  # type: ignore[union-attr]
            except Exception as exc:
                logger.warning(
                    "Alert delivery failed for user %s: %s", user_id, exc,
                )
                failed.extend(alerts)
                continue

            summary.success_count += 1
            summary.sent_ids.extend(a.id for a in alerts)
            sends_by_user[user_id] += 1
            try:
                self._log_send(user_id, today, sends_by_user[user_id])
            except Exception as exc:
                logger.warning(
                    "Send log update failed for user %s: %s", user_id, exc,
                )

        stamp = format_timestamp(now)
        self._mark(
            summary.sent_ids, {"status": "sent", "last_attempt_at": stamp},
        )

        by_count: dict[int, list[object]] = {}
        for alert in failed:
            by_count.setdefault(alert.retry_count + 1, []).append(alert.id)
        for new_count, ids in by_count.items():
            is_dead = new_count >= self._max_retries
            if is_dead:
                summary.dead_count += len(ids)
            self._mark(ids, {
                "status": "dead" if is_dead else "failed",
                "last_attempt_at": stamp,
                "retry_count": new_count,
            })
        summary.failure_count = len(failed)

        self._mark(
            [a.id for a in skipped],
            {"status": "skipped", "last_attempt_at": stamp},
        )
        summary.skipped_count = len(skipped)

        if summary.failure_count == 0:
            summary.status = "success"
        elif summary.success_count > 0:
            summary.status = "partial"
        else:
            summary.status = "failed"


def create_alert_sender() -> AlertSender | None:
    """Return the configured sender, or ``None`` without an API key."""
    if not Settings.RESEND_API_KEY:
        return None
    return ResendEmailSender(Settings.RESEND_API_KEY)
