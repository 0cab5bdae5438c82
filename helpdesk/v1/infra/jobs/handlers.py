"""
Job handlers, one per job type.

Every handler is idempotent: the queue delivers at least once, so each
handler checks its own stored state before producing an external side
effect. Handlers never raise; failures come back as ``JobResult.failed``
and the worker routes them to the retry policy.
"""

import csv
import html
import io
import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from helpdesk.config.logging import get_logger
from helpdesk.v1.infra.jobs.collaborators import AttachmentScanner, BlobStore, EmailSender
from helpdesk.v1.infra.jobs.models import JobType
from helpdesk.v1.infra.jobs.schemas import (
    AuditCompactionJob,
    GenerateExportJob,
    GenerateOrgExportJob,
    JobResult,
    ProcessAttachmentJob,
    RecalculateSLAJob,
    SendEmailJob,
    SLAWarningCheckJob,
)
from helpdesk.v1.tickets.models import OutboxStatus, ScanStatus
from helpdesk.v1.tickets.schemas import AttachmentSnapshot, TicketFilters, TicketSnapshot
from helpdesk.v1.tickets.store import TicketQueryStore

if TYPE_CHECKING:
    from helpdesk.v1.infra.jobs.service import JobService

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EmailOutbox(Protocol):
    async def was_sent_since(self, to: str, subject: str, since: datetime) -> bool: ...

    async def record(
        self,
        email_type: str,
        to: str,
        subject: str,
        status: OutboxStatus,
        error: str | None = None,
    ) -> None: ...


class AttachmentStore(Protocol):
    async def get(self, attachment_id: str) -> AttachmentSnapshot | None: ...

    async def update_scan(self, attachment_id: str, **values: Any) -> None: ...


class AuditLog(Protocol):
    async def record(
        self,
        action: str,
        org_id: str | None = None,
        ticket_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None: ...

    async def delete_before(self, cutoff: datetime, org_id: str | None = None) -> int: ...


class RuleSource(Protocol):
    async def list_rules(self, org_id: str) -> list[Any]: ...


class BaseJobHandler:
    """Converts anything a handler raises into a failed ``JobResult``."""

    job_type: JobType

    async def handle(self, job: Any) -> JobResult:
        try:
            return await self.process(job)
        except Exception as e:
            logger.warning(
                "Job handler failed",
                job_id=job.id,
                job_type=self.job_type.value,
                attempts=job.attempts,
                error=str(e),
            )
            await self.on_error(job, e)
            return JobResult.failed(str(e) or type(e).__name__)

    async def process(self, job: Any) -> JobResult:
        raise NotImplementedError

    async def on_error(self, job: Any, error: Exception) -> None:
        """Hook for handlers that persist an error state."""


class SendEmailHandler(BaseJobHandler):
    job_type = JobType.SEND_EMAIL

    def __init__(
        self,
        sender: EmailSender,
        outbox: EmailOutbox,
        dedupe_window_s: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.sender = sender
        self.outbox = outbox
        self.dedupe_window = timedelta(seconds=dedupe_window_s)
        self.clock = clock

    async def process(self, job: SendEmailJob) -> JobResult:
        data = job.data
        since = self.clock() - self.dedupe_window

        if await self.outbox.was_sent_since(data.to, data.subject, since):
            logger.info(
                "Email already sent, skipping", job_id=job.id, to=data.to
            )
            return JobResult.ok({"idempotent": True, "to": data.to})

        try:
            await self.sender.send(data.to, data.subject, data.html, data.text)
        except Exception as e:
            await self.outbox.record(
                data.type, data.to, data.subject, OutboxStatus.FAILED, error=str(e)
            )
            raise

        await self.outbox.record(data.type, data.to, data.subject, OutboxStatus.SENT)
        return JobResult.ok({"to": data.to, "subject": data.subject})


EXPORT_COLUMNS = [
    "Key",
    "Subject",
    "Status",
    "Priority",
    "Category",
    "Assignee",
    "Created At",
    "Updated At",
    "Tags",
]


class GenerateExportHandler(BaseJobHandler):
    """Renders a filtered ticket report and stores it in the blob store."""

    job_type = JobType.GENERATE_EXPORT

    def __init__(
        self,
        tickets: TicketQueryStore,
        blobs: BlobStore,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.tickets = tickets
        self.blobs = blobs
        self.clock = clock

    async def process(self, job: GenerateExportJob) -> JobResult:
        data = job.data
        filters = TicketFilters.model_validate({**data.filters, "org_id": data.org_id})
        tickets = await self.tickets.list_tickets(filters)
        rows = await self._rows(tickets)

        date = self.clock().strftime("%Y-%m-%d")
        if data.format == "CSV":
            filename = f"tickets-export-{date}.csv"
            content = _render_csv(rows)
            content_type = "text/csv"
        else:
            filename = f"tickets-export-{date}.json"
            content = json.dumps(rows, indent=2)
            content_type = "application/json"

        # Keyed by job id so a re-run overwrites instead of duplicating
        key = f"exports/{data.user_id}/{job.id}-{filename}"
        body = content.encode("utf-8")
        url = await self.blobs.put(key, body, content_type)

        logger.info(
            "Export generated",
            job_id=job.id,
            format=data.format,
            tickets=len(rows),
            key=key,
        )
        return JobResult.ok(
            {
                "filename": filename,
                "download_url": url,
                "content_length": len(body),
                "job_id": job.id,
            }
        )

    async def _rows(self, tickets: list[TicketSnapshot]) -> list[dict[str, str]]:
        tags = await self.tickets.get_tags_for_tickets([t.id for t in tickets])

        assignees: dict[str, str] = {}
        for assignee_id in {t.assignee_id for t in tickets if t.assignee_id}:
            user = await self.tickets.get_user(assignee_id)
            assignees[assignee_id] = (user.name or user.email) if user else ""

        return [
            {
                "Key": t.key,
                "Subject": t.subject,
                "Status": t.status.value,
                "Priority": t.priority.value,
                "Category": t.category.value,
                "Assignee": assignees.get(t.assignee_id or "", ""),
                "Created At": t.created_at.isoformat(),
                "Updated At": t.updated_at.isoformat(),
                "Tags": ", ".join(tags.get(t.id, [])),
            }
            for t in tickets
        ]


def _render_csv(rows: list[dict[str, str]]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(
        buffer, fieldnames=EXPORT_COLUMNS, quoting=csv.QUOTE_ALL, lineterminator="\n"
    )
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


class GenerateOrgExportHandler(BaseJobHandler):
    """Full JSON snapshot of an organization's tickets and automation rules."""

    job_type = JobType.GENERATE_ORG_EXPORT

    def __init__(
        self,
        tickets: TicketQueryStore,
        rules: RuleSource,
        blobs: BlobStore,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.tickets = tickets
        self.rules = rules
        self.blobs = blobs
        self.clock = clock

    async def process(self, job: GenerateOrgExportJob) -> JobResult:
        data = job.data
        filename = f"{job.id}.json"
        key = f"exports/org/{data.org_id}/{filename}"
        result = {
            "export_request_id": data.export_request_id,
            "filename": filename,
            "storage_key": key,
        }

        if await self.blobs.exists(key):
            return JobResult.ok({**result, "idempotent": True})

        tickets = await self.tickets.list_tickets(TicketFilters(org_id=data.org_id))
        tags = await self.tickets.get_tags_for_tickets([t.id for t in tickets])
        rules = await self.rules.list_rules(data.org_id)

        snapshot = {
            "org_id": data.org_id,
            "export_request_id": data.export_request_id,
            "requested_by_id": data.requested_by_id,
            "exported_at": self.clock().isoformat(),
            "tickets": [
                {**t.model_dump(mode="json"), "tags": tags.get(t.id, [])}
                for t in tickets
            ],
            "automation_rules": [r.model_dump(mode="json") for r in rules],
        }
        await self.blobs.put(
            key, json.dumps(snapshot, indent=2).encode("utf-8"), "application/json"
        )

        logger.info(
            "Organization export generated",
            job_id=job.id,
            org_id=data.org_id,
            tickets=len(tickets),
            rules=len(rules),
        )
        return JobResult.ok(result)


# Response / resolution targets in hours
DEFAULT_SLA_TARGETS: dict[str, tuple[int, int]] = {
    "P1": (1, 4),
    "P2": (4, 24),
    "P3": (24, 72),
    "P4": (48, 168),
}
FALLBACK_SLA_TARGETS = (24, 72)


def resolve_sla_targets(priority: str, policy: dict[str, Any] | None) -> tuple[int, int]:
    """Priority defaults, overridden per field by the org policy."""
    response, resolution = DEFAULT_SLA_TARGETS.get(priority, FALLBACK_SLA_TARGETS)
    override = (policy or {}).get(priority) or {}
    return (
        int(override.get("response", response)),
        int(override.get("resolution", resolution)),
    )


class RecalculateSLAHandler(BaseJobHandler):
    job_type = JobType.RECALCULATE_SLA

    def __init__(
        self,
        tickets: TicketQueryStore,
        skip_window_s: int = 300,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.tickets = tickets
        self.skip_window = timedelta(seconds=skip_window_s)
        self.clock = clock

    async def process(self, job: RecalculateSLAJob) -> JobResult:
        data = job.data
        tickets = await self.tickets.list_tickets_for_sla(data.ticket_ids, data.org_id)
        policies: dict[str, dict[str, Any] | None] = {}
        recent = self.clock() - self.skip_window
        updated = skipped = 0

        for ticket in tickets:
            if ticket.org_id not in policies:
                policies[ticket.org_id] = await self.tickets.get_sla_policy(ticket.org_id)
            response, resolution = resolve_sla_targets(
                ticket.priority.value, policies[ticket.org_id]
            )

            current = (
                ticket.sla_response_target_hours,
                ticket.sla_resolution_target_hours,
            )
            if current == (response, resolution) and ticket.updated_at >= recent:
                skipped += 1
                continue

            await self.tickets.set_sla_targets(ticket.id, response, resolution)
            updated += 1

        logger.info(
            "SLA targets recalculated", job_id=job.id, updated=updated, skipped=skipped
        )
        return JobResult.ok({"updated": updated, "skipped": skipped})


class ProcessAttachmentHandler(BaseJobHandler):
    job_type = JobType.PROCESS_ATTACHMENT

    def __init__(
        self,
        attachments: AttachmentStore,
        blobs: BlobStore,
        scanner: AttachmentScanner,
        audit: AuditLog | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.attachments = attachments
        self.blobs = blobs
        self.scanner = scanner
        self.audit = audit
        self.clock = clock

    async def process(self, job: ProcessAttachmentJob) -> JobResult:
        attachment_id = job.data.attachment_id
        attachment = await self.attachments.get(attachment_id)
        if attachment is None:
            raise LookupError(f"Attachment {attachment_id} not found")

        if job.data.action == "GENERATE_THUMBNAIL":
            return JobResult.ok(
                {"attachment_id": attachment_id, "action": "GENERATE_THUMBNAIL"}
            )

        if attachment.scan_status in (ScanStatus.CLEAN, ScanStatus.INFECTED):
            return JobResult.ok(
                {
                    "attachment_id": attachment_id,
                    "scan_status": attachment.scan_status.value,
                    "is_quarantined": attachment.is_quarantined,
                    "idempotent": True,
                }
            )

        await self.attachments.update_scan(attachment_id, scan_status=ScanStatus.SCANNING)
        content = await self.blobs.get(attachment.storage_key)
        verdict = await self.scanner.scan(content, attachment.filename)

        status = ScanStatus.INFECTED if verdict.infected else ScanStatus.CLEAN
        await self.attachments.update_scan(
            attachment_id,
            scan_status=status,
            scan_result=verdict.detail,
            scanned_at=self.clock(),
            is_quarantined=verdict.infected,
        )

        if verdict.infected:
            logger.warning(
                "Infected attachment quarantined",
                attachment_id=attachment_id,
                threat=verdict.detail,
            )
            if self.audit is not None:
                await self.audit.record(
                    "ATTACHMENT_QUARANTINED",
                    ticket_id=attachment.ticket_id,
                    details={"attachment_id": attachment_id, "threat": verdict.detail},
                )

        return JobResult.ok(
            {
                "attachment_id": attachment_id,
                "scan_status": status.value,
                "is_quarantined": verdict.infected,
            }
        )

    async def on_error(self, job: ProcessAttachmentJob, error: Exception) -> None:
        if job.data.action != "SCAN" or isinstance(error, LookupError):
            return
        try:
            await self.attachments.update_scan(
                job.data.attachment_id,
                scan_status=ScanStatus.ERROR,
                scan_result=str(error),
            )
        except Exception:
            logger.exception(
                "Failed to record attachment scan error",
                attachment_id=job.data.attachment_id,
            )


class AuditCompactionHandler(BaseJobHandler):
    job_type = JobType.AUDIT_COMPACTION

    def __init__(self, audit: AuditLog, clock: Callable[[], datetime] = _utcnow):
        self.audit = audit
        self.clock = clock

    async def process(self, job: AuditCompactionJob) -> JobResult:
        cutoff = self.clock() - timedelta(days=job.data.retention_days)
        deleted = await self.audit.delete_before(cutoff, job.data.org_id)
        logger.info(
            "Audit log compacted",
            job_id=job.id,
            org_id=job.data.org_id,
            cutoff=cutoff.isoformat(),
            deleted=deleted,
        )
        return JobResult.ok({"deleted": deleted})


# Share of the SLA target elapsed, highest first
SLA_WARNING_THRESHOLDS: list[tuple[str, float]] = [
    ("CRITICAL", 0.9),
    ("WARNING", 0.75),
    ("NOTICE", 0.5),
]
_THRESHOLD_RANK = {
    name: rank for rank, (name, _) in enumerate(reversed(SLA_WARNING_THRESHOLDS), 1)
}


def sla_threshold(ratio: float) -> str | None:
    for name, limit in SLA_WARNING_THRESHOLDS:
        if ratio >= limit:
            return name
    return None


class SLAWarningCheckHandler(BaseJobHandler):
    """
    Flags open tickets approaching their SLA targets.

    Each ticket remembers the highest threshold it was notified for, so a
    re-run only notifies when a ticket has crossed a higher one since.
    """

    job_type = JobType.SLA_WARNING_CHECK

    def __init__(
        self,
        tickets: TicketQueryStore,
        jobs: "JobService | None" = None,
        audit: AuditLog | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.tickets = tickets
        self.jobs = jobs
        self.audit = audit
        self.clock = clock

    async def process(self, job: SLAWarningCheckJob) -> JobResult:
        tickets = await self.tickets.list_open_unpaused(job.data.org_id)
        now = self.clock()
        warnings_found = notifications_sent = 0

        for ticket in tickets:
            try:
                warnings = self._evaluate(ticket, now)
                warnings_found += len(warnings)
                if await self._notify(ticket, warnings):
                    notifications_sent += 1
            except Exception:
                logger.exception("SLA check failed for ticket", ticket_id=ticket.id)

        return JobResult.ok(
            {
                "checked": len(tickets),
                "warnings_found": warnings_found,
                "notifications_sent": notifications_sent,
            }
        )

    def _evaluate(self, ticket: TicketSnapshot, now: datetime) -> list[dict[str, Any]]:
        elapsed_h = (now - ticket.created_at).total_seconds() / 3600
        checks = [
            ("response", ticket.sla_response_target_hours, ticket.first_response_at),
            ("resolution", ticket.sla_resolution_target_hours, ticket.resolved_at),
        ]

        warnings = []
        for kind, target_h, done_at in checks:
            if not target_h or done_at is not None:
                continue
            ratio = elapsed_h / target_h
            threshold = sla_threshold(ratio)
            if threshold:
                warnings.append(
                    {
                        "type": kind,
                        "threshold": threshold,
                        "percentage": round(ratio * 100),
                        "hours_remaining": max(0.0, target_h - elapsed_h),
                    }
                )
        return warnings

    async def _notify(self, ticket: TicketSnapshot, warnings: list[dict[str, Any]]) -> bool:
        if not warnings:
            return False
        top = max(warnings, key=lambda w: _THRESHOLD_RANK[w["threshold"]])
        already = _THRESHOLD_RANK.get(ticket.sla_warning_level or "", 0)
        if _THRESHOLD_RANK[top["threshold"]] <= already:
            return False

        await self.tickets.set_sla_warning_level(ticket.id, top["threshold"])
        if self.audit is not None:
            await self.audit.record(
                "TICKET_SLA_WARNING",
                org_id=ticket.org_id,
                ticket_id=ticket.id,
                details=top,
            )

        if self.jobs is None or ticket.assignee_id is None:
            return False
        assignee = await self.tickets.get_user(ticket.assignee_id)
        if assignee is None:
            return False

        subject = (
            f"[{top['threshold']}] SLA {top['type']} at {top['percentage']}% "
            f"for ticket {ticket.key}"
        )
        await self.jobs.enqueue(
            JobType.SEND_EMAIL,
            {
                "type": "sla_warning",
                "to": assignee.email,
                "subject": subject,
                "html": (
                    f"<p>Ticket <strong>{html.escape(ticket.key)}</strong>: "
                    f"{html.escape(ticket.subject)}</p>"
                    f"<p>{top['hours_remaining']:.1f}h remaining.</p>"
                ),
            },
        )
        return True
