"""
Job registry initialization.

Wires one handler per job type into a job registry.
"""

from helpdesk.config.logging import get_logger
from helpdesk.config.settings import Settings
from helpdesk.v1.core.registries import JobRegistry, job_registry
from helpdesk.v1.infra.jobs.collaborators import AttachmentScanner, BlobStore, EmailSender
from helpdesk.v1.infra.jobs.handlers import (
    AttachmentStore,
    AuditCompactionHandler,
    AuditLog,
    EmailOutbox,
    GenerateExportHandler,
    GenerateOrgExportHandler,
    ProcessAttachmentHandler,
    RecalculateSLAHandler,
    RuleSource,
    SendEmailHandler,
    SLAWarningCheckHandler,
)
from helpdesk.v1.infra.jobs.models import JobType
from helpdesk.v1.infra.jobs.service import JobService
from helpdesk.v1.tickets.store import TicketQueryStore

logger = get_logger(__name__)


def register_job_handlers(
    settings: Settings,
    *,
    jobs: JobService,
    tickets: TicketQueryStore,
    attachments: AttachmentStore,
    audit: AuditLog,
    outbox: EmailOutbox,
    rules: RuleSource,
    email_sender: EmailSender,
    blobs: BlobStore,
    scanner: AttachmentScanner,
    registry: JobRegistry = job_registry,
) -> JobRegistry:
    """Register a handler for every job type with ``registry``."""

    logger.info("Registering job handlers")

    registry.register(
        JobType.SEND_EMAIL,
        SendEmailHandler(
            email_sender, outbox, dedupe_window_s=settings.email_dedupe_window_s
        ),
    )
    registry.register(
        JobType.GENERATE_EXPORT, GenerateExportHandler(tickets, blobs)
    )
    registry.register(
        JobType.GENERATE_ORG_EXPORT,
        GenerateOrgExportHandler(tickets, rules, blobs),
    )
    registry.register(
        JobType.RECALCULATE_SLA,
        RecalculateSLAHandler(tickets, skip_window_s=settings.sla_recalc_skip_window_s),
    )
    registry.register(
        JobType.PROCESS_ATTACHMENT,
        ProcessAttachmentHandler(attachments, blobs, scanner, audit=audit),
    )
    registry.register(JobType.AUDIT_COMPACTION, AuditCompactionHandler(audit))
    registry.register(
        JobType.SLA_WARNING_CHECK,
        SLAWarningCheckHandler(tickets, jobs=jobs, audit=audit),
    )

    missing = registry.missing(JobType)
    if missing:
        logger.warning("Job types without a handler", job_types=missing)
    logger.info("Job handlers registered", registered_handlers=registry.list())
    return registry
