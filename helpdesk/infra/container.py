"""
Service wiring.

Builds the job pipeline, automation engine and their collaborators for one
process from settings. The API keeps the container on ``app.state``; the
standalone worker builds its own.
"""

from fastapi import Request

from helpdesk.config.logging import get_logger
from helpdesk.config.settings import JobBackend, Settings
from helpdesk.infra.database import Database
from helpdesk.v1.automation.actions import ActionExecutor
from helpdesk.v1.automation.rules import (
    AutomationEngine,
    AutomationRuleService,
    RuleStore,
    SqlRuleStore,
)
from helpdesk.v1.core.registries import JobRegistry, job_registry
from helpdesk.v1.infra.jobs.collaborators import (
    EmailSender,
    HttpEmailSender,
    LocalBlobStore,
    LogEmailSender,
    SignatureScanner,
)
from helpdesk.v1.infra.jobs.dead_letter import (
    DeadLetterService,
    DeadLetterStore,
    InMemoryDeadLetterStore,
    SqlDeadLetterStore,
)
from helpdesk.v1.infra.jobs.registry_init import register_job_handlers
from helpdesk.v1.infra.jobs.retry import RetryPolicy
from helpdesk.v1.infra.jobs.service import JobService
from helpdesk.v1.infra.jobs.store import InMemoryJobStore, JobStore, SqlJobStore
from helpdesk.v1.infra.jobs.worker import JobWorker
from helpdesk.v1.tickets.store import (
    SqlAttachmentStore,
    SqlAuditLog,
    SqlEmailOutbox,
    SqlTicketStore,
)

logger = get_logger(__name__)


class ServiceContainer:
    """Owns every long-lived service of one process."""

    def __init__(
        self,
        settings: Settings,
        database: Database | None = None,
        job_store: JobStore | None = None,
        dead_letter_store: DeadLetterStore | None = None,
        rule_store: RuleStore | None = None,
        email_sender: EmailSender | None = None,
        registry: JobRegistry | None = None,
    ):
        self.settings = settings
        self.database = database or Database(settings)
        session_factory = self.database.SessionLocal

        if job_store is None:
            job_store = (
                SqlJobStore(session_factory)
                if settings.job_backend == JobBackend.DATABASE
                else InMemoryJobStore()
            )
        if dead_letter_store is None:
            dead_letter_store = (
                SqlDeadLetterStore(session_factory)
                if settings.job_backend == JobBackend.DATABASE
                else InMemoryDeadLetterStore()
            )

        self.job_store = job_store
        self.dead_letter_store = dead_letter_store
        self.jobs = JobService(
            job_store,
            dead_letter_store,
            retry_policy=RetryPolicy.from_settings(settings),
            default_max_attempts=settings.job_max_attempts,
        )
        self.dead_letters = DeadLetterService(dead_letter_store, self.jobs)

        self.tickets = SqlTicketStore(session_factory)
        self.rule_store = rule_store or SqlRuleStore(session_factory)
        self.rules = AutomationRuleService(self.rule_store)
        self.automation = AutomationEngine(
            self.rule_store, self.tickets, ActionExecutor(self.tickets, self.jobs)
        )

        if email_sender is None:
            email_sender = (
                HttpEmailSender(settings.email_relay_url, settings.email_from)
                if settings.email_relay_url
                else LogEmailSender()
            )
        self.blobs = LocalBlobStore(settings.export_storage_dir, settings.export_base_url)

        self.registry = register_job_handlers(
            settings,
            jobs=self.jobs,
            tickets=self.tickets,
            attachments=SqlAttachmentStore(session_factory),
            audit=SqlAuditLog(session_factory),
            outbox=SqlEmailOutbox(session_factory),
            rules=self.rule_store,
            email_sender=email_sender,
            blobs=self.blobs,
            scanner=SignatureScanner(),
            registry=registry if registry is not None else job_registry,
        )
        self.worker = JobWorker(self.jobs, self.registry, settings)

        logger.info(
            "Service container ready",
            job_backend=settings.job_backend.value,
            environment=settings.environment,
        )

    async def startup(self) -> None:
        """Create tables outside production; real deployments manage schema separately."""
        if self.settings.environment != "production":
            await self.database.create_all()

    async def shutdown(self) -> None:
        await self.database.close()


def get_container(request: Request) -> ServiceContainer:
    """Dependency returning the app's service container."""
    return request.app.state.container
