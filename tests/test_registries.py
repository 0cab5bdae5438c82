import pytest

from helpdesk.config.settings import Settings
from helpdesk.v1.core.registries import JobRegistry, Registry
from helpdesk.v1.infra.jobs.collaborators import (
    LocalBlobStore,
    LogEmailSender,
    SignatureScanner,
)
from helpdesk.v1.infra.jobs.dead_letter import InMemoryDeadLetterStore
from helpdesk.v1.infra.jobs.models import JobType
from helpdesk.v1.infra.jobs.registry_init import register_job_handlers
from helpdesk.v1.infra.jobs.service import JobService
from helpdesk.v1.infra.jobs.store import InMemoryJobStore


class MockHandler:
    async def handle(self, job):
        return {"success": True}


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    assert registry.list() == []

    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.has("test_impl")
    assert registry.list() == ["test_impl"]

    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_overwrites_same_name():
    registry = JobRegistry()
    first, second = MockHandler(), MockHandler()

    registry.register("SEND_EMAIL", first)
    registry.register("SEND_EMAIL", second)

    assert registry.get("SEND_EMAIL") is second
    assert registry.list() == ["SEND_EMAIL"]


def test_frozen_registry_rejects_changes():
    registry = JobRegistry()
    registry.register("SEND_EMAIL", MockHandler())
    registry.freeze()

    assert registry.is_frozen()
    with pytest.raises(RuntimeError, match="frozen"):
        registry.register("AUDIT_COMPACTION", MockHandler())
    with pytest.raises(RuntimeError, match="frozen"):
        registry.clear()
    assert registry.has("SEND_EMAIL")


def test_clear():
    registry = JobRegistry()
    registry.register("SEND_EMAIL", MockHandler())
    registry.clear()
    assert registry.list() == []


def test_every_job_type_gets_a_handler(tmp_path):
    """Handler wiring covers the whole closed set of job types."""
    jobs = JobService(InMemoryJobStore(), InMemoryDeadLetterStore())
    registry = register_job_handlers(
        Settings(_env_file=None),
        jobs=jobs,
        tickets=object(),
        attachments=object(),
        audit=object(),
        outbox=object(),
        rules=object(),
        email_sender=LogEmailSender(),
        blobs=LocalBlobStore(tmp_path, "http://files.test"),
        scanner=SignatureScanner(),
        registry=JobRegistry(),
    )

    assert sorted(registry.list()) == sorted(t.value for t in JobType)
    for job_type in JobType:
        assert registry.get(job_type.value).job_type == job_type


def test_job_registry_accepts_enum_members():
    registry = JobRegistry()
    handler = MockHandler()

    registry.register(JobType.SEND_EMAIL, handler)

    assert registry.get("SEND_EMAIL") is handler
    assert registry.has(JobType.SEND_EMAIL)
    assert registry.list() == ["SEND_EMAIL"]


def test_missing_lists_unhandled_types():
    registry = JobRegistry()
    registry.register(JobType.SEND_EMAIL, MockHandler())

    missing = registry.missing(JobType)

    assert "SEND_EMAIL" not in missing
    assert len(missing) == len(JobType) - 1
