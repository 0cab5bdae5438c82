"""
Standalone worker process: ``helpdesk-worker``.

Only meaningful with ``JOB_BACKEND=database``; the memory backend is not
shared between processes.
"""

import asyncio
import signal

from helpdesk.config.logging import bind_worker_context, get_logger, setup_logging
from helpdesk.config.settings import JobBackend, Settings, settings as default_settings
from helpdesk.infra.container import ServiceContainer

logger = get_logger(__name__)


async def run_worker(settings: Settings) -> None:
    container = ServiceContainer(settings)
    bind_worker_context(
        container.worker.worker_id, job_backend=settings.job_backend.value
    )
    await container.startup()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, container.worker.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    try:
        await container.worker.run()
    finally:
        await container.shutdown()


def main() -> None:
    settings = default_settings
    setup_logging(settings)

    if settings.job_backend != JobBackend.DATABASE:
        logger.warning(
            "Worker started with in-memory job backend; it will only see its own jobs",
            job_backend=settings.job_backend.value,
        )

    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
