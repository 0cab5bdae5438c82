from collections.abc import Iterable
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic name -> implementation registry that can be frozen."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def _key(self, name: Any) -> str:
        return name

    def register(self, name: Any, implementation: T) -> None:
        """Register an implementation, replacing any previous one of that name."""
        key = self._key(name)
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{key}' in {self.name.lower()} registry: "
                "registry is frozen"
            )
        self._implementations[key] = implementation

    def get(self, name: Any) -> T:
        key = self._key(name)
        if key not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {key}"
            )
        return self._implementations[key]

    def has(self, name: Any) -> bool:
        return self._key(name) in self._implementations

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def clear(self) -> None:
        if self._frozen:
            raise RuntimeError(
                f"Cannot clear {self.name.lower()} registry: registry is frozen"
            )
        self._implementations.clear()

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen


class JobHandler(Protocol):
    """Processes one dequeued job of a single type."""

    async def handle(self, job: Any) -> Any:
        """
        Handle a background job.

        Args:
            job: The dequeued job record (already PROCESSING, attempts bumped)

        Returns:
            A JobResult with ``success`` and optional ``error`` / ``data``.
            Handlers must be idempotent: the queue delivers at least once.
        """
        ...


class JobRegistry(Registry[JobHandler]):
    """Job handlers keyed by job type; accepts ``JobType`` members or their values."""

    def __init__(self):
        super().__init__("Job")

    def _key(self, name: Any) -> str:
        return name.value if isinstance(name, Enum) else str(name)

    def missing(self, job_types: Iterable[Any]) -> list[str]:
        """Job types from ``job_types`` that have no handler yet."""
        return [key for key in map(self._key, job_types) if key not in self._implementations]


# Process-wide default used when no registry is injected
job_registry = JobRegistry()
