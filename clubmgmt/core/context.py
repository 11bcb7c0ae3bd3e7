"""Per-call context passed explicitly into services.

There is no process-wide "current user". Callers (the desktop shell, a
maintenance job) build a ServiceContext and hand it to each service call so
audit records can be attributed.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ServiceContext:
    user_id: int | None = None
    ip_address: str | None = None

    @classmethod
    def system(cls) -> "ServiceContext":
        """Context for unattended jobs (scheduled maintenance, startup tasks)."""
        return cls()
