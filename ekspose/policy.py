"""Workload-declared policy overrides.

Both flags are read from the environment variables declared on the
workload's containers, never from the process environment. A flag is set
when any container, init or main, enables it.
"""

from dataclasses import dataclass

from ekspose.models import WorkloadSnapshot

NO_AUTO_CREATION = "NO_AUTO_CREATION"
BYPASS_CVE_DENIED = "BYPASS_CVE_DENIED"

ENABLED_VALUES = frozenset({"yes", "true"})


def is_enabled(value: str) -> bool:
    """Case-insensitive check against the accepted "on" values."""
    return value.strip().lower() in ENABLED_VALUES


def env_flag(snapshot: WorkloadSnapshot, variable: str) -> bool:
    return any(
        variable in container.env and is_enabled(container.env[variable])
        for container in snapshot.containers
    )


@dataclass(frozen=True)
class PolicyFlags:
    no_auto_exposure: bool = False
    bypass_cve_denial: bool = False

    @classmethod
    def from_snapshot(cls, snapshot: WorkloadSnapshot) -> "PolicyFlags":
        return cls(
            no_auto_exposure=env_flag(snapshot, NO_AUTO_CREATION),
            bypass_cve_denial=env_flag(snapshot, BYPASS_CVE_DENIED),
        )
