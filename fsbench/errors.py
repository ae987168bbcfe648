# errors.py


class FsBenchError(Exception):
    """Base class for every error raised by fsbench."""


class ConfigurationError(FsBenchError):
    """Device catalogue missing or malformed. Fatal at startup."""


class SystemDiskProtectedError(FsBenchError):
    """A destructive operation was aimed at the system device."""


class DeviceBusyError(FsBenchError):
    """Device or mount point could not be released."""


class FormatError(FsBenchError):
    """A filesystem creation utility failed."""


class MountError(FsBenchError):
    """Mount failed or the mount point is not usable."""


class MonitoringUnavailable(FsBenchError):
    """A monitoring strategy could not be started."""


class WorkloadSuiteFailure(FsBenchError):
    """A workload suite failed; siblings keep running."""


class TeardownFailure(FsBenchError):
    """Unmount or destroy failed. Logged, never escalated."""


class ParseFailure(FsBenchError):
    """A field could not be extracted from a raw artifact."""
