"""Error taxonomy for load-test runs."""


class LoadbenchError(Exception):
    """Base class for every error raised by loadbench."""


class ConfigError(LoadbenchError):
    """Run configuration failed validation at startup."""


class FatalRunError(LoadbenchError):
    """A failure that invalidates the whole run."""

    def __init__(self, worker_id: int, message: str) -> None:
        super().__init__(f"worker {worker_id}: {message}")
        self.worker_id = worker_id


class SetupError(FatalRunError):
    """Connection acquisition or session setup failed."""


class WarmupError(FatalRunError):
    """The warmup call of a worker failed."""


class ProfilingDecodeError(LoadbenchError):
    """A server profiling payload could not be decoded."""


class ReportError(LoadbenchError):
    """The report or profiling data could not be written."""
