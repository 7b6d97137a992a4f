"""The contract between the engine and the operation being benchmarked."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Generic, NamedTuple, TypeVar

from loadbench.engine.models import Phase, TestConfig

ConnT = TypeVar("ConnT")
ArgT = TypeVar("ArgT")

# Opens one connection for one worker and closes it on exit.
Connector = Callable[[TestConfig], AbstractAsyncContextManager[ConnT]]


class CallResult(NamedTuple, Generic[ArgT]):
    """Outcome of one ``execute`` call.

    ``arg`` is handed to the next call on the same connection.
    """

    arg: ArgT
    elapsed_ns: int
    profiling: str | None = None


class Operation(ABC, Generic[ConnT, ArgT]):
    """One benchmarked remote operation.

    Each worker calls ``setup`` once, then ``execute`` once per dispatch
    (threading the returned ``arg`` through successive calls), then
    ``cleanup`` once. Failures are signalled by raising.
    """

    @abstractmethod
    async def setup(self, conn: ConnT, config: TestConfig) -> ArgT:
        ...

    @abstractmethod
    async def execute(self, conn: ConnT, phase: Phase, arg: ArgT) -> CallResult[ArgT]:
        ...

    async def cleanup(self, conn: ConnT) -> None:
        return None
