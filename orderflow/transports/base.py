"""Interface shared by event transports."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import StageChangedEvent

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Publishes stage-changed events and hands them to consumers.

    ``RawMessageT`` is whatever the broker gives back for a delivery; consumers
    pass it to :meth:`ack` once the event has been handled.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, event: StageChangedEvent) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, StageChangedEvent]]:
        """Yield ``(raw, event)`` pairs until ``lifespan`` seconds pass.

        With no ``lifespan`` the iterator runs until the caller stops it.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        raise NotImplementedError
