import logging
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


class StoreAccessError(Exception):
    kind = "store-error"

    def __init__(self, path: str, operation: str, request_data: Optional[Any] = None, cause: Optional[BaseException] = None):
        self.path = path
        self.operation = operation
        self.request_data = request_data
        self.cause = cause
        super().__init__(f"{self.kind}: {operation} on {path}" + (f" ({cause})" if cause else ""))

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "path": self.path,
            "operation": self.operation,
            "requestData": self.request_data,
        }


class SeedingFailure(StoreAccessError):
    kind = "seeding-failure"


class SnapshotError(StoreAccessError):
    kind = "snapshot-error"


class WriteRejected(StoreAccessError):
    kind = "write-rejected"


Listener = Callable[[StoreAccessError], None]


class ErrorChannel:
    """Observer hub for store errors; one per provider, not a module global."""

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def emit(self, error: StoreAccessError) -> None:
        logger.warning("%s", error)
        for listener in list(self._listeners):
            try:
                listener(error)
            except Exception:
                logger.exception("error listener %r failed", listener)
