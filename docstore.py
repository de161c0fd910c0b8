"""Hierarchical document store on top of SQLAlchemy.

Documents live at even-depth paths (`teams/abc`), collections at odd-depth
paths (`teams/abc/employees`). Deleting a document does not touch its
sub-collections. Listeners are notified on the running event loop, never
from inside the write that caused the change.
"""

import asyncio
import logging
import secrets
import string
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from models import Document

logger = logging.getLogger(__name__)

ID_ALPHABET = string.ascii_letters + string.digits
ID_LENGTH = 20

READ_OPS = ("get", "list")
WRITE_OPS = ("create", "update", "delete")


class DocumentStoreError(Exception):
    def __init__(self, message: str, path: str = "", operation: str = ""):
        super().__init__(message)
        self.path = path
        self.operation = operation


class PermissionDenied(DocumentStoreError):
    def __init__(self, path: str, operation: str):
        super().__init__(f"permission denied: {operation} {path}", path, operation)


class DocumentNotFound(DocumentStoreError):
    def __init__(self, path: str, operation: str = "update"):
        super().__init__(f"no document at {path}", path, operation)


def new_id() -> str:
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))


def split_path(doc_path: str) -> Tuple[str, str]:
    """'teams/a/employees/b' -> ('teams/a/employees', 'b')"""
    parts = doc_path.strip("/").split("/")
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"not a document path: {doc_path!r}")
    return "/".join(parts[:-1]), parts[-1]


def _check_collection(path: str) -> str:
    path = path.strip("/")
    if not path or len(path.split("/")) % 2 == 0:
        raise ValueError(f"not a collection path: {path!r}")
    return path


@dataclass(frozen=True)
class DocumentSnapshot:
    id: str
    path: str
    data: Dict[str, Any]


@dataclass(frozen=True)
class QuerySnapshot:
    path: str
    docs: Tuple[DocumentSnapshot, ...] = ()
    from_cache: bool = False

    @property
    def empty(self) -> bool:
        return not self.docs

    @property
    def size(self) -> int:
        return len(self.docs)

    def __iter__(self) -> Iterator[DocumentSnapshot]:
        return iter(self.docs)


@dataclass
class _Listener:
    path: str
    on_snapshot: Callable[[QuerySnapshot], None]
    on_error: Optional[Callable[[DocumentStoreError], None]]
    active: bool = True
    pending: bool = False


@dataclass
class _Op:
    kind: str                     # set | merge | update | delete
    path: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def operation(self) -> str:
        return {"set": "create", "merge": "update"}.get(self.kind, self.kind)


class WriteBatch:
    """Collects writes and applies them in one transaction on commit()."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._ops: List[_Op] = []
        self._committed = False

    def __len__(self):
        return len(self._ops)

    def set(self, doc_path: str, data: Dict[str, Any], merge: bool = False) -> "WriteBatch":
        split_path(doc_path)
        self._ops.append(_Op("merge" if merge else "set", doc_path, dict(data)))
        return self

    def create(self, collection_path: str, data: Dict[str, Any]) -> str:
        """Queue a new document under a fresh id and return that id."""
        doc_id = new_id()
        self.set(f"{_check_collection(collection_path)}/{doc_id}", data)
        return doc_id

    def update(self, doc_path: str, data: Dict[str, Any]) -> "WriteBatch":
        split_path(doc_path)
        self._ops.append(_Op("update", doc_path, dict(data)))
        return self

    def delete(self, doc_path: str) -> "WriteBatch":
        split_path(doc_path)
        self._ops.append(_Op("delete", doc_path))
        return self

    async def commit(self) -> None:
        if self._committed:
            raise DocumentStoreError("batch already committed", operation="write")
        self._committed = True
        if self._ops:
            self._store._apply(self._ops)


class DocumentStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._listeners: List[_Listener] = []
        self._denied: List[Tuple[str, frozenset]] = []
        self._cache: Dict[str, QuerySnapshot] = {}
        self._scheduled = 0
        self.write_count = 0

    # access rules

    def deny(self, prefix: str, operations: Iterable[str] = READ_OPS + WRITE_OPS) -> None:
        ops = set()
        for op in operations:
            ops.update({"read": READ_OPS, "write": WRITE_OPS}.get(op, (op,)))
        self._denied.append((prefix.strip("/"), frozenset(ops)))

    def allow_all(self) -> None:
        self._denied.clear()

    def _check(self, path: str, operation: str) -> None:
        path = path.strip("/")
        for prefix, ops in self._denied:
            if operation in ops and (path == prefix or path.startswith(prefix + "/")):
                raise PermissionDenied(path, operation)

    # reads

    def _query(self, collection_path: str) -> QuerySnapshot:
        with self._session_factory() as db:
            rows = (db.query(Document)
                    .filter(Document.collection == collection_path)
                    .order_by(Document.doc_id.asc())
                    .all())
            docs = tuple(DocumentSnapshot(r.doc_id, r.path, dict(r.data or {})) for r in rows)
        return QuerySnapshot(collection_path, docs)

    async def get(self, collection_path: str, source: str = "server") -> QuerySnapshot:
        """Read a collection. source='cache' may answer from the last delivered snapshot."""
        collection_path = _check_collection(collection_path)
        self._check(collection_path, "list")
        if source == "cache" and collection_path in self._cache:
            cached = self._cache[collection_path]
            return QuerySnapshot(cached.path, cached.docs, from_cache=True)
        try:
            return self._query(collection_path)
        except SQLAlchemyError as e:
            raise DocumentStoreError(str(e), collection_path, "list") from e

    async def get_document(self, doc_path: str) -> Optional[DocumentSnapshot]:
        split_path(doc_path)
        self._check(doc_path, "get")
        with self._session_factory() as db:
            row = db.get(Document, doc_path.strip("/"))
            if row is None:
                return None
            return DocumentSnapshot(row.doc_id, row.path, dict(row.data or {}))

    # writes

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def add(self, collection_path: str, data: Dict[str, Any]) -> str:
        b = self.batch()
        doc_id = b.create(collection_path, data)
        await b.commit()
        return doc_id

    async def set(self, doc_path: str, data: Dict[str, Any], merge: bool = False) -> None:
        await self.batch().set(doc_path, data, merge=merge).commit()

    async def update(self, doc_path: str, data: Dict[str, Any]) -> None:
        await self.batch().update(doc_path, data).commit()

    async def delete(self, doc_path: str) -> None:
        await self.batch().delete(doc_path).commit()

    def _apply(self, ops: List[_Op]) -> None:
        # rules are checked up front so a denied op leaves the batch unapplied
        for op in ops:
            self._check(op.path, op.operation)

        touched = set()
        with self._session_factory() as db:
            try:
                for op in ops:
                    path = op.path.strip("/")
                    collection, doc_id = split_path(path)
                    row = db.get(Document, path)
                    if op.kind == "delete":
                        if row is not None:
                            db.delete(row)
                    elif op.kind == "set":
                        if row is None:
                            db.add(Document(path=path, collection=collection, doc_id=doc_id, data=dict(op.data)))
                        else:
                            row.data = dict(op.data)
                    else:
                        if row is None:
                            if op.kind == "update":
                                raise DocumentNotFound(path)
                            db.add(Document(path=path, collection=collection, doc_id=doc_id, data=dict(op.data)))
                        else:
                            row.data = {**(row.data or {}), **op.data}
                    db.flush()
                    touched.add(collection)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise DocumentStoreError(str(e), ops[0].path, "write") from e
            except DocumentStoreError:
                db.rollback()
                raise

        self.write_count += len(ops)
        logger.debug("committed %d write(s) touching %s", len(ops), sorted(touched))
        self._notify(touched)

    # subscriptions

    def subscribe(
        self,
        collection_path: str,
        on_snapshot: Callable[[QuerySnapshot], None],
        on_error: Optional[Callable[[DocumentStoreError], None]] = None,
    ) -> Callable[[], None]:
        """Listen to a collection. The first snapshot arrives on the next loop turn."""
        listener = _Listener(_check_collection(collection_path), on_snapshot, on_error)
        self._schedule(listener)
        self._listeners.append(listener)

        def unsubscribe():
            listener.active = False
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self, collections: Iterable[str]) -> None:
        collections = set(collections)
        for listener in list(self._listeners):
            if listener.path in collections:
                self._schedule(listener)

    def _schedule(self, listener: _Listener) -> None:
        # a pending delivery reads the latest state anyway
        if listener.pending:
            return
        loop = asyncio.get_running_loop()
        listener.pending = True
        self._scheduled += 1
        loop.call_soon(self._deliver, listener)

    def _deliver(self, listener: _Listener) -> None:
        self._scheduled -= 1
        listener.pending = False
        if not listener.active:
            return
        try:
            self._check(listener.path, "list")
            snapshot = self._query(listener.path)
        except (DocumentStoreError, SQLAlchemyError) as e:
            error = e if isinstance(e, DocumentStoreError) else DocumentStoreError(str(e), listener.path, "list")
            # a failed listener is dead, same as a rejected watch stream
            listener.active = False
            if listener in self._listeners:
                self._listeners.remove(listener)
            if listener.on_error is not None:
                listener.on_error(error)
            else:
                logger.error("unhandled snapshot error on %s: %s", listener.path, error)
            return
        self._cache[listener.path] = snapshot
        listener.on_snapshot(snapshot)

    async def drain(self, max_rounds: int = 10_000) -> None:
        """Yield to the loop until no snapshot delivery is pending."""
        for _ in range(max_rounds):
            if not self._scheduled:
                return
            await asyncio.sleep(0)
        raise RuntimeError("snapshot deliveries did not settle")
