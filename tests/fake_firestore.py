"""In-memory stand-in for the handful of Firestore client calls the app makes."""
import itertools
import threading
from datetime import datetime, timezone

from firebase_admin import firestore
from google.api_core.exceptions import NotFound

FIXED_SERVER_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

_ids = itertools.count(1)


def _resolve(existing, value):
    if value is firestore.SERVER_TIMESTAMP:
        return FIXED_SERVER_TIME
    if isinstance(value, firestore.Increment):
        return (existing or 0) + value.value
    return value


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None

    def get(self, field):
        return self._data.get(field)


class FakeDocumentRef:
    def __init__(self, client, collection, doc_id):
        self._client = client
        self._collection = collection
        self.id = doc_id

    @property
    def _store(self):
        return self._client.data.setdefault(self._collection, {})

    def get(self, transaction=None):
        data = self._store.get(self.id)
        return FakeSnapshot(self, dict(data) if data is not None else None)

    def set(self, data, merge=False):
        current = dict(self._store.get(self.id) or {}) if merge else {}
        for key, value in data.items():
            current[key] = _resolve(current.get(key), value)
        self._store[self.id] = current

    def update(self, data):
        if self.id not in self._store:
            raise NotFound(f"No document to update: {self._collection}/{self.id}")
        self.set(data, merge=True)

    def delete(self):
        self._store.pop(self.id, None)


class FakeQuery:
    def __init__(self, client, collection, filters=(), order=None, max_results=None):
        self._client = client
        self._collection = collection
        self._filters = list(filters)
        self._order = order
        self._limit = max_results

    def where(self, field, op, value):
        assert op == '==', f"unsupported operator {op}"
        return FakeQuery(self._client, self._collection, self._filters + [(field, value)], self._order, self._limit)

    def order_by(self, field, direction='ASCENDING'):
        return FakeQuery(self._client, self._collection, self._filters, (field, direction), self._limit)

    def limit(self, count):
        return FakeQuery(self._client, self._collection, self._filters, self._order, count)

    def stream(self, transaction=None):
        store = self._client.data.get(self._collection, {})
        snapshots = []
        for doc_id, data in store.items():
            if all(data.get(field) == value for field, value in self._filters):
                ref = FakeDocumentRef(self._client, self._collection, doc_id)
                snapshots.append(FakeSnapshot(ref, dict(data)))
        if self._order:
            field, direction = self._order
            snapshots.sort(key=lambda s: (s.to_dict().get(field) is None, s.to_dict().get(field)),
                           reverse=direction == firestore.Query.DESCENDING)
        if self._limit is not None:
            snapshots = snapshots[:self._limit]
        return iter(snapshots)

    def get(self, transaction=None):
        return list(self.stream())


class FakeCollection(FakeQuery):
    def document(self, doc_id=None):
        if doc_id is None:
            doc_id = f"{self._collection}-{next(_ids)}"
        return FakeDocumentRef(self._client, self._collection, doc_id)

    def add(self, data):
        ref = self.document()
        ref.set(data)
        return FIXED_SERVER_TIME, ref


class FakeBatch:
    def __init__(self):
        self._ops = []
        self.committed = False

    def set(self, ref, data, merge=False):
        self._ops.append(lambda: ref.set(data, merge=merge))

    def update(self, ref, data):
        self._ops.append(lambda: ref.update(data))

    def delete(self, ref):
        self._ops.append(ref.delete)

    def commit(self):
        for op in self._ops:
            op()
        self.committed = True


class FakeFirestore:
    def __init__(self, data=None):
        self.data = data or {}

    def collection(self, name):
        return FakeCollection(self, name)

    def batch(self):
        return FakeBatch()

    def transaction(self):
        return FakeTransaction()


class FakeTransaction(FakeBatch):
    """Writes are buffered and applied on commit, like a batch."""


_transaction_lock = threading.RLock()


def transactional(fn):
    """Runs the wrapped function and its commit as one step, so concurrent transactions behave as if serialized."""
    def run(transaction, *args, **kwargs):
        with _transaction_lock:
            result = fn(transaction, *args, **kwargs)
            transaction.commit()
        return result
    return run
