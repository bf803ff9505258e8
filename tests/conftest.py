import copy
import io
import itertools

import pytest
from reportlab.pdfgen import canvas

from quizhub import runtime as app_module


class FakeIncrement:
    def __init__(self, value):
        self.value = value


_DELETE = object()


class FakeFirestoreModule:
    """Stands in for ``firebase_admin.firestore`` inside handlers and services."""

    DELETE_FIELD = _DELETE
    Increment = FakeIncrement

    @staticmethod
    def transactional(fn):
        def wrapper(txn, *args, **kwargs):
            result = fn(txn, *args, **kwargs)
            txn.commit()
            return result

        return wrapper


def _get_path(data, field_path):
    current = data
    for part in field_path.split('.'):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def _apply_value(current, value):
    if isinstance(value, FakeIncrement):
        return (current or 0) + value.value
    return copy.deepcopy(value)


def _apply_updates(data, updates):
    for key, value in updates.items():
        parts = key.split('.')
        target = data
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        if value is _DELETE:
            target.pop(parts[-1], None)
        else:
            target[parts[-1]] = _apply_value(target.get(parts[-1]), value)


def _merge(existing, data):
    for key, value in data.items():
        if value is _DELETE:
            existing.pop(key, None)
        elif isinstance(value, dict) and isinstance(existing.get(key), dict):
            _merge(existing[key], value)
        else:
            existing[key] = _apply_value(existing.get(key), value)


class FakeSnapshot:
    def __init__(self, ref, data):
        self.reference = ref
        self.id = ref.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None

    def get(self, field_path):
        return _get_path(self._data or {}, field_path)


class FakeDocumentRef:
    def __init__(self, db, path):
        self._db = db
        self.path = path
        self.id = path[-1]

    def collection(self, name):
        return FakeCollection(self._db, self.path + (name,))

    def get(self, transaction=None):
        return FakeSnapshot(self, copy.deepcopy(self._db.docs.get(self.path)))

    def set(self, data, merge=False):
        self._db.writes.append(('set', self.path))
        if merge and self.path in self._db.docs:
            _merge(self._db.docs[self.path], data)
        else:
            fresh = {}
            _merge(fresh, data)
            self._db.docs[self.path] = fresh

    def update(self, data):
        if self.path not in self._db.docs:
            raise KeyError(f"No document to update: {'/'.join(self.path)}")
        self._db.writes.append(('update', self.path))
        _apply_updates(self._db.docs[self.path], data)

    def delete(self):
        self._db.writes.append(('delete', self.path))
        self._db.docs.pop(self.path, None)


class FakeQuery:
    def __init__(self, db, path, filters=(), orders=(), limit_count=None, cursor_id=None):
        self._db = db
        self._path = path
        self._filters = tuple(filters)
        self._orders = tuple(orders)
        self._limit = limit_count
        self._cursor_id = cursor_id

    def _copy(self, **changes):
        state = {
            'filters': self._filters,
            'orders': self._orders,
            'limit_count': self._limit,
            'cursor_id': self._cursor_id,
        }
        state.update(changes)
        return FakeQuery(self._db, self._path, **state)

    def where(self, field_path, op_string, value):
        return self._copy(filters=self._filters + ((field_path, op_string, value),))

    def order_by(self, field_path, direction='ASCENDING'):
        return self._copy(orders=self._orders + ((field_path, direction),))

    def limit(self, count):
        return self._copy(limit_count=count)

    def start_after(self, snapshot):
        return self._copy(cursor_id=snapshot.id)

    def find_nearest(self, vector_field, query_vector, distance_measure, limit):
        return self._copy(limit_count=limit)

    @staticmethod
    def _matches(data, field_path, op_string, value):
        actual = _get_path(data, field_path)
        if op_string == '==':
            return actual == value
        if op_string == 'in':
            return actual in value
        if op_string == 'array-contains':
            return isinstance(actual, list) and value in actual
        if actual is None:
            return False
        if op_string == '>':
            return actual > value
        if op_string == '>=':
            return actual >= value
        if op_string == '<':
            return actual < value
        if op_string == '<=':
            return actual <= value
        raise ValueError(f"Unsupported operator {op_string}")

    def _snapshots(self):
        depth = len(self._path) + 1
        snapshots = []
        for path, data in list(self._db.docs.items()):
            if len(path) != depth or path[:-1] != self._path:
                continue
            if all(self._matches(data, *condition) for condition in self._filters):
                snapshots.append(FakeSnapshot(FakeDocumentRef(self._db, path), copy.deepcopy(data)))
        for field_path, direction in reversed(self._orders):
            if field_path == '__name__':
                snapshots.sort(key=lambda snap: snap.id, reverse=direction == 'DESCENDING')
                continue
            present = [snap for snap in snapshots if _get_path(snap._data, field_path) is not None]
            present.sort(key=lambda snap: _get_path(snap._data, field_path), reverse=direction == 'DESCENDING')
            snapshots = present
        if self._cursor_id is not None:
            ids = [snap.id for snap in snapshots]
            if self._cursor_id in ids:
                snapshots = snapshots[ids.index(self._cursor_id) + 1:]
        if self._limit is not None:
            snapshots = snapshots[:self._limit]
        return snapshots

    def stream(self):
        return iter(self._snapshots())

    def get(self):
        return self._snapshots()


class FakeCollection(FakeQuery):
    def __init__(self, db, path):
        super().__init__(db, path)
        self.id = path[-1]

    def document(self, document_id=None):
        if document_id is None:
            document_id = f"auto-{next(self._db.id_counter)}"
        return FakeDocumentRef(self._db, self._path + (document_id,))


class FakeWriteGroup:
    def __init__(self, db):
        self._db = db
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
        self._ops = []
        self.committed = True
        self._db.commits += 1


class FakeFirestore:
    def __init__(self, docs=None):
        self.docs = {}
        self.writes = []
        self.commits = 0
        self.id_counter = itertools.count(1)
        for path, data in (docs or {}).items():
            self.docs[tuple(path.split('/'))] = copy.deepcopy(data)

    def collection(self, name):
        return FakeCollection(self, (name,))

    def batch(self):
        return FakeWriteGroup(self)

    def transaction(self):
        return FakeWriteGroup(self)

    def data(self, path):
        return self.docs.get(tuple(path.split('/')))


class _FakeReply:
    def __init__(self, text):
        self.text = text


class _FakeEmbedding:
    def __init__(self, values):
        self.values = values


class _FakeEmbedResult:
    def __init__(self, values):
        self.embeddings = [_FakeEmbedding(values)]


class _FakeModels:
    def __init__(self, owner):
        self._owner = owner

    def _next_reply(self):
        reply = self._owner.replies.pop(0) if self._owner.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply

    def generate_content(self, model, contents, config=None):
        self._owner.calls.append({"model": model, "contents": contents, "config": config})
        return _FakeReply(self._next_reply())

    def generate_content_stream(self, model, contents, config=None):
        self._owner.calls.append({"model": model, "contents": contents, "config": config})
        for chunk in self._next_reply():
            yield _FakeReply(chunk)

    def embed_content(self, model, contents, config=None):
        self._owner.embedded.append(contents)
        return _FakeEmbedResult(list(self._owner.embedding))


class FakeGeminiClient:
    """Queued replies for ``client.models``; a list reply is streamed chunk by chunk."""

    def __init__(self, replies=None, embedding=(0.1, 0.2, 0.3)):
        self.replies = list(replies or [])
        self.embedding = embedding
        self.calls = []
        self.embedded = []
        self.models = _FakeModels(self)


@pytest.fixture()
def fake_firestore():
    return FakeFirestoreModule


@pytest.fixture()
def make_db():
    return FakeFirestore


@pytest.fixture()
def client():
    app_module.app.config["TESTING"] = True
    app_module.TUTOR_RESPONSE_CACHE.clear()
    app_module.EMBEDDING_CACHE.clear()
    app_module.RATE_LIMIT_WINDOWS.clear()
    with app_module.app.test_client() as test_client:
        yield test_client
    app_module.TUTOR_RESPONSE_CACHE.clear()
    app_module.EMBEDDING_CACHE.clear()
    app_module.RATE_LIMIT_WINDOWS.clear()


@pytest.fixture(autouse=True)
def disable_sentry(monkeypatch):
    monkeypatch.setattr(app_module, "sentry_sdk", None)


@pytest.fixture()
def allow_all_rate_limits(monkeypatch):
    monkeypatch.setattr(app_module, "check_rate_limit", lambda **_kwargs: (True, 0))


@pytest.fixture()
def as_role(monkeypatch):
    """Patch ``authorize_request`` so the caller holds the given role."""
    levels = {'user': 0, 'staff': 1, 'admin': 2, 'superadmin': 3}
    role_levels = {'student': 0, 'teacher': 1, 'admin': 2, 'superadmin': 3}

    def _apply(role, uid='u-test'):
        def _authorize(_request, level):
            if role is None:
                return None, ('Unauthorized', 401)
            if role_levels[role] < levels[level]:
                return None, ('Forbidden', 403)
            return {
                'uid': uid,
                'email': f"{uid}@example.com",
                'user': {'role': role},
                'role': role,
                'isSuperadmin': role == 'superadmin',
                'isAdmin': role in ('admin', 'superadmin'),
                'isTeacher': role == 'teacher',
                'isStaff': role in ('teacher', 'admin', 'superadmin'),
            }, None

        monkeypatch.setattr(app_module, "authorize_request", _authorize)

    return _apply


@pytest.fixture()
def make_gemini():
    return FakeGeminiClient


@pytest.fixture()
def make_pdf():
    """Build a small PDF with one line of text per page."""

    def _build(*page_texts):
        buffer = io.BytesIO()
        pdf = canvas.Canvas(buffer)
        for text in page_texts:
            pdf.drawString(72, 720, text)
            pdf.showPage()
        pdf.save()
        return buffer.getvalue()

    return _build
