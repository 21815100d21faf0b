# ora_backend/conftest.py
"""
테스트 공용 픽스처

실제 Firebase 프로젝트 없이 서비스 계층을 검증하기 위해
- 메모리 기반 Firestore 대역(FakeFirestore)
- FCM 멀티캐스트 대역(FakeMessagingGateway)
을 제공합니다.

사용법: python -m pytest ora_backend -v
"""

import copy
import threading
import uuid

import pytest
from firebase_admin import firestore
from flask_jwt_extended import create_access_token

from ora_backend import create_app
from ora_backend.services.preference_service import PreferenceService
from ora_backend.services.push_service import PushService
from ora_backend.services.notification_service import NotificationService

_MISSING = object()


def _get_field(data, field_path):
    """'stats.delivered' 같은 점 표기 경로의 값을 꺼냅니다. 없으면 _MISSING."""
    value = data
    for part in field_path.split('.'):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value

def _set_field(data, field_path, value):
    parts = field_path.split('.')
    for part in parts[:-1]:
        data = data.setdefault(part, {})
    data[parts[-1]] = value

def _deep_merge(base, changes):
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base

_OPERATORS = {
    '==': lambda a, b: a == b,
    '!=': lambda a, b: a != b,
    '<': lambda a, b: a < b,
    '<=': lambda a, b: a <= b,
    '>': lambda a, b: a > b,
    '>=': lambda a, b: a >= b,
    'in': lambda a, b: a in b,
    'array_contains': lambda a, b: isinstance(a, list) and b in a,
}


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data) if self._data is not None else None


class FakeQuery:
    def __init__(self, db, collection_path, filters=None, orders=None, limit_count=None, cursor_id=None):
        self._db = db
        self._collection_path = collection_path
        self._filters = filters or []
        self._orders = orders or []
        self._limit = limit_count
        self._cursor_id = cursor_id

    def _copy(self, **changes):
        params = dict(filters=list(self._filters), orders=list(self._orders),
                      limit_count=self._limit, cursor_id=self._cursor_id)
        params.update(changes)
        return FakeQuery(self._db, self._collection_path, **params)

    def where(self, field_path, op_string, value):
        if op_string not in _OPERATORS:
            raise ValueError(f"지원하지 않는 연산자: {op_string}")
        return self._copy(filters=self._filters + [(field_path, op_string, value)])

    def order_by(self, field_path, direction='ASCENDING'):
        return self._copy(orders=self._orders + [(field_path, direction)])

    def limit(self, count):
        return self._copy(limit_count=count)

    def start_after(self, snapshot):
        return self._copy(cursor_id=snapshot.id)

    def stream(self, transaction=None):
        rows = self._db._list_collection(self._collection_path)

        for field_path, op_string, value in self._filters:
            rows = [(doc_id, data) for doc_id, data in rows
                    if _get_field(data, field_path) is not _MISSING
                    and _OPERATORS[op_string](_get_field(data, field_path), value)]

        # 정렬 필드가 없는 문서는 결과에서 제외됨
        for field_path, _ in self._orders:
            rows = [(doc_id, data) for doc_id, data in rows if _get_field(data, field_path) is not _MISSING]
        for field_path, direction in reversed(self._orders):
            rows.sort(key=lambda row: _get_field(row[1], field_path), reverse=direction == 'DESCENDING')

        if self._cursor_id is not None:
            ids = [doc_id for doc_id, _ in rows]
            if self._cursor_id in ids:
                rows = rows[ids.index(self._cursor_id) + 1:]

        if self._limit is not None:
            rows = rows[:self._limit]

        for doc_id, data in rows:
            yield FakeSnapshot(FakeDocumentReference(self._db, self._collection_path + (doc_id,)), data)

    def get(self, transaction=None):
        return list(self.stream(transaction=transaction))


class FakeCollectionReference(FakeQuery):
    def __init__(self, db, path):
        super().__init__(db, path)
        self.id = path[-1]

    def document(self, document_id=None):
        document_id = document_id or uuid.uuid4().hex[:20]
        return FakeDocumentReference(self._db, self._collection_path + (document_id,))


class FakeDocumentReference:
    def __init__(self, db, path):
        self._db = db
        self._path = path
        self.id = path[-1]

    @property
    def path(self):
        return '/'.join(self._path)

    def collection(self, collection_id):
        return FakeCollectionReference(self._db, self._path + (collection_id,))

    def get(self, transaction=None):
        return FakeSnapshot(self, self._db._read(self._path))

    def set(self, document_data, merge=False):
        self._db._write_set(self._path, document_data, merge)

    def update(self, field_updates):
        self._db._write_update(self._path, field_updates)

    def delete(self):
        self._db._write_delete(self._path)


class FakeWriteBatch:
    """commit() 호출 전까지 쓰기를 모아 두었다가 한 번에 적용합니다."""
    def __init__(self, db):
        self._db = db
        self._writes = []

    def set(self, reference, document_data, merge=False):
        self._writes.append(lambda: reference.set(document_data, merge=merge))

    def update(self, reference, field_updates):
        self._writes.append(lambda: reference.update(field_updates))

    def delete(self, reference):
        self._writes.append(reference.delete)

    def commit(self):
        with self._db._lock:
            for write in self._writes:
                write()
            self._db.batch_sizes.append(len(self._writes))
        self._writes = []


class FakeTransaction(FakeWriteBatch):
    """transactional 데코레이터를 우회하므로 쓰기를 즉시 적용합니다."""
    def set(self, reference, document_data, merge=False):
        reference.set(document_data, merge=merge)

    def update(self, reference, field_updates):
        reference.update(field_updates)

    def delete(self, reference):
        reference.delete()


class FakeFirestore:
    """firebase_admin.firestore.client() 가 반환하는 클라이언트의 메모리 대역"""
    def __init__(self):
        self._docs = {}
        self._lock = threading.RLock()
        # 커밋된 batch 별 쓰기 건수
        self.batch_sizes = []

    def collection(self, collection_id):
        return FakeCollectionReference(self, (collection_id,))

    def batch(self):
        return FakeWriteBatch(self)

    def transaction(self):
        return FakeTransaction(self)

    def _read(self, path):
        with self._lock:
            data = self._docs.get(path)
            return copy.deepcopy(data) if data is not None else None

    def _list_collection(self, collection_path):
        with self._lock:
            return [(path[-1], copy.deepcopy(data)) for path, data in self._docs.items()
                    if len(path) == len(collection_path) + 1 and path[:-1] == collection_path]

    def _write_set(self, path, document_data, merge):
        with self._lock:
            if merge and path in self._docs:
                _deep_merge(self._docs[path], document_data)
            else:
                self._docs[path] = copy.deepcopy(document_data)

    def _write_update(self, path, field_updates):
        with self._lock:
            if path not in self._docs:
                raise KeyError(f"갱신할 문서가 없습니다: {'/'.join(path)}")
            for field_path, value in field_updates.items():
                _set_field(self._docs[path], field_path, copy.deepcopy(value))

    def _write_delete(self, path):
        with self._lock:
            self._docs.pop(path, None)


class FakeSendResponse:
    def __init__(self, exception=None):
        self.exception = exception

    @property
    def success(self):
        return self.exception is None


class FakeBatchResponse:
    def __init__(self, responses):
        self.responses = responses

    @property
    def success_count(self):
        return len([r for r in self.responses if r.success])

    @property
    def failure_count(self):
        return len(self.responses) - self.success_count


class FakeMessagingGateway:
    """
    MessagingGateway 대역. 호출 내역을 기록하고,
    token_errors 에 등록된 토큰은 해당 예외로 실패시킵니다.
    """
    def __init__(self):
        self.calls = []
        self.token_errors = {}
        self.raise_error = None
        self._lock = threading.Lock()

    def send_multicast(self, tokens, title, body, data, image_url=None):
        with self._lock:
            self.calls.append({'tokens': list(tokens), 'title': title, 'body': body,
                               'data': dict(data), 'image_url': image_url})
        if self.raise_error is not None:
            raise self.raise_error
        return FakeBatchResponse([FakeSendResponse(self.token_errors.get(t)) for t in tokens])


# =====================================================================================
# 픽스처
# =====================================================================================

@pytest.fixture(autouse=True)
def run_transactions_inline(monkeypatch):
    """재시도/커밋 로직이 있는 실제 transactional 데코레이터 대신 함수를 그대로 실행합니다."""
    monkeypatch.setattr(firestore, 'transactional', lambda to_wrap: to_wrap)

@pytest.fixture
def db():
    return FakeFirestore()

@pytest.fixture
def gateway():
    return FakeMessagingGateway()

@pytest.fixture
def preference_service(db):
    return PreferenceService(db=db)

@pytest.fixture
def push_service(db, gateway, preference_service):
    return PushService(preference_service, gateway=gateway, db=db, batch_delay_seconds=0)

@pytest.fixture
def notification_service(db, push_service, preference_service):
    return NotificationService(db=db, push_service=push_service, preference_service=preference_service)

@pytest.fixture
def app(db, gateway):
    return create_app('testing', db=db, gateway=gateway)

@pytest.fixture
def client(app):
    return app.test_client()

@pytest.fixture
def auth_headers(app):
    """user_id 로 서명된 Authorization 헤더를 만드는 함수를 반환합니다."""
    def _make(user_id):
        with app.app_context():
            token = create_access_token(identity=user_id)
        return {'Authorization': f'Bearer {token}'}
    return _make

@pytest.fixture
def add_user(db):
    def _add(user_id, username=None, is_admin=False, **extra):
        data = {'username': username or user_id, 'is_admin': is_admin}
        data.update(extra)
        db.collection('users').document(user_id).set(data)
        return user_id
    return _add

@pytest.fixture
def add_token(push_service):
    def _add(user_id, token, platform='ios'):
        push_service.register_token(user_id, token, platform)
        return token
    return _add
