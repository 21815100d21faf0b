# ora_backend/services/test_notification_service.py
"""
알림 집계 서비스 테스트

사용법: python -m pytest ora_backend/services/test_notification_service.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from ora_backend.models.notification import ActorInfo, NotificationType
from ora_backend.services.notification_service import format_notification_message
from ora_backend.utils.datetime_utils import DateTimeUtils

RECIPIENT = 'owner'
POST_ID = 'post_1'


@pytest.fixture
def clock(monkeypatch):
    """DateTimeUtils.now() 가 반환할 시각을 테스트에서 조절합니다."""
    state = {'now': datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)}

    def advance(**kwargs):
        state['now'] = state['now'] + timedelta(**kwargs)
        return state['now']

    monkeypatch.setattr(DateTimeUtils, 'now', staticmethod(lambda: state['now']))
    return advance

@pytest.fixture
def users(add_user):
    for name in ('owner', 'ann', 'bob', 'cat', 'dan'):
        add_user(name, username=name.capitalize())

def _notifications(db, user_id=RECIPIENT):
    return [doc.to_dict() for doc in db.collection('users').document(user_id).collection('notifications').stream()]

def _actors(*names):
    return [ActorInfo(id=n.lower(), username=n) for n in names]


# --- 문구 생성 ---

def test_format_message_tiers():
    assert format_notification_message(NotificationType.LIKE, [], 0) == "Someone interacted with your post"
    assert format_notification_message(NotificationType.LIKE, _actors('Ann'), 1) == "Ann liked your post"
    assert format_notification_message(NotificationType.LIKE, _actors('Ann', 'Bob'), 2) == "Ann and Bob liked your post"
    assert format_notification_message(NotificationType.LIKE, _actors('Ann', 'Bob'), 3) == "Ann, Bob, and 1 other liked your post"
    assert format_notification_message(NotificationType.LIKE, _actors('Ann', 'Bob', 'Cat'), 7) == "Ann, Bob, and 5 others liked your post"

def test_format_message_fallback_when_actor_list_is_short():
    assert format_notification_message(NotificationType.COMMENT, _actors('Ann'), 3) == "Ann and 2 others interacted with your post"
    assert format_notification_message(NotificationType.COMMENT, _actors('Ann'), 2) == "Ann and 1 other interacted with your post"

def test_format_message_per_type():
    actors = _actors('Ann')
    messages = {
        NotificationType.LIKE: "Ann liked your post",
        NotificationType.COMMENT: "Ann commented on your post",
        NotificationType.FOLLOW: "Ann started following you",
        NotificationType.MENTION: "Ann mentioned you",
    }
    for n_type, expected in messages.items():
        assert format_notification_message(n_type, actors, 1) == expected
    assert len(set(messages.values())) == 4

def test_format_message_is_deterministic():
    actors = _actors('Ann', 'Bob')
    first = format_notification_message(NotificationType.MENTION, actors, 5)
    assert all(format_notification_message(NotificationType.MENTION, actors, 5) == first for _ in range(3))


# --- 이벤트 기록 및 집계 ---

def test_self_action_creates_nothing(notification_service, db, users):
    assert notification_service.record_event('like', 'ann', 'ann', POST_ID) is None
    assert _notifications(db, 'ann') == []

def test_invalid_event_raises(notification_service, users):
    with pytest.raises(ValueError):
        notification_service.record_event('poke', RECIPIENT, 'ann', POST_ID)
    with pytest.raises(ValueError):
        notification_service.record_event('post_approved', RECIPIENT, 'ann', POST_ID)
    with pytest.raises(ValueError):
        notification_service.record_event('like', RECIPIENT, 'ann', '')

def test_missing_actor_profile_drops_event(notification_service, db, users):
    assert notification_service.record_event('like', RECIPIENT, 'ghost', POST_ID) is None
    assert _notifications(db) == []

def test_actor_lookup_failure_drops_event(notification_service, db, users, monkeypatch):
    class UnavailableRef:
        def get(self, transaction=None):
            raise RuntimeError("Firestore 일시 장애")

    document = notification_service.users_ref.document
    monkeypatch.setattr(notification_service.users_ref, 'document',
                        lambda doc_id=None: UnavailableRef() if doc_id == 'ann' else document(doc_id))

    assert notification_service.record_event('like', RECIPIENT, 'ann', POST_ID) is None
    assert _notifications(db) == []

def test_end_to_end_aggregation_and_window(notification_service, db, users, clock):
    first_id = notification_service.record_event('like', RECIPIENT, 'ann', POST_ID)
    assert first_id is not None
    [record] = _notifications(db)
    assert record['type'] == 'like'
    assert record['target_id'] == POST_ID
    assert record['actor_count'] == 1
    assert record['message'] == "Ann liked your post"
    assert record['is_read'] is False

    clock(minutes=30)
    assert notification_service.record_event('like', RECIPIENT, 'bob', POST_ID) is None
    [record] = _notifications(db)
    assert record['actor_count'] == 2
    assert [a['username'] for a in record['actors']] == ['Ann', 'Bob']
    assert record['message'] == "Ann and Bob liked your post"

    # 마지막 활동으로부터 1시간이 지나면 새 알림
    clock(minutes=61)
    second_id = notification_service.record_event('like', RECIPIENT, 'cat', POST_ID)
    assert second_id is not None and second_id != first_id
    assert len(_notifications(db)) == 2

def test_window_is_measured_from_last_activity(notification_service, db, users, clock):
    notification_service.record_event('like', RECIPIENT, 'ann', POST_ID)
    clock(minutes=50)
    notification_service.record_event('like', RECIPIENT, 'bob', POST_ID)
    clock(minutes=50)
    assert notification_service.record_event('like', RECIPIENT, 'cat', POST_ID) is None
    [record] = _notifications(db)
    assert record['actor_count'] == 3

def test_duplicate_actor_is_not_counted_again(notification_service, db, users):
    notification_service.record_event('like', RECIPIENT, 'ann', POST_ID)
    notification_service.record_event('like', RECIPIENT, 'bob', POST_ID)
    # 같은 행위자의 반복 이벤트는 집계되지 않고 새 알림을 만듭니다.
    repeat_id = notification_service.record_event('like', RECIPIENT, 'ann', POST_ID)
    assert repeat_id is not None

    records = sorted(_notifications(db), key=lambda r: r['actor_count'])
    assert [r['actor_count'] for r in records] == [1, 2]
    assert all(len({a['id'] for a in r['actors']}) == len(r['actors']) for r in records)

def test_newest_open_record_receives_new_actor(notification_service, db, users, clock):
    notification_service.record_event('like', RECIPIENT, 'ann', POST_ID)
    clock(minutes=1)
    notification_service.record_event('like', RECIPIENT, 'bob', POST_ID)
    clock(minutes=1)
    # ann 이 이미 포함되어 있으므로 두 번째 알림이 만들어짐
    newer_id = notification_service.record_event('like', RECIPIENT, 'ann', POST_ID)
    clock(minutes=1)

    assert notification_service.record_event('like', RECIPIENT, 'cat', POST_ID) is None

    records = {r['notification_id']: (r['actor_count'], [a['id'] for a in r['actors']]) for r in _notifications(db)}
    assert records.pop(newer_id) == (2, ['ann', 'cat'])
    assert list(records.values()) == [(2, ['ann', 'bob'])]

def test_actor_list_keeps_most_recent_three(notification_service, db, users):
    for actor in ('ann', 'bob', 'cat', 'dan'):
        notification_service.record_event('comment', RECIPIENT, actor, POST_ID)

    [record] = _notifications(db)
    assert record['actor_count'] == 4
    assert [a['id'] for a in record['actors']] == ['bob', 'cat', 'dan']
    assert record['message'] == "Bob, Cat, and 2 others commented on your post"

def test_different_type_or_target_creates_new_record(notification_service, db, users):
    notification_service.record_event('like', RECIPIENT, 'ann', POST_ID)
    notification_service.record_event('comment', RECIPIENT, 'bob', POST_ID)
    notification_service.record_event('like', RECIPIENT, 'cat', 'post_2')
    assert len(_notifications(db)) == 3

def test_read_notification_is_not_aggregated(notification_service, db, users):
    first_id = notification_service.record_event('like', RECIPIENT, 'ann', POST_ID)
    notification_service.mark_as_read(RECIPIENT, first_id)

    assert notification_service.record_event('like', RECIPIENT, 'bob', POST_ID) is not None
    assert len(_notifications(db)) == 2

def test_enrichment_only_on_new_record(notification_service, db, users):
    notification_service.record_event('like', RECIPIENT, 'ann', POST_ID,
                                      enrichment={'post_caption': 'sunset', 'post_image_url': 'https://img/1.jpg'})
    notification_service.record_event('like', RECIPIENT, 'bob', POST_ID,
                                      enrichment={'post_caption': 'changed'})
    [record] = _notifications(db)
    assert record['post_caption'] == 'sunset'
    assert record['post_image_url'] == 'https://img/1.jpg'


# --- 푸시 연동 ---

def test_notify_pushes_only_for_new_record(notification_service, gateway, users, add_token):
    add_token(RECIPIENT, 'token-owner')

    notification_service.notify('like', RECIPIENT, 'ann', POST_ID)
    notification_service.notify('like', RECIPIENT, 'bob', POST_ID)

    assert len(gateway.calls) == 1
    call = gateway.calls[0]
    assert call['tokens'] == ['token-owner']
    assert call['title'] == "New like"
    assert call['body'] == "Ann liked your post"
    assert call['data']['deep_link'] == f"ora://post/{POST_ID}"

def test_notify_respects_engagement_preference(notification_service, preference_service, gateway, users, add_token):
    add_token(RECIPIENT, 'token-owner')
    preference_service.update_preferences(RECIPIENT, {'engagement': {'likes': False}})

    assert notification_service.notify('like', RECIPIENT, 'ann', POST_ID) is not None
    assert gateway.calls == []


# --- 조회 / 읽음 처리 ---

def test_list_notifications_paginates_by_recent_activity(notification_service, users, clock):
    for target in ('p1', 'p2', 'p3'):
        notification_service.record_event('like', RECIPIENT, 'ann', target)
        clock(minutes=1)

    page, cursor = notification_service.list_notifications(RECIPIENT, 2, None)
    assert [n['target_id'] for n in page] == ['p3', 'p2']

    page, _ = notification_service.list_notifications(RECIPIENT, 2, cursor)
    assert [n['target_id'] for n in page] == ['p1']

def test_mark_as_read_unknown_notification(notification_service, users):
    with pytest.raises(LookupError):
        notification_service.mark_as_read(RECIPIENT, 'missing')

def test_mark_all_as_read_uses_bounded_batches(notification_service, db, users):
    for target in ('p1', 'p2', 'p3', 'p4', 'p5'):
        notification_service.record_event('like', RECIPIENT, 'ann', target)

    assert notification_service.mark_all_as_read(RECIPIENT, batch_size=2) == 5
    assert db.batch_sizes == [2, 2, 1]
    assert all(record['is_read'] for record in _notifications(db))
