# ora_backend/api/promotions/test_promotions.py
"""
프로모션 알림 발송 테스트

사용법: python -m pytest ora_backend/api/promotions/test_promotions.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from ora_backend.api.promotions.services import PromotionService


@pytest.fixture
def promotion_service(db, push_service, preference_service):
    return PromotionService(push_service, preference_service, db=db, in_app_batch_size=2)

@pytest.fixture
def audience(add_user, add_token, preference_service):
    """opted_in: 프로모션 수신 동의 / opted_out: 이벤트만 거부 / silent: 설정 문서 없음"""
    for user_id in ('opted_in', 'opted_out', 'silent', 'admin'):
        add_user(user_id, is_admin=user_id == 'admin')
        add_token(user_id, f'token-{user_id}')
    preference_service.update_preferences('opted_in', {'promotional': {'enabled': True}})
    preference_service.update_preferences('opted_out', {'promotional': {'enabled': True, 'events': False}})

def _promotion(db, promotion_id):
    return db.collection('promotional_notifications').document(promotion_id).get().to_dict()

def _in_app(db, user_id):
    return [doc.to_dict() for doc in db.collection('users').document(user_id).collection('notifications').stream()]


def test_absent_preferences_mean_opt_out(promotion_service, db, gateway, audience):
    result = promotion_service.create_and_send('Summer event', 'Join us', 'event',
                                               {'type': 'all'}, sent_by='admin')

    assert result['stats']['total_recipients'] == 1
    assert result['stats']['delivered'] == 1
    assert [call['tokens'] for call in gateway.calls] == [['token-opted_in']]
    assert _in_app(db, 'silent') == []
    assert _in_app(db, 'opted_out') == []

    [notification] = _in_app(db, 'opted_in')
    assert notification['category'] == 'promotional'
    assert notification['promo_title'] == 'Summer event'
    assert notification['target_id'] == result['promotion_id']

    stored = _promotion(db, result['promotion_id'])
    assert stored['status'] == 'sent'
    assert stored['stats']['total_recipients'] == 1
    assert stored['stats']['delivered'] == 1

def test_sub_type_opt_out_only_blocks_that_type(promotion_service, gateway, audience):
    result = promotion_service.create_and_send('New filters', 'Try them', 'feature_update',
                                               {'type': 'all'}, sent_by='admin')
    assert result['stats']['total_recipients'] == 2

def test_non_promotional_type_is_rejected(promotion_service):
    with pytest.raises(ValueError):
        promotion_service.create_and_send('Hi', 'There', 'like', {'type': 'all'}, sent_by='admin')

def test_target_audiences(promotion_service, db, audience):
    assert promotion_service.get_target_user_ids({'type': 'role', 'filters': {'role': 'admin'}}) == ['admin']
    assert promotion_service.get_target_user_ids({'type': 'custom', 'filters': {'user_ids': ['a', 'b']}}) == ['a', 'b']
    assert promotion_service.get_target_user_ids({'type': 'unknown'}) == []

    now = datetime.now(timezone.utc)
    db.collection('posts').document('recent').set({'user_id': 'opted_in', 'created_at': now - timedelta(days=3)})
    db.collection('posts').document('again').set({'user_id': 'opted_in', 'created_at': now - timedelta(days=1)})
    db.collection('posts').document('old').set({'user_id': 'silent', 'created_at': now - timedelta(days=90)})
    assert promotion_service.get_target_user_ids({'type': 'activity', 'filters': {'days': 30}}) == ['opted_in']

def test_in_app_notifications_are_written_in_bounded_batches(promotion_service, db, add_user, preference_service):
    for i in range(5):
        add_user(f'u{i}')
        preference_service.update_preferences(f'u{i}', {'promotional': {'enabled': True}})

    promotion_service.create_and_send('Notice', 'Maintenance tonight', 'announcement', {'type': 'all'}, sent_by='admin')

    assert db.batch_sizes == [2, 2, 1]
    assert all(len(_in_app(db, f'u{i}')) == 1 for i in range(5))


# --- 예약 발송 ---

def test_scheduled_promotion_is_dispatched_in_place(promotion_service, db, gateway, audience):
    send_at = datetime(2024, 6, 1, 9, tzinfo=timezone.utc)
    result = promotion_service.create_and_send('Summer event', 'Join us', 'event', {'type': 'all'},
                                               sent_by='admin', scheduled_for=send_at)
    promotion_id = result['promotion_id']

    assert gateway.calls == []
    assert _promotion(db, promotion_id)['status'] == 'scheduled'

    # 아직 발송 시각 전
    assert promotion_service.process_scheduled(now=send_at - timedelta(minutes=1)) == 0
    assert gateway.calls == []

    assert promotion_service.process_scheduled(now=send_at + timedelta(minutes=1)) == 1
    assert len(gateway.calls) == 1

    # 같은 문서가 발송 완료로 바뀌고 새 문서는 만들어지지 않음
    assert len(list(db.collection('promotional_notifications').stream())) == 1
    stored = _promotion(db, promotion_id)
    assert stored['status'] == 'sent'
    assert stored['stats']['delivered'] == 1

    # 다시 처리해도 중복 발송되지 않음
    assert promotion_service.process_scheduled(now=send_at + timedelta(hours=1)) == 0

def test_failed_scheduled_promotion_is_marked_failed(promotion_service, db, audience, monkeypatch):
    send_at = datetime(2024, 6, 1, 9, tzinfo=timezone.utc)
    result = promotion_service.create_and_send('Notice', 'Body', 'announcement', {'type': 'all'},
                                               sent_by='admin', scheduled_for=send_at)

    def _boom(*args, **kwargs):
        raise RuntimeError("push backend unavailable")
    monkeypatch.setattr(promotion_service.push_service, 'send_batch_push_notifications', _boom)

    assert promotion_service.process_scheduled(now=send_at) == 1
    assert _promotion(db, result['promotion_id'])['status'] == 'failed'
