# ora_backend/api/moderation/services.py
import logging
import uuid
from typing import Optional, List, Dict, Any, Iterable

from firebase_admin import firestore

from ora_backend.api.moderation.rules import ModerationRule
from ora_backend.models.moderation import ModerationAction, ModerationStatus, ModerationVerdict
from ora_backend.models.notification import NotificationCategory, NotificationType
from ora_backend.models.post import Post
from ora_backend.services.preference_service import PreferenceService
from ora_backend.services.push_service import PushService
from ora_backend.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

# 자동 검토 결과를 감사 기록에 남길 때 사용하는 검토자 ID
SYSTEM_MODERATOR_ID = "system"
MANUAL_REVIEW_RULE_NAME = "Manual Review"

# 관리자 조치 -> 작성자에게 보낼 시스템 알림
_ACTION_NOTIFICATIONS = {
    ModerationStatus.APPROVED: (NotificationType.POST_APPROVED, "Post approved", "Your post has been approved"),
    ModerationStatus.REJECTED: (NotificationType.POST_REJECTED, "Post removed", "Your post was removed"),
    ModerationStatus.FLAGGED: (NotificationType.POST_FLAGGED, "Post under review", "Your post has been flagged for review"),
}


class ModerationEngine:
    """
    우선순위 순으로 정렬된 규칙 체인으로 게시물을 평가합니다.
    외부 상태를 갖지 않는 순수한 요청-응답 객체입니다.
    """
    def __init__(self, rules: Optional[Iterable[ModerationRule]] = None):
        self._rules: List[ModerationRule] = []
        for rule in rules or []:
            self.register_rule(rule)

    @property
    def rules(self) -> List[ModerationRule]:
        return list(self._rules)

    def register_rule(self, rule: ModerationRule) -> None:
        """
        규칙을 등록합니다. priority 내림차순으로 정렬하며,
        list.sort 는 안정 정렬이므로 priority 가 같으면 등록 순서가 유지됩니다.
        """
        logger.info(f"검토 규칙 등록: {rule.name} (priority: {rule.priority})")
        self._rules.append(rule)
        self._rules.sort(key=lambda r: r.priority, reverse=True)

    def evaluate(self, post: Post) -> ModerationVerdict:
        """
        규칙을 순서대로 실행합니다.
        - 성공한 규칙의 결과가 현재 판정을 덮어씁니다 (병합하지 않음).
        - should_continue=False 를 반환한 규칙에서 평가를 멈춥니다.
        - 예외를 던진 규칙은 로그만 남기고 건너뜁니다.
        - 규칙이 하나도 없으면 승인(approved)입니다.
        """
        verdict = ModerationVerdict()
        logger.debug(f"게시물 평가 시작 (post_id: {post.post_id}, 규칙 {len(self._rules)}개)")

        for rule in self._rules:
            try:
                result = rule.evaluate(post)
            except Exception as e:
                logger.error(f"검토 규칙 실행 실패: {rule.name} - {e}", exc_info=True)
                continue

            verdict = ModerationVerdict(
                status=result.status,
                reason=result.reason,
                metadata=dict(result.metadata or {}),
                rule_name=rule.name,
            )
            if not result.should_continue:
                logger.info(f"규칙 {rule.name} 에서 평가 종료 (post_id: {post.post_id})")
                break

        logger.info(f"게시물 최종 검토 상태 (post_id: {post.post_id}): {verdict.status.value}")
        return verdict


class ModerationService:
    """
    게시물 검토 관련 비즈니스 로직을 담당하는 서비스 클래스.
    - 게시물 생성/수정 시 규칙 엔진으로 자동 검토
    - 관리자 승인/거절/신고 처리 및 감사 기록(moderation_actions) 저장
    """
    def __init__(self, engine: ModerationEngine, db=None, push_service: Optional[PushService] = None,
                 preference_service: Optional[PreferenceService] = None):
        self.db = db or firestore.client()
        self.posts_ref = self.db.collection('posts')
        self.users_ref = self.db.collection('users')
        self.actions_ref = self.db.collection('moderation_actions')
        self.engine = engine
        self.push_service = push_service
        self.preference_service = preference_service

    def _get_post(self, post_id: str) -> Post:
        doc = self.posts_ref.document(post_id).get()
        if not doc.exists:
            raise LookupError("게시물을 찾을 수 없습니다.")
        return Post.from_dict(doc.to_dict(), doc.id)

    def is_admin(self, user_id: str) -> bool:
        """users/{user_id}.is_admin 이 True 인 사용자만 관리자입니다."""
        doc = self.users_ref.document(user_id).get()
        return doc.exists and (doc.to_dict() or {}).get('is_admin') is True

    def _write_verdict(self, post_id: str, status: ModerationStatus, moderator_id: str,
                       reason: Optional[str], notes: Optional[str], rule_name: Optional[str],
                       metadata: Optional[Dict[str, str]] = None) -> ModerationAction:
        """
        게시물의 현재 검토 필드 갱신과 감사 기록 추가를 하나의 batch 로 커밋합니다.
        """
        now = DateTimeUtils.now()
        action = ModerationAction(
            action_id=str(uuid.uuid4()),
            post_id=post_id,
            moderator_user_id=moderator_id,
            action=status,
            reason=reason,
            notes=notes,
            rule_name=rule_name,
            metadata=metadata or None,
            timestamp=now,
        )
        post_update = {
            'moderation_status': status.value,
            'moderation_reason': reason,
            'moderated_at': now,
            'moderated_by': moderator_id,
        }

        batch = self.db.batch()
        batch.update(self.posts_ref.document(post_id), post_update)
        batch.set(self.actions_ref.document(action.action_id), action.to_dict())
        batch.commit()
        return action

    # ------------------------------------------------------------------
    # 자동 검토
    # ------------------------------------------------------------------
    def moderate_post(self, post_id: str) -> ModerationVerdict:
        """
        게시물 생성/수정 시 호출되어 규칙 엔진의 판정을 게시물에 반영합니다.
        판정은 매번 새로 계산하며, 자동 판정도 감사 기록에 남깁니다.
        """
        post = self._get_post(post_id)
        verdict = self.engine.evaluate(post)
        self._write_verdict(
            post_id, verdict.status, SYSTEM_MODERATOR_ID,
            reason=verdict.reason, notes=None, rule_name=verdict.rule_name, metadata=verdict.metadata,
        )
        return verdict

    def evaluate_content(self, image_url: Optional[str], caption: Optional[str],
                         interest_ids: Optional[List[str]] = None) -> ModerationVerdict:
        """게시물 생성 전에 콘텐츠만으로 미리 평가합니다. 저장하지 않습니다."""
        temp_post = Post(
            post_id=f"temp_{uuid.uuid4()}",
            user_id="temp",
            image_url=image_url,
            caption=caption,
            interest_ids=list(interest_ids or []),
        )
        return self.engine.evaluate(temp_post)

    # ------------------------------------------------------------------
    # 관리자 조치 (규칙 엔진을 다시 실행하지 않음)
    # ------------------------------------------------------------------
    def _apply_admin_action(self, post_id: str, moderator_id: str, status: ModerationStatus,
                            reason: Optional[str], notes: Optional[str]) -> ModerationAction:
        if status in (ModerationStatus.REJECTED, ModerationStatus.FLAGGED) and not reason:
            raise ValueError("거절/신고 처리에는 사유가 필요합니다.")

        post = self._get_post(post_id)
        logger.info(f"관리자 검토 조치: {status.value} (post_id: {post_id}, moderator: {moderator_id})")
        action = self._write_verdict(post_id, status, moderator_id, reason, notes, MANUAL_REVIEW_RULE_NAME)
        self._notify_author(post, status)
        return action

    def approve_post(self, post_id: str, moderator_id: str, notes: Optional[str] = None) -> ModerationAction:
        return self._apply_admin_action(post_id, moderator_id, ModerationStatus.APPROVED, None, notes)

    def reject_post(self, post_id: str, moderator_id: str, reason: str, notes: Optional[str] = None) -> ModerationAction:
        return self._apply_admin_action(post_id, moderator_id, ModerationStatus.REJECTED, reason, notes)

    def flag_post(self, post_id: str, moderator_id: str, reason: str, notes: Optional[str] = None) -> ModerationAction:
        return self._apply_admin_action(post_id, moderator_id, ModerationStatus.FLAGGED, reason, notes)

    def _notify_author(self, post: Post, status: ModerationStatus) -> None:
        """검토 결과를 게시물 작성자에게 시스템 푸시로 알립니다. 실패해도 조치는 유지됩니다."""
        if self.push_service is None or not post.user_id:
            return
        if self.preference_service and not self.preference_service.allows_system(post.user_id):
            return

        n_type, title, body = _ACTION_NOTIFICATIONS[status]
        try:
            self.push_service.send_push_notification(
                post.user_id, f"moderation_{post.post_id}_{status.value}", n_type,
                NotificationCategory.SYSTEM, title, body, post.post_id,
            )
        except Exception as e:
            logger.error(f"검토 결과 알림 발송 실패 (post_id: {post.post_id}): {e}", exc_info=True)

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------
    def get_moderation_history(self, post_id: str) -> List[ModerationAction]:
        """게시물의 검토 감사 기록을 시간 오름차순으로 반환합니다."""
        docs = (self.actions_ref
                .where('post_id', '==', post_id)
                .order_by('timestamp', direction=firestore.Query.ASCENDING)
                .stream())
        actions = [ModerationAction.from_dict(DateTimeUtils.from_firestore(doc.to_dict()), doc.id) for doc in docs]
        logger.info(f"검토 기록 {len(actions)}건 조회 (post_id: {post_id})")
        return actions

    def _get_posts_by_status(self, status: ModerationStatus, limit: int) -> List[Dict[str, Any]]:
        docs = (self.posts_ref
                .where('moderation_status', '==', status.value)
                .order_by('created_at', direction=firestore.Query.DESCENDING)
                .limit(limit)
                .stream())
        posts = []
        for doc in docs:
            data = DateTimeUtils.from_firestore(doc.to_dict())
            data['post_id'] = doc.id
            posts.append(data)
        return posts

    def get_pending_posts(self, limit: int = 50) -> List[Dict[str, Any]]:
        return self._get_posts_by_status(ModerationStatus.PENDING, limit)

    def get_flagged_posts(self, limit: int = 50) -> List[Dict[str, Any]]:
        return self._get_posts_by_status(ModerationStatus.FLAGGED, limit)
