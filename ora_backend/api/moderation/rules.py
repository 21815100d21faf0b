# ora_backend/api/moderation/rules.py
"""
게시물 검토 규칙 모음

규칙은 priority 가 높은 것부터 실행됩니다. 권장 범위:
- 100 이상: 치명적인 보안 규칙
- 50-99: 우선순위가 높은 자동 규칙
- 10-49: 일반 자동 규칙
- 1-9: 낮은 우선순위 규칙
- 0: 기본(fallback) 규칙
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from ora_backend.models.moderation import ModerationResult, ModerationStatus
from ora_backend.models.post import Post

logger = logging.getLogger(__name__)


class ModerationRule(ABC):
    """모든 검토 규칙이 구현해야 하는 기본 클래스"""
    name: str = "Unnamed Rule"
    priority: int = 0

    @abstractmethod
    def evaluate(self, post: Post) -> ModerationResult:
        """게시물을 평가하여 ModerationResult 를 반환합니다. 실패 시 예외를 던질 수 있습니다."""


class ManualModerationRule(ModerationRule):
    """
    다른 규칙이 판정을 내리지 않았을 때 적용되는 기본 규칙.
    default_status 를 PENDING 으로 두면 모든 게시물이 수동 검토 대기 상태가 됩니다.
    """
    name = "Manual Moderation"
    priority = 0

    def __init__(self, default_status: ModerationStatus = ModerationStatus.APPROVED, is_final_decision: bool = True):
        if default_status not in (ModerationStatus.APPROVED, ModerationStatus.PENDING):
            raise ValueError("기본 검토 상태는 approved 또는 pending 이어야 합니다.")
        self.default_status = default_status
        self.is_final_decision = is_final_decision

    def evaluate(self, post: Post) -> ModerationResult:
        logger.debug(f"ManualModerationRule: 기본 상태 {self.default_status.value} 적용 (post_id: {post.post_id})")
        return ModerationResult(
            status=self.default_status,
            reason="Awaiting manual review" if self.default_status is ModerationStatus.PENDING else None,
            metadata={"rule": "manual_moderation"},
            should_continue=not self.is_final_decision,
        )


def _compile_terms(terms: Iterable[str]) -> List[re.Pattern]:
    # 단어 경계 기준, 대소문자 무시
    return [re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE) for term in terms if term]


class KeywordFilterRule(ModerationRule):
    """
    캡션에 금칙어가 있으면 거절, 주의 단어가 있으면 관리자 확인(flagged)으로 판정하는 콘텐츠 안전 규칙.
    어느 쪽에도 해당하지 않으면 승인 상태로 다음 규칙에 넘깁니다.
    """
    name = "Keyword Filter"

    def __init__(self, blocked_terms: Iterable[str], flagged_terms: Optional[Iterable[str]] = None, priority: int = 50):
        self.priority = priority
        self._blocked = _compile_terms(blocked_terms)
        self._flagged = _compile_terms(flagged_terms or [])

    @staticmethod
    def _first_match(patterns: List[re.Pattern], text: str) -> Optional[str]:
        for pattern in patterns:
            match = pattern.search(text)
            if match:
                return match.group(0).lower()
        return None

    def evaluate(self, post: Post) -> ModerationResult:
        text = post.caption or ""

        term = self._first_match(self._blocked, text)
        if term:
            return ModerationResult(
                status=ModerationStatus.REJECTED,
                reason="Caption contains prohibited language",
                metadata={"rule": "keyword_filter", "matched_term": term},
                should_continue=False,
            )

        term = self._first_match(self._flagged, text)
        if term:
            return ModerationResult(
                status=ModerationStatus.FLAGGED,
                reason="Caption contains language that needs review",
                metadata={"rule": "keyword_filter", "matched_term": term},
                should_continue=False,
            )

        return ModerationResult(status=ModerationStatus.APPROVED, metadata={"rule": "keyword_filter"})
