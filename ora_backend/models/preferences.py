# ora_backend/models/preferences.py
from dataclasses import dataclass, field, asdict
from typing import Dict, Any

@dataclass
class EngagementPreferences:
    likes: bool = True
    comments: bool = True
    follows: bool = True
    mentions: bool = True

@dataclass
class SystemPreferences:
    post_moderation: bool = True
    account_actions: bool = True

@dataclass
class PromotionalPreferences:
    """프로모션 알림은 사용자가 직접 켜야(opt-in) 받습니다."""
    enabled: bool = False
    announcements: bool = False
    promos: bool = False
    feature_updates: bool = False
    events: bool = False

@dataclass
class NotificationPreferences:
    """
    Firestore 'users/{user_id}/notification_preferences/settings' 문서 구조.
    """
    push_enabled: bool = True
    email_enabled: bool = True
    engagement: EngagementPreferences = field(default_factory=EngagementPreferences)
    system: SystemPreferences = field(default_factory=SystemPreferences)
    promotional: PromotionalPreferences = field(default_factory=PromotionalPreferences)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NotificationPreferences':
        """저장된 값 위에 기본값을 채워 넣습니다. 알 수 없는 키는 무시합니다."""
        def _pick(section_cls, values):
            values = values or {}
            defaults = asdict(section_cls())
            return section_cls(**{k: bool(values.get(k, v)) for k, v in defaults.items()})

        return cls(
            push_enabled=data.get('push_enabled') is not False,
            email_enabled=data.get('email_enabled') is not False,
            engagement=_pick(EngagementPreferences, data.get('engagement')),
            system=_pick(SystemPreferences, data.get('system')),
            promotional=_pick(PromotionalPreferences, data.get('promotional')),
        )
