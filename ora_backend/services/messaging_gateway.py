# ora_backend/services/messaging_gateway.py
import logging
from typing import Dict, List, Optional

from firebase_admin import exceptions, messaging

logger = logging.getLogger(__name__)

# 토큰 자체가 더 이상 유효하지 않음을 뜻하는 FCM 오류. 이 오류를 받은 토큰은 삭제 대상입니다.
INVALID_TOKEN_ERRORS = (messaging.UnregisteredError, messaging.SenderIdMismatchError)


def is_invalid_token_error(exc: Optional[Exception]) -> bool:
    """발송 실패 원인이 '잘못된/등록 해제된 토큰' 인지 판별합니다."""
    if exc is None:
        return False
    if isinstance(exc, INVALID_TOKEN_ERRORS):
        return True
    # 형식이 잘못된 토큰은 INVALID_ARGUMENT 로 보고됩니다.
    if isinstance(exc, exceptions.InvalidArgumentError):
        return 'registration token' in str(exc).lower()
    return False


class MessagingGateway:
    """
    Firebase Cloud Messaging 멀티캐스트 발송을 담당하는 얇은 래퍼 클래스.
    PushService는 이 클래스를 주입받아 사용하므로 테스트에서 쉽게 대체할 수 있습니다.
    """

    def __init__(self, app=None):
        self.app = app

    def build_message(self, tokens: List[str], title: str, body: str, data: Dict[str, str],
                      image_url: Optional[str] = None) -> messaging.MulticastMessage:
        """알림/데이터 페이로드와 APNs 옵션을 포함한 MulticastMessage를 생성합니다."""
        apns = messaging.APNSConfig(
            payload=messaging.APNSPayload(
                aps=messaging.Aps(sound="default", badge=1, mutable_content=True)
            ),
            fcm_options=messaging.APNSFCMOptions(image=image_url) if image_url else None,
        )
        return messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=title, body=body),
            data=data,
            apns=apns,
        )

    def send_multicast(self, tokens: List[str], title: str, body: str, data: Dict[str, str],
                       image_url: Optional[str] = None) -> messaging.BatchResponse:
        """
        토큰 목록 전체에 한 번의 멀티캐스트 호출로 발송합니다.
        반환되는 BatchResponse.responses 는 tokens 와 같은 순서입니다.
        """
        message = self.build_message(tokens, title, body, data, image_url)
        response = messaging.send_each_for_multicast(message, app=self.app)
        logger.debug(f"FCM 멀티캐스트 발송: 성공 {response.success_count}, 실패 {response.failure_count}")
        return response
