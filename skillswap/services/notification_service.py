from typing import Optional

from skillswap.config import Settings, settings as default_settings
from skillswap.providers.queue.events import EMAIL_EVENT_TYPES, SessionEvent
from skillswap.providers.queue.sqs import SQSClient
import logging

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    세션 이벤트 발행기 (fire-and-forget)

    커밋 이후에 호출되며, 큐가 설정되지 않았으면 로그만 남깁니다.
    발행 실패는 로그로만 기록하고 호출자에게 전파하지 않습니다.
    """

    def __init__(
        self,
        sqs_client: Optional[SQSClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or default_settings
        self.sqs_client = sqs_client

    def _send(self, queue_name: str, event: SessionEvent) -> bool:
        if not queue_name or self.sqs_client is None:
            logger.info(
                f"[Event] {event.event_type.value} session={event.session_id} recipients={event.recipient_ids} (no queue configured)"
            )
            return False
        try:
            self.sqs_client.send_message(
                queue_name,
                event.model_dump(mode="json"),
                attributes={
                    "event_type": event.event_type.value,
                    "deduplication_id": event.deduplication_id,
                },
            )
            return True
        except Exception as e:
            logger.error(
                f"Failed to publish {event.event_type.value} for session {event.session_id} to {queue_name}: {str(e)}"
            )
            return False

    def publish(self, event: SessionEvent) -> bool:
        """알림 큐(및 해당되면 이메일 큐)로 발행. 알림 큐 발행 성공 여부 반환"""
        sent = self._send(self.settings.SQS_NOTIFICATION_QUEUE, event)
        if event.event_type in EMAIL_EVENT_TYPES:
            self._send(self.settings.SQS_EMAIL_QUEUE, event)
        return sent
