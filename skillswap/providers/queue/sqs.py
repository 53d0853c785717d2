import json
from typing import Dict, Optional

import boto3

from skillswap.config import Settings, settings as default_settings


class SQSClient:
    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or default_settings
        self.sqs = boto3.client(
            'sqs',
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            endpoint_url=settings.SQS_ENDPOINT_URL
        )
        self._queue_urls: Dict[str, str] = {}

    def _queue_url(self, queue_name: str) -> str:
        if queue_name not in self._queue_urls:
            self._queue_urls[queue_name] = self.sqs.get_queue_url(QueueName=queue_name)['QueueUrl']
        return self._queue_urls[queue_name]

    def send_message(self, queue_name: str, message_body: dict, attributes: Optional[Dict[str, str]] = None):
        params = {
            "QueueUrl": self._queue_url(queue_name),
            "MessageBody": json.dumps(message_body, default=str),
        }
        if attributes:
            params["MessageAttributes"] = {
                key: {"DataType": "String", "StringValue": value}
                for key, value in attributes.items()
            }
        return self.sqs.send_message(**params)
