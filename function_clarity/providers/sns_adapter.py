#!/usr/bin/env python3
"""
SNS notifier and SQS queue reader using boto3.

The notifier delivers result messages at-least-once; the queue reader is only used by the
acceptance helpers to observe those messages on a subscribed queue.
"""
from __future__ import annotations

from typing import Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..error_handling import PublishFailed, ProviderError
from .abstract import Notifier, QueueReader


class SNSNotifier(Notifier):
    def __init__(self, topic_arn: str, region: Optional[str] = None, client=None, session: Optional[boto3.session.Session] = None):
        if client is None:
            session = session or boto3.session.Session()
            client = session.client("sns", region_name=region)
        self.client = client
        self.topic_arn = topic_arn

    def publish(self, subject: str, message: str, attributes: Optional[Dict[str, str]] = None) -> str:
        kwargs = {"TopicArn": self.topic_arn, "Subject": subject[:100], "Message": message}
        if attributes:
            kwargs["MessageAttributes"] = {
                k: {"DataType": "String", "StringValue": str(v)} for k, v in attributes.items() if v
            }
        try:
            resp = self.client.publish(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise PublishFailed(f"SNS publish to {self.topic_arn} failed: {e}", {"topic": self.topic_arn}) from e
        return resp.get("MessageId", "")


class SQSQueueReader(QueueReader):
    def __init__(self, queue_name: str, region: Optional[str] = None, client=None, session: Optional[boto3.session.Session] = None):
        if client is None:
            session = session or boto3.session.Session()
            client = session.client("sqs", region_name=region)
        self.client = client
        self.queue_name = queue_name
        self._url: Optional[str] = None

    def _queue_url(self) -> str:
        if self._url is None:
            try:
                self._url = self.client.get_queue_url(QueueName=self.queue_name)["QueueUrl"]
            except (ClientError, BotoCoreError) as e:
                raise ProviderError(f"GetQueueUrl {self.queue_name} failed: {e}") from e
        return self._url

    def receive(self, max_messages: int = 10) -> List[str]:
        try:
            resp = self.client.receive_message(
                QueueUrl=self._queue_url(),
                MaxNumberOfMessages=max_messages,
                MessageAttributeNames=["All"],
                VisibilityTimeout=1,
            )
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(f"ReceiveMessage {self.queue_name} failed: {e}") from e
        return [m.get("Body", "") for m in resp.get("Messages") or []]
