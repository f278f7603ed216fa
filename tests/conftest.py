"""
Pytest configuration for progression-service tests
"""
import threading
import time
from datetime import datetime, timedelta, timezone

import boto3
import pytest
from moto import mock_aws

from progression_service.dynamo import DynamoProgressionTable
from progression_service.memory_table import MemoryProgressionTable

TEST_TABLE_NAME = "tutor-test-progression"


class FixedClock:
    """Injectable clock; advance() moves it forward"""

    def __init__(self, now=None):
        self.now = now or datetime(2025, 11, 19, 12, 0, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            return self.now

    def advance(self, **kwargs):
        with self._lock:
            self.now = self.now + timedelta(**kwargs)


class SlowMemoryTable(MemoryProgressionTable):
    """Memory table that pauses after reads so concurrent writers interleave"""

    def __init__(self, delay=0.002):
        super().__init__()
        self.delay = delay

    def query_user(self, user_id, kind):
        rows = super().query_user(user_id, kind)
        time.sleep(self.delay)
        return rows


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mock AWS credentials for moto"""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def dynamodb_table(aws_credentials):
    """Mock progression table (PK/SK) wrapped in DynamoProgressionTable"""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        table = dynamodb.create_table(
            TableName=TEST_TABLE_NAME,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"}
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"}
            ],
            BillingMode="PAY_PER_REQUEST"
        )
        yield DynamoProgressionTable(table)


@pytest.fixture
def memory_table():
    return MemoryProgressionTable()


@pytest.fixture(params=["memory", "dynamodb"])
def table(request):
    """Runs a test against both row stores"""
    if request.param == "memory":
        return MemoryProgressionTable()
    return request.getfixturevalue("dynamodb_table")


@pytest.fixture
def clock():
    return FixedClock()
