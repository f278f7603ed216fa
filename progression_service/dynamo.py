"""
DynamoDB operations for progression-service

Single-table layout (PK = USER#<userId>):
- PROFILE                          owner profile bootstrap row
- XP#SELF / XP#PROFILE#<id>        XP ledger rows
- STREAK#SELF / STREAK#PROFILE#<id>
- DIFFICULTY#SELF / ...            difficulty tracking rows
- PROBLEM#<suffix>#<ts>#<uuid>     problem history
- DAILY#<date>#<suffix>            daily problem completions

Ledger rows are always written whole, with a conditional put: inserts require the
key to be absent, updates require the version that was read.
"""
import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError
from typing import Optional, Dict, Any, List, Iterable
from decimal import Decimal
import logging

from progression_service.config import get_settings
from progression_service.errors import (
    TransientIOError,
    UniqueViolationError,
    VersionConflictError,
)

settings = get_settings()
logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = 'ConditionalCheckFailedException'


class DynamoDBClient:
    """DynamoDB client with lazy initialization"""

    def __init__(self):
        self.settings = settings
        self._dynamodb = None
        self._progression_table = None

    @property
    def dynamodb(self):
        """Lazy initialization of DynamoDB resource"""
        if self._dynamodb is None:
            kwargs = {
                'region_name': self.settings.AWS_REGION,
            }

            # Only use endpoint_url for LocalStack
            if self.settings.DYNAMODB_ENDPOINT:
                kwargs['endpoint_url'] = self.settings.DYNAMODB_ENDPOINT

            # Only pass explicit credentials if we're in LocalStack mode (endpoint set)
            # In ECS, boto3 automatically uses the IAM role
            if self.settings.DYNAMODB_ENDPOINT and self.settings.AWS_ACCESS_KEY_ID:
                kwargs['aws_access_key_id'] = self.settings.AWS_ACCESS_KEY_ID
                kwargs['aws_secret_access_key'] = self.settings.AWS_SECRET_ACCESS_KEY
                logger.info("Using explicit AWS credentials (LocalStack mode)")
            else:
                logger.info("Using IAM role credentials (AWS/ECS mode)")

            self._dynamodb = boto3.resource('dynamodb', **kwargs)
        return self._dynamodb

    @property
    def progression_table(self):
        if self._progression_table is None:
            self._progression_table = self.dynamodb.Table(self.settings.DYNAMODB_PROGRESSION_TABLE)
        return self._progression_table


# Global instance
db_client = DynamoDBClient()


# ============= KEY BUILDERS =============

def build_user_pk(user_id: str) -> str:
    """
    Build partition key for all rows of a user

    Example:
        >>> build_user_pk("123")
        "USER#123"
    """
    return f"USER#{user_id}"


def build_record_sk(kind: str, sort_suffix: str) -> str:
    """
    Build sort key for a ledger row

    Examples:
        >>> build_record_sk("XP", "SELF")
        "XP#SELF"
        >>> build_record_sk("STREAK", "PROFILE#abc")
        "STREAK#PROFILE#abc"
    """
    return f"{kind}#{sort_suffix}"


PROFILE_SK = "PROFILE"


# ============= HELPER FUNCTIONS =============

def dynamodb_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert Python dict to DynamoDB compatible dict (handles Decimal)"""
    return {k: dynamodb_value(v) for k, v in data.items()}


def dynamodb_value(value: Any) -> Any:
    """Convert Python value to DynamoDB compatible value"""
    if isinstance(value, float):
        return Decimal(str(value))
    elif isinstance(value, dict):
        return {k: dynamodb_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [dynamodb_value(item) for item in value]
    return value


def python_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert DynamoDB dict to Python dict (handles Decimal)"""
    return {k: python_value(v) for k, v in data.items()}


def python_value(value: Any) -> Any:
    """Convert DynamoDB value to Python value"""
    if isinstance(value, Decimal):
        return int(value) if value % 1 == 0 else float(value)
    elif isinstance(value, dict):
        return {k: python_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [python_value(item) for item in value]
    return value


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


# ============= PROGRESSION TABLE =============

class DynamoProgressionTable:
    """Row primitives over the progression table"""

    def __init__(self, table=None):
        self._table = table

    @property
    def table(self):
        if self._table is None:
            self._table = db_client.progression_table
        return self._table

    def query_user(self, user_id: str, kind: str) -> List[Dict[str, Any]]:
        """All rows of one kind for a user, across every profile"""
        try:
            items = []
            kwargs = {
                'KeyConditionExpression': Key('PK').eq(build_user_pk(user_id)) & Key('SK').begins_with(f"{kind}#")
            }
            while True:
                response = self.table.query(**kwargs)
                items.extend(python_dict(item) for item in response.get('Items', []))
                if 'LastEvaluatedKey' not in response:
                    break
                kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
            return items
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error querying {kind} rows for user {user_id}: {str(e)}")
            raise TransientIOError(str(e), operation=f"query_{kind.lower()}", user_id=user_id) from e

    def query_recent(self, user_id: str, sk_prefix: str, limit: int) -> List[Dict[str, Any]]:
        """Most recent rows under a sort key prefix (newest first)"""
        try:
            response = self.table.query(
                KeyConditionExpression=Key('PK').eq(build_user_pk(user_id)) & Key('SK').begins_with(sk_prefix),
                ScanIndexForward=False,
                Limit=limit
            )
            return [python_dict(item) for item in response.get('Items', [])]
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error querying {sk_prefix} rows for user {user_id}: {str(e)}")
            raise TransientIOError(str(e), operation="query_recent", user_id=user_id) from e

    def insert(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a row that must not exist yet

        Raises:
            UniqueViolationError: A row with the same key already exists
            TransientIOError: Any other storage failure
        """
        try:
            self.table.put_item(
                Item=dynamodb_dict(item),
                ConditionExpression="attribute_not_exists(PK)"
            )
            return item
        except ClientError as e:
            if _error_code(e) == CONDITIONAL_CHECK_FAILED:
                raise UniqueViolationError(f"{item['PK']} {item['SK']} already exists") from e
            logger.error(f"Error inserting {item['SK']} for {item['PK']}: {str(e)}")
            raise TransientIOError(str(e), operation="insert", user_id=item.get('user_id')) from e
        except BotoCoreError as e:
            raise TransientIOError(str(e), operation="insert", user_id=item.get('user_id')) from e

    def replace(self, item: Dict[str, Any], expected_version: int) -> Dict[str, Any]:
        """
        Overwrite a whole row with optimistic locking

        Raises:
            VersionConflictError: The stored version is not expected_version
            TransientIOError: Any other storage failure
        """
        try:
            self.table.put_item(
                Item=dynamodb_dict(item),
                ConditionExpression="attribute_exists(PK) AND version = :expected_version",
                ExpressionAttributeValues={':expected_version': expected_version}
            )
            return item
        except ClientError as e:
            if _error_code(e) == CONDITIONAL_CHECK_FAILED:
                raise VersionConflictError(
                    f"{item['PK']} {item['SK']} changed since version {expected_version}"
                ) from e
            logger.error(f"Error replacing {item['SK']} for {item['PK']}: {str(e)}")
            raise TransientIOError(str(e), operation="replace", user_id=item.get('user_id')) from e
        except BotoCoreError as e:
            raise TransientIOError(str(e), operation="replace", user_id=item.get('user_id')) from e

    def put(self, item: Dict[str, Any]) -> Dict[str, Any]:
        """Unconditional put for append-only rows (problem history)"""
        try:
            self.table.put_item(Item=dynamodb_dict(item))
            return item
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error writing {item['SK']} for {item['PK']}: {str(e)}")
            raise TransientIOError(str(e), operation="put", user_id=item.get('user_id')) from e

    def ensure_profile(self, user_id: str, created_at: str) -> bool:
        """
        Create the owner profile row if missing (idempotent)

        Returns:
            True if this call created it, False if it already existed
        """
        item = {
            'PK': build_user_pk(user_id),
            'SK': PROFILE_SK,
            'user_id': user_id,
            'role': 'student',
            'created_at': created_at,
        }
        try:
            self.insert(item)
            return True
        except UniqueViolationError:
            return False

    def delete_user(self, user_id: str, kinds: Iterable[str]) -> int:
        """Delete every row of the given kinds for a user; returns rows deleted"""
        keys = []
        for kind in kinds:
            keys.extend({'PK': row['PK'], 'SK': row['SK']} for row in self.query_user(user_id, kind))

        try:
            with self.table.batch_writer() as batch:
                for key in keys:
                    batch.delete_item(Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error deleting rows for user {user_id}: {str(e)}")
            raise TransientIOError(str(e), operation="delete_user", user_id=user_id) from e

        return len(keys)

    def describe(self) -> Dict[str, Any]:
        """Table status for health checks"""
        return self.table.meta.client.describe_table(TableName=self.table.name)['Table']


def get_progression_table():
    """
    Build the configured row store

    Returns:
        DynamoProgressionTable, MemoryProgressionTable, or None when
        persistence is not configured
    """
    if settings.STORAGE_BACKEND == "memory":
        from progression_service.memory_table import MemoryProgressionTable
        logger.info("Using in-memory progression table (local mode)")
        return MemoryProgressionTable()

    if not settings.DYNAMODB_PROGRESSION_TABLE:
        logger.warning("DYNAMODB_PROGRESSION_TABLE is empty: progression persistence not configured")
        return None

    return DynamoProgressionTable()
