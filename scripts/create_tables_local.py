#!/usr/bin/env python3
"""
Create the progression DynamoDB table in LocalStack for local development
"""
import os

import boto3
from botocore.exceptions import ClientError

PROGRESSION_TABLE = {
    'TableName': os.environ.get('DYNAMODB_PROGRESSION_TABLE', 'tutor-dev-progression'),
    'KeySchema': [
        {'AttributeName': 'PK', 'KeyType': 'HASH'},
        {'AttributeName': 'SK', 'KeyType': 'RANGE'}
    ],
    'AttributeDefinitions': [
        {'AttributeName': 'PK', 'AttributeType': 'S'},
        {'AttributeName': 'SK', 'AttributeType': 'S'}
    ],
    'BillingMode': 'PAY_PER_REQUEST'
}


def create_tables(dynamodb=None):
    """Create the progression table if it does not exist yet"""

    if dynamodb is None:
        # Connect to LocalStack
        dynamodb = boto3.client(
            'dynamodb',
            endpoint_url=os.environ.get('DYNAMODB_ENDPOINT', 'http://localhost:4566'),
            region_name=os.environ.get('AWS_REGION', 'us-east-1'),
            aws_access_key_id='test',
            aws_secret_access_key='test'
        )

    table_name = PROGRESSION_TABLE['TableName']
    try:
        dynamodb.describe_table(TableName=table_name)
        print(f"✓ Table {table_name} already exists")
        return False
    except ClientError as e:
        if e.response['Error']['Code'] != 'ResourceNotFoundException':
            raise

    dynamodb.create_table(**PROGRESSION_TABLE)
    print(f"✓ Created table {table_name}")
    return True


if __name__ == "__main__":
    create_tables()
