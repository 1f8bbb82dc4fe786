"""DynamoDB table definitions for the catalog and audit tables."""
import logging
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

SOURCE_URL_INDEX = 'source-url-index'
CONTENT_INDEX = 'content-index'
DATE_INDEX = 'date-index'


def _gsi(name: str, hash_key: str, range_key: str) -> dict:
    return {
        'IndexName': name,
        'KeySchema': [
            {'AttributeName': hash_key, 'KeyType': 'HASH'},
            {'AttributeName': range_key, 'KeyType': 'RANGE'},
        ],
        'Projection': {'ProjectionType': 'ALL'},
    }


def events_table_definition(table_name: str) -> dict:
    """Catalog table: one row per event, keyed by fingerprint id."""
    return {
        'TableName': table_name,
        'KeySchema': [{'AttributeName': 'id', 'KeyType': 'HASH'}],
        'AttributeDefinitions': [
            {'AttributeName': 'id', 'AttributeType': 'S'},
            {'AttributeName': 'source', 'AttributeType': 'S'},
            {'AttributeName': 'source_url', 'AttributeType': 'S'},
            {'AttributeName': 'content_key', 'AttributeType': 'S'},
            {'AttributeName': 'city', 'AttributeType': 'S'},
            {'AttributeName': 'date', 'AttributeType': 'S'},
        ],
        'GlobalSecondaryIndexes': [
            _gsi(SOURCE_URL_INDEX, 'source', 'source_url'),
            _gsi(CONTENT_INDEX, 'source', 'content_key'),
            _gsi(DATE_INDEX, 'city', 'date'),
        ],
        'BillingMode': 'PAY_PER_REQUEST',
    }


def runs_table_definition(table_name: str) -> dict:
    """Append-only run reports, newest last within a source."""
    return {
        'TableName': table_name,
        'KeySchema': [
            {'AttributeName': 'source', 'KeyType': 'HASH'},
            {'AttributeName': 'run_key', 'KeyType': 'RANGE'},
        ],
        'AttributeDefinitions': [
            {'AttributeName': 'source', 'AttributeType': 'S'},
            {'AttributeName': 'run_key', 'AttributeType': 'S'},
        ],
        'BillingMode': 'PAY_PER_REQUEST',
    }


def health_table_definition(table_name: str) -> dict:
    """Latest structure health per source."""
    return {
        'TableName': table_name,
        'KeySchema': [{'AttributeName': 'source', 'KeyType': 'HASH'}],
        'AttributeDefinitions': [{'AttributeName': 'source', 'AttributeType': 'S'}],
        'BillingMode': 'PAY_PER_REQUEST',
    }


def dynamodb_resource(region_name: Optional[str] = None, endpoint_url: Optional[str] = None):
    """Create a DynamoDB service resource, optionally against a local endpoint."""
    kwargs = {}
    if region_name:
        kwargs['region_name'] = region_name
    if endpoint_url:
        kwargs['endpoint_url'] = endpoint_url
    return boto3.resource('dynamodb', **kwargs)


def table_definitions(settings) -> List[dict]:
    return [
        events_table_definition(settings.events_table),
        runs_table_definition(settings.runs_table),
        health_table_definition(settings.health_table),
    ]


def create_tables(settings, dynamodb=None) -> Dict[str, str]:
    """
    Create the catalog, runs and health tables if they do not exist.

    Args:
        settings: Settings with table names and connection details
        dynamodb: DynamoDB resource (default: built from settings)

    Returns:
        Dict of table name to 'created' or 'exists'
    """
    dynamodb = dynamodb or dynamodb_resource(settings.aws_region, settings.dynamodb_endpoint_url)
    results = {}

    for definition in table_definitions(settings):
        name = definition['TableName']
        try:
            table = dynamodb.create_table(**definition)
            table.wait_until_exists()
            logger.info(f"Created table: {name}")
            results[name] = 'created'
        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceInUseException':
                raise
            logger.info(f"Table already exists: {name}")
            results[name] = 'exists'

    return results
