"""Persistence of per-source structure health."""
import json
import logging
from decimal import Decimal
from typing import Dict, Optional

from processor.models import HealthState, SourceHealth
from storage.dynamodb_manager import storage_errors
from storage.schema import dynamodb_resource

logger = logging.getLogger(__name__)


class HealthStore:
    """Keeps the latest SourceHealth per source in the health table."""

    def __init__(self, table_name: str, region_name: Optional[str] = None,
                 endpoint_url: Optional[str] = None, dynamodb=None):
        self.table_name = table_name
        self.dynamodb = dynamodb or dynamodb_resource(region_name, endpoint_url)
        self.table = self.dynamodb.Table(table_name)

    @classmethod
    def from_settings(cls, settings, dynamodb=None) -> 'HealthStore':
        return cls(
            settings.health_table,
            region_name=settings.aws_region,
            endpoint_url=settings.dynamodb_endpoint_url,
            dynamodb=dynamodb
        )

    def ping(self) -> bool:
        with storage_errors(f"Describe table {self.table_name}"):
            self.dynamodb.meta.client.describe_table(TableName=self.table_name)
        return True

    def save(self, health: SourceHealth) -> None:
        item = {
            'source': health.source,
            'checked_at': health.checked_at,
            'landmarks': json.dumps(health.landmarks, sort_keys=True),
            'overall_health': Decimal(str(health.overall_health)),
            'consecutive_failures': health.consecutive_failures,
            'state': health.state.value,
            'acknowledged': health.acknowledged,
        }
        if health.error:
            item['error'] = health.error

        with storage_errors(f"Save health for {health.source}"):
            self.table.put_item(Item=item)

    def load_all(self) -> Dict[str, SourceHealth]:
        """Return the stored health of every source."""
        with storage_errors(f"Load health from {self.table_name}"):
            response = self.table.scan()
            items = response.get('Items', [])
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(ExclusiveStartKey=response['LastEvaluatedKey'])
                items.extend(response.get('Items', []))

        results = {}
        for item in items:
            try:
                results[item['source']] = SourceHealth(
                    source=item['source'],
                    checked_at=item['checked_at'],
                    landmarks=json.loads(item.get('landmarks', '{}')),
                    overall_health=float(item['overall_health']),
                    consecutive_failures=int(item.get('consecutive_failures', 0)),
                    state=HealthState(item.get('state', HealthState.HEALTHY.value)),
                    acknowledged=bool(item.get('acknowledged', False)),
                    error=item.get('error')
                )
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable health item {item.get('source')}: {e}")
        return results
