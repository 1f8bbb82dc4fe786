"""Append-only audit log of scrape run reports."""
import json
import logging
from typing import List, Optional

from boto3.dynamodb.conditions import Key

from processor.models import ScrapeRunReport
from storage.dynamodb_manager import storage_errors
from storage.schema import dynamodb_resource

logger = logging.getLogger(__name__)


class RunLog:
    """
    Stores one item per (source, run) in the runs table.

    Items are only ever put, never updated. The range key is
    ``started_at#run_id`` so that a source's reports sort by start time.
    """

    def __init__(self, table_name: str, region_name: Optional[str] = None,
                 endpoint_url: Optional[str] = None, dynamodb=None):
        self.table_name = table_name
        self.dynamodb = dynamodb or dynamodb_resource(region_name, endpoint_url)
        self.table = self.dynamodb.Table(table_name)

    @classmethod
    def from_settings(cls, settings, dynamodb=None) -> 'RunLog':
        return cls(
            settings.runs_table,
            region_name=settings.aws_region,
            endpoint_url=settings.dynamodb_endpoint_url,
            dynamodb=dynamodb
        )

    def ping(self) -> bool:
        with storage_errors(f"Describe table {self.table_name}"):
            self.dynamodb.meta.client.describe_table(TableName=self.table_name)
        return True

    def append(self, report: ScrapeRunReport) -> None:
        """
        Persist a run report.

        Raises:
            StorageUnavailable: Table unreachable
        """
        data = report.to_dict()
        item = {
            'source': report.source,
            'run_key': f"{report.started_at}#{report.run_id}",
            'run_id': report.run_id,
            'started_at': report.started_at,
            'status': report.status.value,
            # Nested lists of dicts are kept as one JSON attribute.
            'report': json.dumps(data, ensure_ascii=False),
        }
        with storage_errors(f"Append run report {report.run_id}/{report.source}"):
            self.table.put_item(Item=item)
        logger.debug(f"Stored run report {report.run_id} for {report.source}")

    def recent(self, limit: int = 10, source: Optional[str] = None) -> List[ScrapeRunReport]:
        """
        Read back the most recent reports, newest first.

        Args:
            limit: Maximum number of reports
            source: Only reports for this source

        Returns:
            List of ScrapeRunReport
        """
        with storage_errors(f"Read run log {self.table_name}"):
            if source:
                response = self.table.query(
                    KeyConditionExpression=Key('source').eq(source),
                    ScanIndexForward=False,
                    Limit=limit
                )
                items = response.get('Items', [])
            else:
                response = self.table.scan()
                items = response.get('Items', [])
                while 'LastEvaluatedKey' in response:
                    response = self.table.scan(ExclusiveStartKey=response['LastEvaluatedKey'])
                    items.extend(response.get('Items', []))

        items.sort(key=lambda item: item['run_key'], reverse=True)
        reports = []
        for item in items[:limit]:
            try:
                reports.append(ScrapeRunReport.from_dict(json.loads(item['report'])))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable run report {item.get('run_key')}: {e}")
        return reports
