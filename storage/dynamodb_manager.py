"""DynamoDB manager for catalog storage operations."""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterator, List, Optional

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import BotoCoreError, ClientError

from errors import ConstraintViolation, StorageUnavailable
from processor.models import Event, PriceRange, UpsertOutcome
from storage.schema import CONTENT_INDEX, DATE_INDEX, SOURCE_URL_INDEX, dynamodb_resource

logger = logging.getLogger(__name__)

CONSTRAINT_ERROR_CODES = {
    'ValidationException',
    'ConditionalCheckFailedException',
    'TransactionCanceledException',
}

# Fields compared to decide between UPDATED and UNCHANGED.
CONTENT_FIELDS = (
    'title', 'description', 'date', 'time', 'venue', 'city', 'state', 'category',
    'price_min', 'price_max', 'currency', 'is_free', 'source', 'source_url',
    'image_url', 'organizer', 'content_key',
)


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """
    Translate boto errors raised inside the block into storage errors.

    Args:
        action: Short description used in the error message
    """
    try:
        yield
    except ClientError as e:
        code = e.response.get('Error', {}).get('Code', '')
        if code in CONSTRAINT_ERROR_CODES:
            raise ConstraintViolation(f"{action} rejected ({code}): {e}") from e
        raise StorageUnavailable(f"{action} failed ({code}): {e}") from e
    except BotoCoreError as e:
        raise StorageUnavailable(f"{action} failed: {e}") from e


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


class DynamoDBManager:
    """Manager for catalog reads and idempotent upserts."""

    def __init__(self, table_name: str, region_name: Optional[str] = None,
                 endpoint_url: Optional[str] = None, merge_cross_source: bool = False,
                 dynamodb=None):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the catalog table
            region_name: AWS region
            endpoint_url: Optional local DynamoDB endpoint
            merge_cross_source: Match existing rows by content key across
                every source, not only the event's own source
            dynamodb: Existing DynamoDB resource to reuse
        """
        self.table_name = table_name
        self.merge_cross_source = merge_cross_source
        self.dynamodb = dynamodb or dynamodb_resource(region_name, endpoint_url)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBManager for table: {table_name}")

    @classmethod
    def from_settings(cls, settings, dynamodb=None) -> 'DynamoDBManager':
        return cls(
            settings.events_table,
            region_name=settings.aws_region,
            endpoint_url=settings.dynamodb_endpoint_url,
            merge_cross_source=settings.merge_cross_source,
            dynamodb=dynamodb
        )

    def ping(self) -> bool:
        """
        Check that the table exists and is reachable.

        Raises:
            StorageUnavailable: If the table cannot be described
        """
        with storage_errors(f"Describe table {self.table_name}"):
            self.dynamodb.meta.client.describe_table(TableName=self.table_name)
        return True

    def upsert(self, event: Event) -> UpsertOutcome:
        """
        Insert an event or merge it into its existing row.

        The existing row is looked up by id, then by content key within the
        event's source when either side has no source URL, or across
        sources when merge_cross_source is set.
        Upserting identical content only bumps updated_at.

        Args:
            event: Canonical event from the processor

        Returns:
            UpsertOutcome describing the write

        Raises:
            StorageUnavailable: Table unreachable
            ConstraintViolation: Item rejected by DynamoDB
        """
        incoming = self._event_to_item(event)
        now = event.updated_at or _utc_now()

        with storage_errors(f"Upsert event {event.id}"):
            existing = self._find_existing(event)

            if existing is None:
                incoming['created_at'] = event.created_at or now
                incoming['updated_at'] = now
                self.table.put_item(
                    Item=incoming,
                    ConditionExpression=Attr('id').not_exists()
                )
                logger.debug(f"Inserted event {event.id}", extra={'source': event.source})
                return UpsertOutcome.INSERTED

            # A row matched from another source keeps its own source identity.
            kept = {'id', 'created_at'}
            if existing.get('source') != event.source:
                kept |= {'source', 'source_url'}

            merged = dict(existing)
            for name, value in incoming.items():
                if name in kept:
                    continue
                if value not in (None, ''):
                    merged[name] = value
            merged['updated_at'] = now

            changed = any(existing.get(name) != merged.get(name) for name in CONTENT_FIELDS)
            self.table.put_item(
                Item=merged,
                ConditionExpression=Attr('id').exists()
            )

        outcome = UpsertOutcome.UPDATED if changed else UpsertOutcome.UNCHANGED
        logger.debug(f"Upsert of {merged['id']}: {outcome.value}", extra={'source': event.source})
        return outcome

    def get_event(self, event_id: str) -> Optional[Event]:
        with storage_errors(f"Get event {event_id}"):
            response = self.table.get_item(Key={'id': event_id})
        item = response.get('Item')
        return self._item_to_event(item) if item else None

    def find_by_source_url(self, source: str, source_url: str) -> Optional[Event]:
        """Look up an event through the source-url-index GSI."""
        with storage_errors(f"Query {SOURCE_URL_INDEX}"):
            response = self.table.query(
                IndexName=SOURCE_URL_INDEX,
                KeyConditionExpression=Key('source').eq(source) & Key('source_url').eq(source_url),
                Limit=1
            )
        items = response.get('Items', [])
        return self._item_to_event(items[0]) if items else None

    def query(self, filters: Optional[Dict] = None) -> List[Event]:
        """
        Query catalog events.

        Args:
            filters: Optional keys source, city, state, category, date_from,
                date_to (ISO dates, inclusive) and limit

        Returns:
            Events sorted by date and then time
        """
        filters = dict(filters or {})
        limit = filters.pop('limit', None)

        conditions = []
        key_condition = None
        index_name = None

        date_from = filters.get('date_from')
        date_to = filters.get('date_to')

        if filters.get('city'):
            index_name = DATE_INDEX
            key_condition = Key('city').eq(filters['city'])
            if date_from and date_to:
                key_condition = key_condition & Key('date').between(date_from, date_to)
            elif date_from:
                key_condition = key_condition & Key('date').gte(date_from)
            elif date_to:
                key_condition = key_condition & Key('date').lte(date_to)
        else:
            if filters.get('source'):
                index_name = SOURCE_URL_INDEX
                key_condition = Key('source').eq(filters['source'])
            if date_from:
                conditions.append(Attr('date').gte(date_from))
            if date_to:
                conditions.append(Attr('date').lte(date_to))

        if filters.get('city') and filters.get('source'):
            conditions.append(Attr('source').eq(filters['source']))
        for name in ('state', 'category'):
            if filters.get(name):
                conditions.append(Attr(name).eq(filters[name]))

        kwargs = {}
        if index_name:
            kwargs['IndexName'] = index_name
            kwargs['KeyConditionExpression'] = key_condition
        if conditions:
            expression = conditions[0]
            for condition in conditions[1:]:
                expression = expression & condition
            kwargs['FilterExpression'] = expression

        operation = self.table.query if index_name else self.table.scan
        items = self._paginate(operation, kwargs, f"Query {self.table_name}")

        events = [self._item_to_event(item) for item in items]
        events = [e for e in events if e is not None]
        events.sort(key=lambda e: (e.date, e.time or ''))
        if limit:
            events = events[:int(limit)]

        logger.info(f"Query returned {len(events)} events")
        return events

    def count_events(self) -> int:
        """Count catalog rows with a paginated COUNT scan."""
        total = 0
        kwargs = {'Select': 'COUNT'}
        with storage_errors(f"Count {self.table_name}"):
            response = self.table.scan(**kwargs)
            total += response.get('Count', 0)
            while 'LastEvaluatedKey' in response:
                response = self.table.scan(ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs)
                total += response.get('Count', 0)
        return total

    def _find_existing(self, event: Event) -> Optional[dict]:
        response = self.table.get_item(Key={'id': event.id})
        if 'Item' in response:
            return response['Item']

        if not event.content_key:
            return None

        response = self.table.query(
            IndexName=CONTENT_INDEX,
            KeyConditionExpression=Key('source').eq(event.source) & Key('content_key').eq(event.content_key)
        )
        # Two listings that both carry a URL are distinct events, even when
        # title, date and venue agree.
        items = [
            item for item in response.get('Items', [])
            if not event.source_url or not item.get('source_url')
        ]
        if items:
            logger.info(
                f"Matched event {event.id} to existing row {items[0]['id']} by content key",
                extra={'source': event.source}
            )
            return items[0]

        if self.merge_cross_source:
            items = self._paginate(
                self.table.scan,
                {'FilterExpression': Attr('content_key').eq(event.content_key)},
                'Cross-source lookup'
            )
            if items:
                logger.info(
                    f"Merging {event.source} event into {items[0]['source']} row {items[0]['id']}",
                    extra={'source': event.source}
                )
                return items[0]

        return None

    @staticmethod
    def _paginate(operation, kwargs: dict, action: str) -> List[dict]:
        with storage_errors(action):
            response = operation(**kwargs)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = operation(ExclusiveStartKey=response['LastEvaluatedKey'], **kwargs)
                items.extend(response.get('Items', []))
        return items

    def _event_to_item(self, event: Event) -> dict:
        """
        Convert an Event to a DynamoDB item.

        Empty optional attributes are omitted so that sparse GSIs never see
        empty key values.
        """
        item = {
            'id': event.id,
            'title': event.title,
            'description': event.description,
            'date': event.date,
            'time': event.time,
            'venue': event.venue,
            'city': event.city,
            'state': event.state,
            'category': event.category,
            'source': event.source,
            'source_url': event.source_url,
            'image_url': event.image_url,
            'organizer': event.organizer,
            'content_key': event.content_key,
            'created_at': event.created_at,
            'updated_at': event.updated_at,
        }

        if event.price is not None:
            if event.price.min is not None:
                item['price_min'] = Decimal(str(event.price.min))
            if event.price.max is not None:
                item['price_max'] = Decimal(str(event.price.max))
            item['currency'] = event.price.currency
            item['is_free'] = event.price.is_free

        return {k: v for k, v in item.items() if v not in (None, '')}

    def _item_to_event(self, item: dict) -> Optional[Event]:
        try:
            price = None
            if 'currency' in item or 'price_min' in item or 'is_free' in item:
                price = PriceRange(
                    min=float(item['price_min']) if 'price_min' in item else None,
                    max=float(item['price_max']) if 'price_max' in item else None,
                    currency=item.get('currency', 'BRL'),
                    is_free=bool(item.get('is_free', False))
                )

            return Event(
                id=item['id'],
                title=item['title'],
                description=item.get('description', ''),
                date=item['date'],
                time=item.get('time'),
                venue=item.get('venue'),
                city=item.get('city'),
                state=item.get('state'),
                category=item.get('category', 'outros'),
                price=price,
                source=item['source'],
                source_url=item.get('source_url'),
                image_url=item.get('image_url'),
                organizer=item.get('organizer'),
                content_key=item.get('content_key', ''),
                created_at=item.get('created_at'),
                updated_at=item.get('updated_at')
            )
        except (KeyError, ValueError) as e:
            logger.warning(f"Failed to convert item to Event: {e}")
            return None
