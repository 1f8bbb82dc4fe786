"""AWS Lambda handler for the scheduled event scrape."""
import json
import logging
import time
from typing import Any, Dict

from errors import ConfigurationError, StorageUnavailable
from orchestrator.pipeline import build_pipeline
from processor.models import Region
from settings import load_settings

# Attributes every LogRecord has; anything else came in through ``extra``.
STANDARD_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}

STATUS_CODES = {0: 200, 2: 207, 1: 500}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any ``extra`` fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in STANDARD_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _error_response(message: str, error: Exception, start_time: float) -> Dict[str, Any]:
    return {
        'statusCode': 500,
        'body': json.dumps({
            'message': message,
            'error': str(error),
            'error_type': type(error).__name__,
            'duration_seconds': round(time.time() - start_time, 2)
        })
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Run one scrape pass for the EventBridge schedule.

    The event may carry ``sources`` (list of ids) and ``region``
    ("city,state") to override the environment defaults.

    Args:
        event: EventBridge event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode (200 ok, 207 partial, 500 failed)
        and per-source statistics
    """
    start_time = time.time()
    event = event or {}

    try:
        settings = load_settings(dotenv=False)
        setup_logging(settings.log_level)
        settings.validate()
    except ConfigurationError as e:
        logging.getLogger(__name__).error(f"Invalid configuration: {e}", exc_info=True)
        return _error_response('Invalid configuration', e, start_time)

    logger = logging.getLogger(__name__)
    logger.info(
        "Lambda execution started",
        extra={
            'events_table': settings.events_table,
            'sources': event.get('sources') or settings.enabled_sources()
        }
    )

    try:
        region = Region.parse(event['region']) if event.get('region') else None

        pipeline = build_pipeline(settings, event.get('sources'))
        pipeline.storage.ping()
        result = pipeline.orchestrator.run(sources=event.get('sources'), region=region)

    except StorageUnavailable as e:
        logger.error(
            f"Storage unavailable: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _error_response('Catalog storage unavailable', e, start_time)

    except Exception as e:
        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(time.time() - start_time, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )
        return _error_response('Scrape failed', e, start_time)

    duration = time.time() - start_time
    statistics = {
        report.source: {
            'status': report.status.value,
            'fetched': report.fetched,
            'accepted': report.accepted,
            'rejected': report.rejected,
            'inserted': report.inserted,
            'updated': report.updated,
            'unchanged': report.unchanged,
            'retries': report.retries,
        }
        for report in result.reports
    }

    logger.info(
        "Lambda execution completed",
        extra={
            'run_id': result.run_id,
            'status': result.status,
            'duration_seconds': round(duration, 2)
        }
    )

    return {
        'statusCode': STATUS_CODES[result.exit_code],
        'body': json.dumps({
            'message': f"Scrape {result.status}",
            'run_id': result.run_id,
            'statistics': statistics,
            'duration_seconds': round(duration, 2)
        })
    }
