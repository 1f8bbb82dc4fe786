"""Command-line entry point for the event scraper."""
import argparse
import logging
import signal
import sys
from typing import List, Optional

from errors import ConfigurationError, ScraperError, StorageUnavailable
from lambda_function import setup_logging
from monitor.scheduler import MonitorScheduler
from orchestrator.orchestrator import RunResult
from orchestrator.pipeline import build_pipeline
from orchestrator.report import format_summary, summarize
from processor.models import Region
from settings import load_settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='event-scraper',
        description='Scrape Eventbrite and Sympla events into the shared catalog.'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    scrape = subparsers.add_parser('scrape', help='Run one scrape pass')
    scrape.add_argument('--source', action='append', dest='sources', metavar='ID',
                        help='Source to scrape (repeatable; default: all enabled)')
    scrape.add_argument('--region', help='Target region as "city,state" (default: DEFAULT_REGION)')

    subparsers.add_parser('check', help='Validate configuration, tables and source reachability')

    monitor = subparsers.add_parser('monitor', help='Show or refresh source structure health')
    monitor.add_argument('--check-sites', action='store_true', help='Probe every source now')
    monitor.add_argument('--watch', action='store_true', help='Probe on PROBE_INTERVAL until interrupted')
    monitor.add_argument('--ack', metavar='ID', help='Acknowledge a failing source')

    report = subparsers.add_parser('report', help='Summarize recent run reports')
    report.add_argument('--limit', type=int, default=20, help='Number of reports to read (default: 20)')
    report.add_argument('--source', help='Only reports for this source')

    return parser


def format_health_report(report: dict) -> str:
    lines = []
    for source, entry in sorted(report['sources'].items()):
        if entry['overall_health'] is None:
            lines.append(f"{source:<12} {'unknown':<9} never probed")
            continue
        failed = ', '.join(entry['failed_landmarks']) or '-'
        line = (
            f"{source:<12} {entry['state']:<9} {entry['overall_health']:>5.1f}%  "
            f"failures={entry['consecutive_failures']}  failed landmarks: {failed}"
        )
        if entry['acknowledged']:
            line += '  (acknowledged)'
        if entry['error']:
            line += f"  error: {entry['error']}"
        lines.append(line)

    if report['average_health'] is not None:
        lines.append(f"Average health: {report['average_health']}%")
    if report['failing']:
        lines.append(f"FAILING: {', '.join(report['failing'])}")
    return '\n'.join(lines)


def format_run_result(result: RunResult) -> str:
    lines = [f"Run {result.run_id}: {result.status}"]
    for report in result.reports:
        lines.append(
            f"  {report.source:<12} {report.status.value:<18} fetched={report.fetched} "
            f"accepted={report.accepted} rejected={report.rejected} "
            f"inserted={report.inserted} updated={report.updated} retries={report.retries}"
        )
        if report.detail:
            lines.append(f"    {report.detail}")
        for warning in report.warnings:
            lines.append(f"    warning: {warning}")
    return '\n'.join(lines)


def cmd_scrape(args, settings, pipeline_factory=build_pipeline) -> int:
    try:
        region = Region.parse(args.region) if args.region else None
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    pipeline = pipeline_factory(settings, args.sources)

    def cancel(signum, frame):
        logger.warning(f"Received signal {signum}, cancelling run")
        pipeline.cancel_event.set()

    previous = {sig: signal.signal(sig, cancel) for sig in (signal.SIGTERM, signal.SIGINT)}
    try:
        pipeline.storage.ping()
        result = pipeline.orchestrator.run(
            sources=args.sources,
            region=region,
            cancel_event=pipeline.cancel_event
        )
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    print(format_run_result(result))
    return result.exit_code


def cmd_check(args, settings, pipeline_factory=build_pipeline) -> int:
    print('Configuration: ok')
    pipeline = pipeline_factory(settings)

    ok = True
    for component in (pipeline.storage, pipeline.run_log, pipeline.health_store):
        try:
            component.ping()
            print(f"Table {component.table_name}: ok")
        except StorageUnavailable as e:
            print(f"Table {component.table_name}: UNREACHABLE ({e})")
            ok = False

    for source_id, extractor in pipeline.extractors.items():
        try:
            landmarks = extractor.probe()
        except ScraperError as e:
            print(f"Source {source_id}: UNREACHABLE ({e})")
            ok = False
            continue
        score = pipeline.monitor.score(landmarks)
        print(f"Source {source_id}: reachable, {score}% of landmarks present")

    return EXIT_OK if ok else EXIT_ERROR


def cmd_monitor(args, settings, pipeline_factory=build_pipeline) -> int:
    pipeline = pipeline_factory(settings)
    monitor = pipeline.monitor
    monitor.refresh()

    if args.ack:
        try:
            health = monitor.acknowledge(args.ack)
        except KeyError:
            print(f"Unknown source: {args.ack}", file=sys.stderr)
            return EXIT_ERROR
        print(f"{health.source} acknowledged and reset to {health.state.value}")
        return EXIT_OK

    if args.watch:
        scheduler = MonitorScheduler(monitor, interval=settings.probe_interval)
        scheduler.start()
        try:
            scheduler.wait()
        except KeyboardInterrupt:
            scheduler.stop()
        return EXIT_OK

    if args.check_sites:
        monitor.probe_all()

    report = monitor.health_report()
    print(format_health_report(report))
    return EXIT_PARTIAL if report['failing'] else EXIT_OK


def cmd_report(args, settings, pipeline_factory=build_pipeline) -> int:
    pipeline = pipeline_factory(settings)
    reports = pipeline.run_log.recent(limit=args.limit, source=args.source)
    print(format_summary(summarize(reports)))
    return EXIT_OK


COMMANDS = {
    'scrape': cmd_scrape,
    'check': cmd_check,
    'monitor': cmd_monitor,
    'report': cmd_report,
}


def main(argv: Optional[List[str]] = None, env=None, pipeline_factory=build_pipeline) -> int:
    """
    Run the CLI.

    Args:
        argv: Arguments (default: sys.argv[1:])
        env: Environment mapping for settings (default: os.environ plus .env)
        pipeline_factory: Builds the Pipeline from settings

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(env)
        setup_logging(settings.log_level)
        settings.validate()
        return COMMANDS[args.command](args, settings, pipeline_factory)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except StorageUnavailable as e:
        logger.error(f"Storage unavailable: {e}", exc_info=True)
        print(f"Storage unavailable: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
