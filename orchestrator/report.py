"""Summaries of recent scrape run reports."""
from collections import Counter
from typing import Dict, List

from processor.models import RunStatus, ScrapeRunReport

COUNTERS = ('fetched', 'accepted', 'rejected', 'duplicates', 'inserted', 'updated', 'unchanged', 'retries')


def summarize(reports: List[ScrapeRunReport]) -> dict:
    """
    Aggregate run reports per source.

    Args:
        reports: Reports, newest first (as returned by RunLog.recent)

    Returns:
        Dict with per-source totals, rejection reason counts and an overall
        status derived from each source's latest run
    """
    sources: Dict[str, dict] = {}
    reasons = Counter()

    for report in reports:
        entry = sources.get(report.source)
        if entry is None:
            entry = {name: 0 for name in COUNTERS}
            entry.update({
                'runs': 0,
                'last_status': report.status.value,
                'last_run': report.started_at,
                'last_detail': report.detail,
            })
            sources[report.source] = entry

        entry['runs'] += 1
        for name in COUNTERS:
            entry[name] += getattr(report, name)
        for rejection in report.rejections:
            reasons[rejection.get('reason', 'unknown')] += 1

    latest = [entry['last_status'] for entry in sources.values()]
    if not latest:
        overall = 'empty'
    elif all(status == RunStatus.OK.value for status in latest):
        overall = 'ok'
    elif all(status == RunStatus.FAILED.value for status in latest):
        overall = 'failed'
    else:
        overall = 'partial'

    return {
        'total_runs': len(reports),
        'sources': sources,
        'rejection_reasons': dict(reasons.most_common()),
        'overall_status': overall,
    }


def format_summary(summary: dict) -> str:
    """Render a summary as a plain-text table."""
    lines = [f"Overall status: {summary['overall_status']} ({summary['total_runs']} report(s))", '']

    header = f"{'source':<12} {'runs':>4} {'fetched':>7} {'accepted':>8} {'rejected':>8} " \
             f"{'inserted':>8} {'updated':>7} {'retries':>7}  last status"
    lines.append(header)
    lines.append('-' * len(header))

    for source, entry in sorted(summary['sources'].items()):
        lines.append(
            f"{source:<12} {entry['runs']:>4} {entry['fetched']:>7} {entry['accepted']:>8} "
            f"{entry['rejected']:>8} {entry['inserted']:>8} {entry['updated']:>7} "
            f"{entry['retries']:>7}  {entry['last_status']}"
        )

    if summary['rejection_reasons']:
        lines.append('')
        lines.append('Rejection reasons:')
        for reason, count in summary['rejection_reasons'].items():
            lines.append(f"  {reason:<24} {count}")

    return '\n'.join(lines)
