"""
Report formatting for nightly status posts.

Turns grouped result rows into the chat-ready text the QA team posts
after each nightly run, plus the expected-vs-actual count drift report.
"""
import re
from datetime import date, timedelta
from typing import Dict, List, Any


PERCENTAGE_LABELS = (
    ('test_ui', 'TEST UI'),
    ('test_api', 'TEST API'),
    ('prod_ui', 'PROD UI'),
    ('prod_api', 'PROD API'),
)


def get_type_from_project(project_name: str) -> str:
    """
    Infer automation type ('ui' or 'api') from a project name.

    Order matters: several UI projects contain 'api'-like fragments and
    are matched first.
    """
    name = project_name.lower()
    if 'legacy' in name and 'tasks' not in name:
        return 'ui'
    if 'shopper-drawer' in name:
        return 'ui'
    if 'services' in name:
        return 'api'
    if 'ecomm-events' in name:
        return 'api'
    if 'api-uui-shell' in name:
        return 'api'
    if 'profile-sync' in name:
        return 'ui'
    if 'transcript-viewer' in name:
        return 'ui'
    if 'ui' in name or 'wtf' in name:
        return 'ui'
    if 'api' in name:
        return 'api'
    return 'ui'


def get_stats_app_name(project_name: str) -> str:
    """
    Derive a display name from a Jenkins project name.

    Example:
        >>> get_stats_app_name("qe-crm-ui-customer-search-v2")
        'Customer Search'
    """
    name = project_name
    if '-ui-' in name and name != 'qe-crm-ui-shell':
        match = re.search(r'-ui-(.+?)(-v2)?$', name)
        if match:
            name = match.group(1)
    elif 'api' in name:
        match = re.search(r'-api-(.+?)$', name)
        if match:
            name = match.group(1)

    if 'dotnet' in name:
        name = name.replace('-dotnet', '', 1)

    return ' '.join(word[:1].upper() + word[1:].lower() for word in name.split('-'))


def format_percentages(percentages: Dict[str, int]) -> str:
    """
    Format pass percentages, grouping labels that share a value.

    Example:
        {'test_ui': 100, 'test_api': 100, 'prod_ui': 90, 'prod_api': 100}
        -> 'PROD UI 90% TEST UI TEST API PROD API 100%'
    """
    values = [(label, percentages[key]) for key, label in PERCENTAGE_LABELS]
    parts = []
    for perc in sorted({value for _, value in values}):
        labels = ' '.join(label for label, value in values if value == perc)
        parts.append(f"{labels} {perc}%")
    return ' '.join(parts)


def format_stat_line(stat: Dict[str, Any], jenkins_url: str) -> str:
    """Format one project line: '(PROD/TEST) [App](link) (p/t) (O) - reasons'."""
    app_name = get_stats_app_name(stat['project'])
    owner = stat.get('owner')
    owner = owner[:1] if owner and owner != 'N/A' else 'N/A'
    link = f"[{app_name}]({jenkins_url}/job/{stat['project']})"
    prod_count = stat.get('prod_count', 0)
    test_count = stat.get('test_count', 0)

    line = ''
    if prod_count > 0 and test_count > 0:
        line = f"(PROD/TEST) {link} ({prod_count}/{test_count}) ({owner})"
    elif prod_count > 0:
        line = f"(PROD) {link} ({prod_count}) ({owner})"
    elif test_count > 0:
        line = f"(TEST) {link} ({test_count}) ({owner})"

    if stat.get('discount_reasons'):
        line += f" - {stat['discount_reasons']}"
    return line


def _format_sections(stats: List[Dict[str, Any]], jenkins_url: str) -> str:
    ui_lines = sorted(format_stat_line(s, jenkins_url) for s in stats if s.get('type') == 'ui')
    api_lines = sorted(format_stat_line(s, jenkins_url) for s in stats if s.get('type') != 'ui')

    output = ''
    if ui_lines:
        output += '*UI*\n' + '\n'.join(ui_lines) + '\n'
    if api_lines:
        output += '*API*\n' + '\n'.join(api_lines) + '\n'
    return output


def format_nightly_stats(
    percentages: Dict[str, int],
    stats: List[Dict[str, Any]],
    discounted_stats: List[Dict[str, Any]],
    jenkins_url: str
) -> str:
    """
    Build the nightly status post.

    Args:
        percentages: Output of result_store.get_percentages
        stats: Undiscounted per-project stats (result_store.get_stats)
        discounted_stats: Discounted per-project stats
        jenkins_url: Jenkins base URL used for project links

    Returns:
        Markdown-ish text ready to paste into chat
    """
    jenkins_url = jenkins_url.rstrip('/')
    output = f"*{format_percentages(percentages)}*\n\n"
    output += _format_sections(stats, jenkins_url)

    if discounted_stats:
        output += '\n*Discounted:*\n'
        output += _format_sections(discounted_stats, jenkins_url)

    return output


def format_count_stats(count_stats: Dict[str, str]) -> str:
    """Format the under/over count drift report."""
    under = count_stats.get('under', '')
    over = count_stats.get('over', '')
    if not under and not over:
        return 'All counts are accurate'

    output = ''
    if under:
        output += 'CURRENT UNDER COUNTS\n' + under + '\n'
    if over:
        output += 'CURRENT OVER COUNTS\n' + over + '\n'
    return output


def get_utc_date_for_selected_date(selected: date) -> date:
    """
    Shift an operator-selected date to the UTC date its results carry.

    Nightly data starts after 5pm MST, so a run on 11/19 is stamped 11/20 UTC.
    """
    return selected + timedelta(days=1)


def get_date_for_recent_discounts(base_utc_date: date, days_back: int) -> date:
    """Go back days_back days; a weekend result moves back to Friday."""
    target = base_utc_date - timedelta(days=days_back)
    if target.weekday() == 6:  # Sunday
        target -= timedelta(days=2)
    elif target.weekday() == 5:  # Saturday
        target -= timedelta(days=1)
    return target
