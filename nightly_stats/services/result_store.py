"""
Result store query layer.

Provides the filtered reads and discount annotation updates used by the
dashboard routers. All functions take an open Session; transaction
handling belongs to the caller (see nightly_stats.database).
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Dict, Optional, Tuple, Any, Iterable, Union

from sqlalchemy import func, case, and_
from sqlalchemy.orm import Session

from nightly_stats.constants import (
    NO_FILTER, DISCOUNT_CODES, LOG_TYPE_NIGHTLY, LOG_TYPE_COUNT,
    FAILED_RESULTS, STATS_RESULTS, TEST_ENVS, PROD_ENVS, COPY_DISCOUNT_ERROR_PREFIX
)
from nightly_stats.models.db_models import AutomationResult, utcnow
from nightly_stats.services.errors import TestNotFoundError
from nightly_stats.services.report_service import get_type_from_project

logger = logging.getLogger(__name__)

END_OF_DAY = time(23, 59, 59, 999000)


# ============================================================================
# Helper Functions
# ============================================================================

def get_date_range(run_date: date, today: Optional[date] = None) -> Tuple[datetime, datetime]:
    """
    Compute the CreateDateUtc window for a nightly run date.

    The window opens at midnight of run_date and closes at the end of the
    following day. On Mondays the window is stretched to the end of today
    so Friday's run picks up weekend results.

    Args:
        run_date: Nightly run date (already shifted to UTC by the caller)
        today: Current date, injectable for tests

    Returns:
        (start, end) datetimes, both exclusive bounds
    """
    today = today or date.today()
    start = datetime.combine(run_date, time.min)
    end = datetime.combine(run_date + timedelta(days=1), END_OF_DAY)

    if today.weekday() == 0:  # Monday
        end = datetime.combine(today, END_OF_DAY)

    return start, end


def get_discount_code(name: Union[str, int, None]) -> int:
    """
    Map a discount label (or numeric string) to its stored code.

    'Clear Discount' and unknown labels map to 0.
    """
    if isinstance(name, int):
        return name
    if name in DISCOUNT_CODES:
        return DISCOUNT_CODES[name]
    try:
        return int(name)
    except (TypeError, ValueError):
        return 0


def _uses_filter(value: Optional[str]) -> bool:
    return bool(value) and value != NO_FILTER


def _in_window(query, start: datetime, end: datetime):
    return query.filter(
        AutomationResult.create_date_utc > start,
        AutomationResult.create_date_utc < end
    )


# ============================================================================
# Failed tests and discounts
# ============================================================================

def get_failed_tests(
    db: Session,
    run_date: date,
    browser: Optional[str] = None,
    today: Optional[date] = None
) -> List[AutomationResult]:
    """
    Get nightly failures (Failed, Skipped, NotExecuted, Timeout) for a run date.

    Args:
        db: Database session
        run_date: Nightly run date
        browser: Optional browser filter ('--' or empty means all)
        today: Current date, injectable for tests

    Returns:
        Result rows ordered by id
    """
    start, end = get_date_range(run_date, today)

    query = db.query(AutomationResult).filter(
        AutomationResult.log_type == LOG_TYPE_NIGHTLY,
        AutomationResult.test_result.in_(FAILED_RESULTS)
    )
    query = _in_window(query, start, end)

    if _uses_filter(browser):
        query = query.filter(AutomationResult.browser == browser)

    return query.order_by(AutomationResult.id).all()


def get_yesterdays_discounts(
    db: Session,
    run_date: date,
    today: Optional[date] = None
) -> List[AutomationResult]:
    """Get discounted nightly failures for a run date."""
    start, end = get_date_range(run_date, today)

    query = db.query(AutomationResult).filter(
        AutomationResult.test_result == 'Failed',
        AutomationResult.log_type == LOG_TYPE_NIGHTLY,
        AutomationResult.discount > 0
    )
    return _in_window(query, start, end).order_by(AutomationResult.id).all()


def get_recent_discounts(
    db: Session,
    run_date: date,
    days_back: int = 0,
    today: Optional[date] = None
) -> List[AutomationResult]:
    """
    Get discounted non-passing results from a recent run.

    Args:
        db: Database session
        run_date: Target date. With days_back == 0 the caller has already
                  resolved the weekend-adjusted date.
        days_back: Legacy offset; window becomes
                   [run_date - days_back + 2, end of run_date - days_back + 3]
        today: Current date, injectable for tests

    Returns:
        Result rows ordered by id
    """
    if days_back == 0:
        start, end = get_date_range(run_date, today)
    else:
        start = datetime.combine(run_date - timedelta(days=days_back - 2), time.min)
        end = datetime.combine(run_date - timedelta(days=days_back - 3), END_OF_DAY)

    query = db.query(AutomationResult).filter(
        AutomationResult.test_result != 'Passed',
        AutomationResult.discount > 0
    )
    return _in_window(query, start, end).order_by(AutomationResult.id).all()


def discount_test(
    db: Session,
    test_id: int,
    discount_code: Union[str, int],
    discount_reason: Optional[str],
    modify_by: str
) -> AutomationResult:
    """
    Set (or clear) the discount annotation on one result.

    Code 0 ('Clear Discount') always clears the reason, whatever text was
    supplied.

    Raises:
        TestNotFoundError: If test_id does not exist
    """
    result = db.query(AutomationResult).filter(AutomationResult.id == test_id).first()
    if result is None:
        raise TestNotFoundError(test_id)

    code = get_discount_code(discount_code)
    result.discount = code
    result.discount_reason = '' if code == 0 else (discount_reason or '')
    result.modify_by = modify_by
    result.modify_date_utc = utcnow()
    db.flush()

    logger.info(f"Test {test_id} discount set to {code} by {modify_by}")
    return result


def copy_discounts(
    db: Session,
    discount_ids: Iterable[int],
    failed_tests: List[AutomationResult],
    modify_by: str,
    force: bool = False
) -> Dict[str, List[Any]]:
    """
    Copy earlier discounts onto matching failures from a newer build.

    A failure matches a discount when test name, env and project are equal
    and its build number is higher. The discount is applied when the new
    ErrorMsg contains the first 185 characters of the old one, or when
    force is set.

    Args:
        db: Database session
        discount_ids: Ids of the discounted source records
        failed_tests: Current failures to copy onto
        modify_by: Operator name
        force: Apply even when the error messages differ

    Returns:
        {'copied': [target ids], 'skipped': [{'test_id', 'test_name', 'reason'}]}
    """
    copied: List[int] = []
    skipped: List[Dict[str, Any]] = []

    discounts = db.query(AutomationResult).filter(AutomationResult.id.in_(list(discount_ids))).all()

    for discount in discounts:
        matches = [
            t for t in failed_tests
            if t.test_name == discount.test_name
            and t.env == discount.env
            and t.project_name == discount.project_name
            and (t.build_number or 0) > (discount.build_number or 0)
        ]
        if not matches:
            continue

        target = matches[0]
        error_prefix = (discount.error_msg or '')[:COPY_DISCOUNT_ERROR_PREFIX]
        if error_prefix in (target.error_msg or '') or force:
            discount_test(db, target.id, discount.discount or 0, discount.discount_reason, modify_by)
            copied.append(target.id)
        else:
            skipped.append({
                'test_id': target.id,
                'test_name': target.test_name,
                'reason': 'ErrorMsg differs from the discounted test'
            })

    return {'copied': copied, 'skipped': skipped}


def get_test_details(db: Session, test_id: int) -> AutomationResult:
    """
    Get a single result record.

    Raises:
        TestNotFoundError: If test_id does not exist
    """
    result = db.query(AutomationResult).filter(AutomationResult.id == test_id).first()
    if result is None:
        raise TestNotFoundError(test_id)
    return result


def get_project_list(db: Session, automation_type: Optional[str] = None) -> List[str]:
    """
    Get project names known from count records.

    Returns:
        ['--', *sorted distinct project names]
    """
    query = db.query(AutomationResult.project_name).filter(
        AutomationResult.log_type == LOG_TYPE_COUNT
    )
    if _uses_filter(automation_type):
        query = query.filter(AutomationResult.automation_type == automation_type.lower())

    names = [row[0] for row in query.distinct().order_by(AutomationResult.project_name).all()]
    return [NO_FILTER] + names


# ============================================================================
# Statistics
# ============================================================================

def get_stats(
    db: Session,
    run_date: date,
    discounted: bool,
    today: Optional[date] = None
) -> List[Dict[str, Any]]:
    """
    Group nightly failures per project.

    Args:
        db: Database session
        run_date: Nightly run date
        discounted: True for discounted failures, False for open ones
        today: Current date, injectable for tests

    Returns:
        List of dicts with project, test_count, prod_count, discount_reasons,
        type and owner, in first-seen order
    """
    start, end = get_date_range(run_date, today)

    query = db.query(AutomationResult).filter(
        AutomationResult.log_type == LOG_TYPE_NIGHTLY,
        AutomationResult.test_result.in_(STATS_RESULTS)
    )
    query = _in_window(query, start, end)
    if discounted:
        query = query.filter(AutomationResult.discount > 0)
    else:
        query = query.filter(AutomationResult.discount == 0)

    project_stats: Dict[str, Dict[str, Any]] = {}
    for row in query.order_by(AutomationResult.id).all():
        stat = project_stats.get(row.project_name)
        if stat is None:
            stat = project_stats[row.project_name] = {
                'project': row.project_name,
                'test_count': 0,
                'prod_count': 0,
                'discount_reasons': [],
                'type': get_type_from_project(row.project_name),
                'owner': row.project_owner or 'N/A',
            }

        if row.env in TEST_ENVS:
            stat['test_count'] += 1
        elif row.env in PROD_ENVS:
            stat['prod_count'] += 1

        if row.discount_reason and row.discount_reason not in stat['discount_reasons']:
            stat['discount_reasons'].append(row.discount_reason)

    return [
        {**stat, 'discount_reasons': ', '.join(stat['discount_reasons'])}
        for stat in project_stats.values()
    ]


def _pass_percentage(total: Optional[int], failed: Optional[int]) -> int:
    if not total:
        return 100
    return round((total - (failed or 0)) / total * 100)


def get_percentages(db: Session, run_date: date, today: Optional[date] = None) -> Dict[str, int]:
    """
    Pass percentages for TEST/PROD x UI/API, counting only undiscounted failures.

    Returns:
        {'test_ui', 'test_api', 'prod_ui', 'prod_api'} -> percentage (100 when no tests ran)
    """
    start, end = get_date_range(run_date, today)
    r = AutomationResult

    def count_when(*conditions):
        return func.sum(case((and_(*conditions), 1), else_=0))

    totals = _in_window(db.query(
        count_when(r.env.in_(TEST_ENVS), r.automation_type == 'ui'),
        count_when(r.env.in_(TEST_ENVS), r.automation_type == 'api'),
        count_when(r.env.in_(PROD_ENVS), r.automation_type == 'ui'),
        count_when(r.env.in_(PROD_ENVS), r.automation_type == 'api'),
    ).filter(r.log_type == LOG_TYPE_NIGHTLY), start, end).one()

    failed = _in_window(db.query(
        count_when(r.env == 'TEST', r.automation_type == 'ui', r.discount == 0),
        count_when(r.env == 'TEST', r.automation_type == 'api', r.discount == 0),
        count_when(r.env == 'PROD', r.automation_type == 'ui', r.discount == 0),
        count_when(r.env == 'PROD', r.automation_type == 'api', r.discount == 0),
    ).filter(
        r.log_type == LOG_TYPE_NIGHTLY,
        r.test_result.in_(STATS_RESULTS)
    ), start, end).one()

    return {
        'test_ui': _pass_percentage(totals[0], failed[0]),
        'test_api': _pass_percentage(totals[1], failed[1]),
        'prod_ui': _pass_percentage(totals[2], failed[2]),
        'prod_api': _pass_percentage(totals[3], failed[3]),
    }


def get_count_stats(db: Session, run_date: date, today: Optional[date] = None) -> Dict[str, str]:
    """
    Compare expected per-project test counts against what actually ran.

    Count records (LogType='Count') carry the expected count in TestRunTime.
    Expected counts of 0 are ignored. Projects that ran without a count
    record are reported as over with 'Expected: NONE'.

    Returns:
        {'under': str, 'over': str}, each a concatenation of
        "{env} {project}\\nExpected: {n} Actual: {m}\\n" entries
    """
    start, end = get_date_range(run_date, today)
    r = AutomationResult

    expected = db.query(r.project_name, r.env, r.test_run_time).filter(
        r.log_type == LOG_TYPE_COUNT
    ).order_by(r.project_name, r.env).all()

    actual_rows = _in_window(
        db.query(r.project_name, r.env, func.count(r.test_name)).filter(r.log_type == LOG_TYPE_NIGHTLY),
        start, end
    ).group_by(r.project_name, r.env).order_by(r.project_name, r.env).all()
    actual = {(project, env): count for project, env, count in actual_rows}
    expected_keys = {(project, env) for project, env, _ in expected}

    under: List[str] = []
    over: List[str] = []

    for project, env, expected_count in expected:
        if not expected_count:
            continue
        actual_count = actual.get((project, env))
        if actual_count is None:
            under.append(f"{env} {project}\nExpected: {expected_count} Actual: 0\n")
        elif expected_count < actual_count:
            over.append(f"{env} {project}\nExpected: {expected_count} Actual: {actual_count}\n")
        elif expected_count > actual_count:
            under.append(f"{env} {project}\nExpected: {expected_count} Actual: {actual_count}\n")

    for project, env, actual_count in actual_rows:
        if (project, env) not in expected_keys:
            over.append(f"{env} {project}\nExpected: NONE Actual: {actual_count}\n")

    return {'under': ''.join(under), 'over': ''.join(over)}
