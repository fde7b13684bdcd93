"""
Reports API router.

Nightly status post and count drift report.
"""
import logging
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from nightly_stats.config import get_settings
from nightly_stats.database import get_db
from nightly_stats.models.schemas import NightlyReportResponse, CountReportResponse
from nightly_stats.services import result_store, report_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/nightly", response_model=NightlyReportResponse)
async def get_nightly_report(
    run_date: date = Query(..., description="Nightly run date as selected by the operator"),
    db: Session = Depends(get_db)
):
    """
    Build the nightly status post.

    Returns:
        Percentages, per-project stats (open and discounted) and the
        formatted text ready to paste into chat
    """
    utc_date = report_service.get_utc_date_for_selected_date(run_date)
    percentages = result_store.get_percentages(db, utc_date)
    stats = result_store.get_stats(db, utc_date, discounted=False)
    discounted_stats = result_store.get_stats(db, utc_date, discounted=True)

    report = report_service.format_nightly_stats(
        percentages, stats, discounted_stats, get_settings().JENKINS_URL
    )
    logger.info(f"Built nightly report for {run_date}: {len(stats)} projects with open failures")

    return {
        'run_date': run_date,
        'percentages': percentages,
        'stats': stats,
        'discounted_stats': discounted_stats,
        'report': report,
    }


@router.get("/counts", response_model=CountReportResponse)
async def get_count_report(
    run_date: date = Query(..., description="Nightly run date as selected by the operator"),
    db: Session = Depends(get_db)
):
    """Compare expected test counts against what ran."""
    utc_date = report_service.get_utc_date_for_selected_date(run_date)
    count_stats = result_store.get_count_stats(db, utc_date)
    return {
        'run_date': run_date,
        'under': count_stats['under'],
        'over': count_stats['over'],
        'report': report_service.format_count_stats(count_stats),
    }
