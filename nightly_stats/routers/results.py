"""
Results API router.

Failed-test listing, test details and discount annotation.
"""
import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from nightly_stats.config import get_settings
from nightly_stats.database import get_db
from nightly_stats.models.schemas import (
    FailedTestSchema, DiscountRecordSchema, TestDetailsSchema,
    DiscountRequest, BulkDiscountRequest, CopyDiscountsRequest, CopyDiscountsResponse
)
from nightly_stats.services import result_store
from nightly_stats.services.report_service import (
    get_utc_date_for_selected_date, get_date_for_recent_discounts
)
from nightly_stats.utils.auth import verify_api_key

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/failed", response_model=List[FailedTestSchema])
async def get_failed_tests(
    run_date: date = Query(..., description="Nightly run date as selected by the operator"),
    browser: Optional[str] = Query(None, description="Browser filter ('--' for all)"),
    db: Session = Depends(get_db)
):
    """
    Get failed, skipped, not-executed and timed-out nightly tests.

    The selected date is shifted to the UTC date the nightly rows carry.
    """
    utc_date = get_utc_date_for_selected_date(run_date)
    return result_store.get_failed_tests(db, utc_date, browser)


@router.get("/projects", response_model=List[str])
async def get_projects(
    automation_type: Optional[str] = Query(None, description="ui, api or '--' for all"),
    db: Session = Depends(get_db)
):
    """Get the project dropdown, '--' first."""
    return result_store.get_project_list(db, automation_type)


@router.get("/discounts/yesterday", response_model=List[DiscountRecordSchema])
async def get_yesterdays_discounts(
    run_date: date = Query(..., description="Nightly run date as selected by the operator"),
    db: Session = Depends(get_db)
):
    """Get the discounted failures of the selected run."""
    return result_store.get_yesterdays_discounts(db, get_utc_date_for_selected_date(run_date))


@router.get("/discounts/recent", response_model=List[DiscountRecordSchema])
async def get_recent_discounts(
    run_date: date = Query(..., description="Nightly run date as selected by the operator"),
    days_back: int = Query(1, ge=1, le=30, description="How many days before the run to look"),
    db: Session = Depends(get_db)
):
    """
    Get discounts from an earlier run, for copying forward.

    A target date that falls on a weekend moves back to Friday.
    """
    target = get_date_for_recent_discounts(get_utc_date_for_selected_date(run_date), days_back)
    return result_store.get_recent_discounts(db, target)


@router.post(
    "/discount",
    response_model=List[FailedTestSchema],
    dependencies=[Depends(verify_api_key)]
)
async def discount_tests(
    request: BulkDiscountRequest,
    db: Session = Depends(get_db)
):
    """Apply one discount to every selected test."""
    modify_by = get_settings().operator_name
    updated = [
        result_store.discount_test(db, test_id, request.discount, request.reason, modify_by)
        for test_id in request.test_ids
    ]
    logger.info(f"{modify_by} discounted {len(updated)} tests as '{request.discount}'")
    return updated


@router.post(
    "/discounts/copy",
    response_model=CopyDiscountsResponse,
    dependencies=[Depends(verify_api_key)]
)
async def copy_discounts(
    request: CopyDiscountsRequest,
    db: Session = Depends(get_db)
):
    """
    Copy earlier discounts onto the matching failures of the selected run.

    Records whose error message changed are returned under 'skipped'
    unless force is set.
    """
    utc_date = get_utc_date_for_selected_date(request.run_date)
    failed_tests = result_store.get_failed_tests(db, utc_date, request.browser)
    return result_store.copy_discounts(
        db,
        request.discount_ids,
        failed_tests,
        get_settings().operator_name,
        force=request.force
    )


@router.get("/{test_id}", response_model=TestDetailsSchema)
async def get_test_details(
    test_id: int = Path(..., ge=1),
    db: Session = Depends(get_db)
):
    """Get the full record for one test result, with a link to its Jenkins build."""
    result = result_store.get_test_details(db, test_id)
    details = TestDetailsSchema.model_validate(result)
    if result.build_number:
        details.job_url = f"{get_settings().JENKINS_URL}/job/{result.project_name}/{result.build_number}/"
    return details


@router.post(
    "/{test_id}/discount",
    response_model=FailedTestSchema,
    dependencies=[Depends(verify_api_key)]
)
async def discount_test(
    request: DiscountRequest,
    test_id: int = Path(..., ge=1),
    db: Session = Depends(get_db)
):
    """Discount (or clear) a single test result."""
    return result_store.discount_test(
        db, test_id, request.discount, request.reason, get_settings().operator_name
    )
