"""
Pydantic schemas for API request/response validation.

These schemas define the API contract separate from database models
for clean separation of concerns.
"""
from datetime import date, datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator

from nightly_stats.constants import CLEAR_DISCOUNT, DISCOUNT_CODES


# Response Schemas

class FailedTestSchema(BaseModel):
    """Row of the failed-tests table."""
    id: int
    build_number: Optional[int] = None
    automation_type: Optional[str] = None
    env: Optional[str] = None
    project_name: str
    test_name: Optional[str] = None
    test_result: Optional[str] = None
    browser: Optional[str] = None
    discount: int = 0
    discount_name: str = ''
    discount_reason: Optional[str] = None
    modify_by: Optional[str] = None

    class Config:
        from_attributes = True


class DiscountRecordSchema(BaseModel):
    """A discounted result, as listed for copy-forward."""
    id: int
    build_number: Optional[int] = None
    env: Optional[str] = None
    project_name: str
    test_name: Optional[str] = None
    test_result: Optional[str] = None
    discount: int = 0
    discount_name: str = ''
    discount_reason: Optional[str] = None
    error_msg: Optional[str] = None
    create_date_utc: Optional[datetime] = None

    class Config:
        from_attributes = True


class TestDetailsSchema(FailedTestSchema):
    """Full record shown in the test details view."""
    __test__ = False  # Not a pytest test class

    rerun: Optional[int] = None
    error_msg: Optional[str] = None
    stack_trace: Optional[str] = None
    project_owner: Optional[str] = None
    machine_name: Optional[str] = None
    app_version: Optional[str] = None
    test_run_time: Optional[int] = None
    create_date_utc: Optional[datetime] = None
    modify_date_utc: Optional[datetime] = None
    job_url: Optional[str] = None  # Jenkins page of the build that produced the result


class PercentagesSchema(BaseModel):
    """Pass percentages per environment group and automation type."""
    test_ui: int
    test_api: int
    prod_ui: int
    prod_api: int


class ProjectStatSchema(BaseModel):
    """Failures grouped by project."""
    project: str
    test_count: int
    prod_count: int
    discount_reasons: str = ''
    type: str
    owner: str


class NightlyReportResponse(BaseModel):
    """Response for the nightly status post."""
    run_date: date
    percentages: PercentagesSchema
    stats: List[ProjectStatSchema]
    discounted_stats: List[ProjectStatSchema]
    report: str


class CountReportResponse(BaseModel):
    """Response for the expected-vs-actual count report."""
    run_date: date
    under: str
    over: str
    report: str


class CopyDiscountsResponse(BaseModel):
    """Outcome of a discount copy-forward."""
    copied: List[int]
    skipped: List[Dict[str, Any]]


class WorkflowStartedResponse(BaseModel):
    """Returned when a trigger or verification workflow is queued."""
    workflow_id: str
    message: str
    status_url: str


# Request Schemas

class DiscountRequest(BaseModel):
    """Discount (or clear) a single result."""
    discount: str = Field(..., description="Discount label or numeric code")
    reason: Optional[str] = Field(None, max_length=2000)

    @field_validator('discount')
    @classmethod
    def validate_discount(cls, v: str) -> str:
        """Accept known labels and numeric codes only."""
        if v in DISCOUNT_CODES or v.isdigit():
            return v
        raise ValueError(f"Unknown discount '{v}'")


class BulkDiscountRequest(DiscountRequest):
    """Apply one discount to several results."""
    test_ids: List[int] = Field(..., min_length=1)

    @model_validator(mode='after')
    def reason_required(self):
        """Every discount except Clear Discount needs a reason."""
        if self.discount not in (CLEAR_DISCOUNT, '0') and not (self.reason and self.reason.strip()):
            raise ValueError('Please enter a discount reason')
        return self


class CopyDiscountsRequest(BaseModel):
    """Copy discounts from earlier records onto today's failures."""
    discount_ids: List[int] = Field(..., min_length=1)
    run_date: date
    browser: Optional[str] = None
    force: bool = False


class SelectedTestSchema(BaseModel):
    """A failed test picked for rerun."""
    project: str
    env: str
    build_no: int
    type: str = 'ui'
    browser: Optional[str] = None
    test_name: str


class RerunRequest(BaseModel):
    """Rerun a batch of failed tests from one build."""
    tests: List[SelectedTestSchema] = Field(..., min_length=1)
    verify_page: bool = False


class RunJobRequest(BaseModel):
    """Start an ad hoc project run."""
    project: str
    branch: str
    env: str
    jira_id: Optional[str] = None
    browser: Optional[str] = None
    tests: Optional[str] = None
    verify_page: bool = False


class MaintenanceRequest(BaseModel):
    """Start the IVR maintenance job."""
    env: str
    verify_page: bool = False


class OpenJobRequest(BaseModel):
    """Open a Jenkins page in the verification window."""
    url: str
    fallback_url: Optional[str] = None

    @field_validator('url', 'fallback_url')
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate URL format."""
        if v is not None and not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v
