"""
SQLAlchemy database models for Nightly Stats.

The result store is an existing table populated by the automation
frameworks; this module maps it rather than owning its schema.
"""
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from sqlalchemy.orm import declarative_base

from nightly_stats.constants import DISCOUNT_NAMES

Base = declarative_base()


def utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class AutomationResult(Base):
    """One test execution (or, with LogType='Count', an expected-count baseline)."""
    __tablename__ = "AutomationResults"

    id = Column(Integer, primary_key=True, autoincrement=True)
    build_number = Column("BuildNumber", Integer)
    automation_type = Column("AutomationType", String(20))  # "ui" or "api"
    env = Column("Env", String(20))  # TEST, BETA, PROD, LIVE
    project_name = Column("ProjectName", String(200), nullable=False)
    test_name = Column("TestName", String(500))
    test_result = Column("TestResult", String(50))  # Passed, Failed, Skipped, ...
    log_type = Column("LogType", String(50))  # Nightly, Weekly, Count
    rerun = Column("Rerun", Integer, default=0)

    # Failure details
    error_msg = Column("ErrorMsg", Text)
    stack_trace = Column("StackTrace", Text)

    # Discount annotation
    discount = Column("Discount", Integer, default=0)
    discount_reason = Column("DiscountReason", Text)

    browser = Column("Browser", String(50))
    project_owner = Column("ProjectOwner", String(100))
    machine_name = Column("MachineName", String(100))
    app_version = Column("AppVersion", String(100))
    test_run_time = Column("TestRunTime", Integer)  # Expected test count for Count records

    create_date_utc = Column("CreateDateUtc", DateTime, default=utcnow)
    modify_date_utc = Column("ModifyDateUtc", DateTime)
    modify_by = Column("ModifyBy", String(100))

    __table_args__ = (
        Index('idx_results_logtype_created', 'LogType', 'CreateDateUtc'),
    )

    @property
    def discount_name(self) -> str:
        """Human-readable discount label for the stored code."""
        return DISCOUNT_NAMES.get(self.discount or 0, '')

    def __repr__(self):
        return (
            f"<AutomationResult(id={self.id}, project='{self.project_name}', "
            f"test='{self.test_name}', result='{self.test_result}')>"
        )
