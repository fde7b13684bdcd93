"""
Application-wide constants.

Defines shared constants used across the application to avoid magic strings
and ensure consistency.
"""

NO_FILTER = "--"
"""Sentinel used by dashboard dropdowns for 'no filter selected'."""

CLEAR_DISCOUNT = "Clear Discount"

DISCOUNT_NAMES = {
    0: '',
    1: 'External Team',
    2: 'CRM DevOps',
    3: 'Bug Found By Automation',
    4: 'Code Change',
    5: 'Automation Testing',
    6: 'Accident',
    7: 'Jenkins',
    8: 'Holiday',
    9: 'Deploy',
}
"""Discount code -> human-readable discount label."""

DISCOUNT_CODES = {name: code for code, name in DISCOUNT_NAMES.items() if name}
DISCOUNT_CODES[CLEAR_DISCOUNT] = 0
"""Discount label -> discount code ('Clear Discount' maps to 0)."""

# Result store vocabulary
LOG_TYPE_NIGHTLY = "Nightly"
LOG_TYPE_COUNT = "Count"

FAILED_RESULTS = ("Failed", "Skipped", "NotExecuted", "Timeout")
"""TestResult values shown in the failed-tests table."""

STATS_RESULTS = ("Failed", "Skipped")
"""TestResult values counted in nightly stats."""

TEST_ENVS = ("TEST", "BETA")
PROD_ENVS = ("PROD", "LIVE")

# Jenkins
RUNNING_COLOR_MARKER = "anime"
"""Jenkins 'color' values ending in _anime indicate a build in progress."""

JIRA_PARAMETER_MARKER = "JiraID"

NIGHTLY_JOB = "Nightly"
NIGHTLY_STATS_JOB = "Nightly-SDET-Stats"
MAINTENANCE_JOB = "qe-crm-api-ivr-dotnet-v2-Maintenance"
MAINTENANCE_VIEW = "Maintenance"

COPY_DISCOUNT_ERROR_PREFIX = 185
"""Leading characters of ErrorMsg that must match when copying a discount."""
