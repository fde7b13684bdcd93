"""
Data models for the Jenkins trigger and page verification workflows.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple
from urllib.parse import quote

from nightly_stats.constants import RUNNING_COLOR_MARKER


@dataclass(frozen=True)
class JobTriggerRequest:
    """
    A parameterized build request for exactly one Jenkins job.

    parameters are rendered in order as name=value pairs (values URL-encoded).
    raw_query is appended verbatim; it carries the test list, whose
    separators are already encoded and must not be encoded twice.
    """
    job_name: str
    parameters: Tuple[Tuple[str, str], ...] = ()
    previous_build: Optional[int] = None
    raw_query: str = ""

    @property
    def is_retry(self) -> bool:
        return self.previous_build is not None

    def query_string(self, token: str) -> str:
        """Render '?token=...&Name=value...' for buildWithParameters."""
        query = f"token={quote(token, safe='')}"
        for name, value in self.parameters:
            query += f"&{name}={quote(str(value), safe='')}"
        return query + self.raw_query

    def path(self, token: str) -> str:
        """Path (with query) relative to the Jenkins base URL."""
        return f"/job/{self.job_name}/buildWithParameters?{self.query_string(token)}"


@dataclass
class JobStatusSnapshot:
    """A single read of a job's status descriptor; never cached."""
    job_name: str
    color: Optional[str] = None

    @property
    def is_running(self) -> bool:
        """Jenkins animates the status ball ('blue_anime') while building."""
        return bool(self.color) and RUNNING_COLOR_MARKER in self.color


@dataclass
class Artifact:
    """A build artifact as listed by /api/json."""
    file_name: str
    relative_path: str


@dataclass
class TriggerOutcome:
    """
    Result of a trigger workflow.

    confirmed is False when retries ran out without a 201 or a running
    build; the landing page has still been opened in that case.
    """
    job_name: str
    url: str
    confirmed: bool
    attempts: int = 1
    status_code: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'success': True,
            'job_name': self.job_name,
            'url': self.url,
            'confirmed': self.confirmed,
            'attempts': self.attempts,
            'status_code': self.status_code,
        }


@dataclass
class PageSnapshot:
    """Rendered text captured from a display surface."""
    body_text: str = ""
    candidate_texts: List[str] = field(default_factory=list)


@dataclass
class PageProbeResult:
    """Outcome of inspecting one loaded page."""
    has_text: bool
    error_text: Optional[str] = None


class VerificationState(str, Enum):
    """Terminal states of a page verification."""
    ANNOTATED = "annotated"                      # Page has content; surface kept open
    BLANK_FALLBACK = "blank_fallback"            # Blank page; surface closed, fallback opened
    LOAD_FAILED_FALLBACK = "load_failed_fallback"
    PROBE_FAILED_FALLBACK = "probe_failed_fallback"
    CLOSED = "closed"                            # Operator closed the surface first


@dataclass
class VerificationOutcome:
    """Result of a page verification."""
    state: VerificationState
    label: Optional[str] = None
    error: Optional[str] = None
    fallback: Optional[str] = None  # 'alternate' or 'default' when a fallback ran

    def to_dict(self) -> dict:
        return {
            'state': self.state.value,
            'label': self.label,
            'error': self.error,
            'fallback': self.fallback,
        }
