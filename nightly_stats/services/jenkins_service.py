"""
Jenkins Service - REST client and request builders for the QA Jenkins server.

Provides:
- JenkinsClient: authenticated calls (trigger, status, build info, artifacts)
- Request builders for reruns, ad hoc runs and maintenance jobs
- Screenshot lookup, Jira id lookup and nightly rerun discovery
"""
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Any
from urllib.parse import quote

import requests
from requests.auth import HTTPBasicAuth

from nightly_stats.constants import (
    NO_FILTER, JIRA_PARAMETER_MARKER, NIGHTLY_JOB, NIGHTLY_STATS_JOB,
    MAINTENANCE_JOB, MAINTENANCE_VIEW
)
from nightly_stats.models.jenkins_models import JobTriggerRequest, JobStatusSnapshot, Artifact
from nightly_stats.services.errors import JenkinsConnectionError, JenkinsAuthenticationError


logger = logging.getLogger(__name__)

V2_TEST_SEPARATOR = '%2C'
LEGACY_TEST_SEPARATOR = '%20%2Ftest%3A'


class JenkinsClient:
    """
    Handles Jenkins REST API interactions.

    Use as context manager for proper resource cleanup:
        with JenkinsClient(url, user, token) as client:
            client.get_job_status("my-job")
    """

    def __init__(
        self,
        url: str,
        user: str,
        api_token: str,
        verify_ssl: bool = True,
        timeout: float = 10.0,
        trigger_timeout: float = 5.0
    ):
        """
        Initialize Jenkins client.

        Args:
            url: Jenkins server URL
            user: Operator login name (Basic auth user)
            api_token: Jenkins API token
            verify_ssl: Verify TLS certificates
            timeout: Timeout for read requests, in seconds
            trigger_timeout: Timeout for build trigger requests, in seconds
        """
        self.url = url.rstrip('/')
        self.user = user
        self.timeout = timeout
        self.trigger_timeout = trigger_timeout
        self.session = requests.Session()
        self.session.auth = HTTPBasicAuth(user, api_token)
        self.session.verify = verify_ssl

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - clean up session."""
        self.close()
        return False

    def close(self):
        """Close the requests session to free resources."""
        if hasattr(self, 'session') and self.session:
            self.session.close()

    def job_url(self, job_name: str, build: Optional[Any] = None) -> str:
        """Browser URL for a job (or one of its builds)."""
        if build is None:
            return f"{self.url}/job/{job_name}/"
        return f"{self.url}/job/{job_name}/{build}/"

    def _absolute(self, path_or_url: str) -> str:
        if path_or_url.startswith(('http://', 'https://')):
            return path_or_url
        return f"{self.url}/{path_or_url.lstrip('/')}"

    def _send(self, method: str, url: str, timeout: float, **kwargs) -> requests.Response:
        """
        Send a request, translating transport and auth failures.

        Raises:
            JenkinsConnectionError: On timeout or connection failure
            JenkinsAuthenticationError: On 401/403
        """
        try:
            response = self.session.request(method, url, timeout=timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise JenkinsConnectionError(
                "Request timeout - Jenkins server may be slow or unreachable"
            ) from e
        except requests.exceptions.RequestException as e:
            raise JenkinsConnectionError(
                f"Cannot reach Jenkins at {self.url}. Check network connectivity and VPN connection."
            ) from e

        if response.status_code in (401, 403):
            raise JenkinsAuthenticationError(
                f"Authentication failed for Jenkins user '{self.user}'. "
                "Check JENKINS_API_TOKEN and that you have build permission on the job."
            )
        return response

    def get_json(self, path_or_url: str) -> Dict:
        """
        GET an /api/json resource.

        Raises:
            JenkinsConnectionError / JenkinsAuthenticationError
            requests.HTTPError: On other non-2xx statuses
        """
        url = self._absolute(path_or_url)
        logger.debug(f"GET {url}")
        response = self._send('GET', url, self.timeout)
        response.raise_for_status()
        return response.json()

    def post_build(self, request: JobTriggerRequest, build_token: str) -> int:
        """
        POST a buildWithParameters request.

        Returns:
            HTTP status code (201 means the build was queued)
        """
        url = f"{self.url}{request.path(build_token)}"
        logger.info(f"Triggering Jenkins job {request.job_name}")
        response = self._send(
            'POST', url, self.trigger_timeout,
            json={}, headers={'Content-Type': 'application/json'}
        )
        logger.debug(f"Trigger for {request.job_name} returned {response.status_code}")
        return response.status_code

    def post(self, path: str) -> int:
        """POST to an arbitrary job endpoint (e.g. /job/x/build?token=...)."""
        response = self._send(
            'POST', self._absolute(path), self.timeout,
            json={}, headers={'Content-Type': 'application/json'}
        )
        return response.status_code

    def get_job_status(self, job_name: str) -> JobStatusSnapshot:
        """Fetch the job status descriptor."""
        data = self.get_json(f"/job/{job_name}/api/json")
        return JobStatusSnapshot(job_name=job_name, color=data.get('color'))

    def get_build_info(self, job_name: str, build: Any) -> Dict:
        """Fetch a build descriptor (actions, artifacts, timestamp, ...)."""
        return self.get_json(f"/job/{job_name}/{build}/api/json")

    def get_artifacts(self, job_name: str, build: Any) -> List[Artifact]:
        """List a build's artifacts."""
        return normalize_artifacts(self.get_build_info(job_name, build).get('artifacts'))

    def get_jira_id_from_job(self, job_name: str, build: Any) -> str:
        """
        Look up the JiraID build parameter of a previous build.

        Returns:
            The parameter value, or '' when missing or on any error
        """
        try:
            return extract_jira_id(self.get_build_info(job_name, build))
        except (JenkinsConnectionError, JenkinsAuthenticationError, requests.RequestException, ValueError) as e:
            logger.warning(f"Could not get Jira ID for {job_name} #{build}: {e}")
            return ''

    def get_screenshot_url(self, test_name: str, job_name: str, build: Any) -> Optional[str]:
        """
        Find the failure screenshot artifact for a test.

        Returns:
            Artifact download URL, or None when no screenshot matches
        """
        artifacts = self.get_artifacts(job_name, build)
        if not artifacts:
            logger.warning(f"No artifacts found for {job_name} #{build}")
            return None

        artifact = find_screenshot_artifact(test_name, artifacts)
        if artifact is None:
            png_files = [a.file_name for a in artifacts if a.file_name.lower().endswith('.png')][:10]
            logger.warning(f"Screenshot not found for test: {test_name}. Available PNG artifacts: {png_files}")
            return None

        url = f"{self.url}/job/{job_name}/{build}/artifact/{artifact.relative_path}"
        logger.info(f"Found screenshot: {url}")
        return url

    def get_nightly_reruns(self, run_date: date) -> Dict[str, Any]:
        """
        Find failed or aborted child builds of the last Nightly run.

        Args:
            run_date: Date the nightly is expected to have run for

        Returns:
            {'failed_jobs': [{'job_name', 'failed_builds': [urls]}]} or
            {'error': message} when the last Nightly build is stale
        """
        data = self.get_json(f"/job/{NIGHTLY_JOB}/lastBuild/api/json")

        build_time = datetime.fromtimestamp((data.get('timestamp') or 0) / 1000)
        expected = datetime.combine(run_date - timedelta(days=1), datetime.min.time())
        if build_time < expected:
            return {'error': 'Nightly was not successful, nothing to rerun'}

        failed_jobs = []
        for sub_build in data.get('subBuilds') or []:
            job_name = sub_build.get('jobName', '')
            if 'Maintenance' in job_name:
                continue

            job_data = self.get_json(f"{self._absolute(sub_build.get('url', '')).rstrip('/')}/api/json")
            children = (job_data.get('build') or {}).get('subBuilds') or []
            failed = [
                child.get('url') for child in children
                if child.get('result') and any(
                    marker in child['result'].lower() for marker in ('failure', 'aborted')
                )
            ]
            if failed:
                failed_jobs.append({'job_name': job_name, 'failed_builds': failed})

        return {'failed_jobs': failed_jobs}


# ============================================================================
# Response normalization
# ============================================================================

def normalize_artifacts(raw: Any) -> List[Artifact]:
    """
    Normalize an 'artifacts' field into a list of Artifact.

    Jenkins proxies have been seen returning a single object instead of a
    list; None/missing means no artifacts.
    """
    if not raw:
        return []
    if isinstance(raw, dict):
        raw = [raw]

    artifacts = []
    for item in raw:
        if not isinstance(item, dict) or not item.get('fileName'):
            continue
        artifacts.append(Artifact(
            file_name=item['fileName'],
            relative_path=item.get('relativePath') or item['fileName']
        ))
    return artifacts


def find_screenshot_artifact(test_name: str, artifacts: Sequence[Artifact]) -> Optional[Artifact]:
    """
    Pick the failure screenshot for test_name.

    Tries '{test}_Failure.png' first, then the known variants (lower-case
    suffix, upper-case extension, dots replaced by underscores). Matching
    is a case-insensitive substring match on the file name.
    """
    underscored = test_name.replace('.', '_')
    patterns = [
        f"{test_name}_Failure.png",
        f"{test_name}_failure.png",
        f"{test_name}_Failure.PNG",
        f"{underscored}_Failure.png",
        f"{underscored}_failure.png",
    ]
    for pattern in patterns:
        lowered = pattern.lower()
        for artifact in artifacts:
            if pattern in artifact.file_name or lowered in artifact.file_name.lower():
                return artifact
    return None


def extract_jira_id(build_info: Dict) -> str:
    """Return the first build parameter whose name contains 'JiraID'."""
    for action in build_info.get('actions') or []:
        if not isinstance(action, dict):
            continue
        for param in action.get('parameters') or []:
            if param.get('name') and JIRA_PARAMETER_MARKER in param['name']:
                return param.get('value') or ''
    return ''


# ============================================================================
# Request builders
# ============================================================================

def build_test_query(project: str, test_names: Sequence[str]) -> str:
    """
    Encode the test list for a rerun.

    v2 projects take a comma-joined 'Tests' parameter; legacy projects take
    a single 'Test' parameter chained with ' /test:' separators.
    """
    if 'v2' in project:
        return f"&Tests={V2_TEST_SEPARATOR.join(test_names)}"
    return f"&Test={LEGACY_TEST_SEPARATOR.join(test_names)}"


def build_rerun_request(selected: Sequence[Any], jira_id: str = '') -> JobTriggerRequest:
    """
    Build the retry trigger for a batch of failed tests.

    Args:
        selected: Failed test records (project, env, build_no, type,
                  browser, test_name); all must share project, env and build
        jira_id: Jira ticket of the original build, if known

    Raises:
        ValueError: If nothing is selected or the records disagree
    """
    if not selected:
        raise ValueError('No tests selected')

    first = selected[0]
    if not all(
        t.project == first.project and t.env == first.env and t.build_no == first.build_no
        for t in selected
    ):
        raise ValueError('All selected tests must be from the same project, environment, and build')

    parameters = [
        ('crmUser', ''),
        ('JobType', 'Nightly'),
        ('Retry', 'true'),
        ('ENV', first.env),
        ('PreviousBuildNo', str(first.build_no)),
    ]
    if first.type == 'ui' and first.browser:
        parameters.append(('Browser', first.browser))

    raw_query = build_test_query(first.project, [t.test_name for t in selected])
    if jira_id:
        raw_query += f"&JiraID={quote(jira_id, safe='')}"

    return JobTriggerRequest(
        job_name=first.project,
        parameters=tuple(parameters),
        previous_build=int(first.build_no),
        raw_query=raw_query
    )


def build_run_request(
    project: str,
    branch: str,
    env: str,
    jira_id: Optional[str] = None,
    browser: Optional[str] = None,
    tests: Optional[str] = None
) -> JobTriggerRequest:
    """
    Build an ad hoc job trigger.

    Args:
        tests: Space-separated test names; spaces become encoded commas
    """
    if not project or project == NO_FILTER:
        raise ValueError('Select a project to run')
    if not branch:
        raise ValueError('Select a branch to run')
    if not env:
        raise ValueError('Select an environment to run')

    parameters = [('Branch', branch), ('ENV', env), ('JiraID', jira_id or '')]
    if browser and browser != NO_FILTER:
        parameters.append(('Browser', browser))

    raw_query = ''
    if tests and tests.strip():
        raw_query = f"&Tests={tests.strip().replace(' ', V2_TEST_SEPARATOR)}"

    return JobTriggerRequest(job_name=project, parameters=tuple(parameters), raw_query=raw_query)


def build_maintenance_request(env: str) -> JobTriggerRequest:
    """Build the IVR maintenance job trigger for an environment."""
    if not env:
        raise ValueError('Select an environment to run')
    return JobTriggerRequest(job_name=MAINTENANCE_JOB, parameters=(('crmUser', ''), ('ENV', env)))


def maintenance_landing_url(jenkins_url: str) -> str:
    """The maintenance job lives under its own Jenkins view."""
    return f"{jenkins_url.rstrip('/')}/view/{MAINTENANCE_VIEW}/job/{MAINTENANCE_JOB}/"


def nightly_stats_path(build_token: str) -> str:
    """Path that kicks off the Nightly-SDET-Stats post job."""
    return f"/job/{NIGHTLY_STATS_JOB}/build?token={quote(build_token, safe='')}"
