"""
Job trigger workflow.

Starts a parameterized Jenkins build and confirms it took. Jenkins under
load sometimes queues a build without answering 201, so a non-201 answer
is followed by a bounded loop that first checks whether the job is
already running and only then re-sends the request.

Blocking HTTP calls run in worker threads and every delay is awaited,
so the event loop is never blocked.
"""
import asyncio
import logging
import webbrowser
from typing import Any, Awaitable, Callable, Optional, Sequence

import requests

from nightly_stats.config import Settings, get_settings
from nightly_stats.models.jenkins_models import JobTriggerRequest, TriggerOutcome
from nightly_stats.services.errors import JenkinsConnectionError, JenkinsAuthenticationError
from nightly_stats.services.jenkins_service import (
    JenkinsClient,
    build_rerun_request,
    build_run_request,
    build_maintenance_request,
    maintenance_landing_url,
    nightly_stats_path,
)
from nightly_stats.constants import NIGHTLY_STATS_JOB

logger = logging.getLogger(__name__)

HTTP_CREATED = 201

Sleep = Callable[[float], Awaitable[None]]
Opener = Callable[[str], Any]


class JobTriggerService:
    """Triggers Jenkins builds and confirms they started."""

    def __init__(
        self,
        client: JenkinsClient,
        build_token: str,
        opener: Optional[Opener] = None,
        sleep: Sleep = asyncio.sleep,
        max_retries: int = 5,
        retry_delay: float = 10.0,
        settle_delay: float = 10.0,
        poll_interval: float = 1.5,
        extra_poll_attempts: int = 3
    ):
        """
        Initialize the trigger service.

        Args:
            client: JenkinsClient used for all HTTP calls
            build_token: Remote trigger token (?token=)
            opener: Callable that opens a URL for the operator
                    (defaults to webbrowser.open)
            sleep: Awaitable sleep, injectable for tests
            max_retries: Retry iterations after a non-201 answer
            retry_delay: Seconds to wait before each retry iteration
            settle_delay: Seconds to wait before the first status poll
            poll_interval: Seconds between status polls
            extra_poll_attempts: Status polls after the first one
        """
        self.client = client
        self.build_token = build_token
        self.opener = opener or webbrowser.open
        self._sleep = sleep
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.settle_delay = settle_delay
        self.poll_interval = poll_interval
        self.extra_poll_attempts = extra_poll_attempts

    @classmethod
    def from_settings(
        cls,
        client: JenkinsClient,
        opener: Optional[Opener] = None,
        settings: Optional[Settings] = None
    ) -> "JobTriggerService":
        """Build a service with timing taken from Settings."""
        settings = settings or get_settings()
        return cls(
            client,
            settings.JENKINS_BUILD_TOKEN,
            opener=opener,
            max_retries=settings.TRIGGER_MAX_RETRIES,
            retry_delay=settings.TRIGGER_RETRY_DELAY,
            settle_delay=settings.RUNNING_POLL_SETTLE_DELAY,
            poll_interval=settings.RUNNING_POLL_INTERVAL,
            extra_poll_attempts=settings.RUNNING_POLL_EXTRA_ATTEMPTS,
        )

    async def is_job_running(self, job_name: str) -> bool:
        """
        Sample the job status a bounded number of times.

        Waits settle_delay, then polls up to 1 + extra_poll_attempts times,
        poll_interval apart. Request errors count as 'not running'; the
        poll is advisory and never raises.

        Returns:
            True as soon as one poll sees a running build
        """
        await self._sleep(self.settle_delay)

        for attempt in range(1 + self.extra_poll_attempts):
            if attempt > 0:
                await self._sleep(self.poll_interval)
            try:
                snapshot = await asyncio.to_thread(self.client.get_job_status, job_name)
            except (JenkinsConnectionError, JenkinsAuthenticationError,
                    requests.RequestException, ValueError) as e:
                logger.warning(f"Error checking running job {job_name} (attempt {attempt + 1}): {e}")
                continue

            if snapshot.is_running:
                logger.info(f"Job {job_name} is running (color={snapshot.color})")
                return True

        return False

    async def _send(self, request: JobTriggerRequest) -> int:
        return await asyncio.to_thread(self.client.post_build, request, self.build_token)

    async def trigger(self, request: JobTriggerRequest, landing_url: Optional[str] = None) -> TriggerOutcome:
        """
        Start a build and confirm it, then open the job's landing page.

        Network and authentication failures propagate without retry. When
        retries run out unconfirmed the landing page is still opened and
        the outcome reports confirmed=False.

        Args:
            request: Build to start
            landing_url: Page to open afterwards (defaults to the job page)
        """
        landing_url = landing_url or self.client.job_url(request.job_name)

        status = await self._send(request)
        attempts = 1
        confirmed = status == HTTP_CREATED

        if not confirmed:
            logger.warning(
                f"Trigger for {request.job_name} returned {status}, checking whether the build started"
            )
            for _ in range(self.max_retries):
                await self._sleep(self.retry_delay)

                if await self.is_job_running(request.job_name):
                    confirmed = True
                    break

                status = await self._send(request)
                attempts += 1
                if status == HTTP_CREATED:
                    confirmed = True
                    break

        if not confirmed:
            # Jenkins likely started the job anyway; the page is opened regardless.
            logger.warning(
                f"Could not confirm {request.job_name} started after {attempts} requests "
                f"(last status {status})"
            )

        self.opener(landing_url)
        return TriggerOutcome(
            job_name=request.job_name,
            url=landing_url,
            confirmed=confirmed,
            attempts=attempts,
            status_code=status
        )

    async def rerun_tests(self, selected: Sequence[Any]) -> TriggerOutcome:
        """
        Re-run a batch of failed tests against their original build.

        The Jira ticket of the original build is carried over when it can
        be found.

        Raises:
            ValueError: If the selection is empty or mixes builds
        """
        # Validate before touching Jenkins
        build_rerun_request(selected)

        first = selected[0]
        jira_id = await asyncio.to_thread(self.client.get_jira_id_from_job, first.project, first.build_no)
        return await self.trigger(build_rerun_request(selected, jira_id))

    async def run_job(
        self,
        project: str,
        branch: str,
        env: str,
        jira_id: Optional[str] = None,
        browser: Optional[str] = None,
        tests: Optional[str] = None
    ) -> TriggerOutcome:
        """Start an ad hoc run of a project."""
        return await self.trigger(build_run_request(project, branch, env, jira_id, browser, tests))

    async def run_maintenance_job(self, env: str) -> TriggerOutcome:
        """Start the IVR maintenance job for an environment."""
        return await self.trigger(
            build_maintenance_request(env),
            landing_url=maintenance_landing_url(self.client.url)
        )

    async def post_nightly_stats(self) -> dict:
        """Kick off the stats post job and open its page."""
        status = await asyncio.to_thread(self.client.post, nightly_stats_path(self.build_token))
        page_url = self.client.job_url(NIGHTLY_STATS_JOB)
        self.opener(page_url)
        return {'success': True, 'url': page_url, 'status': status}
