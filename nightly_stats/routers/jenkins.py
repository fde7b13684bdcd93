"""
Jenkins API router.

Starts reruns, ad hoc runs and maintenance jobs as background workflows,
opens job pages in the verification window, and exposes the read-only
Jenkins lookups (job URL, screenshot, nightly reruns).
"""
import asyncio
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from nightly_stats.config import get_settings
from nightly_stats.models.jenkins_models import JobTriggerRequest, TriggerOutcome
from nightly_stats.models.schemas import (
    RerunRequest, RunJobRequest, MaintenanceRequest, OpenJobRequest, WorkflowStartedResponse
)
from nightly_stats.services.errors import JenkinsConnectionError, JenkinsAuthenticationError
from nightly_stats.services.jenkins_service import (
    JenkinsClient, build_rerun_request, build_run_request, build_maintenance_request,
    maintenance_landing_url
)
from nightly_stats.services.job_trigger_service import JobTriggerService
from nightly_stats.services.page_verifier import PageVerifier, PlaywrightSurface
from nightly_stats.services.report_service import get_utc_date_for_selected_date
from nightly_stats.utils.auth import verify_api_key
from nightly_stats.utils.browser import BrowserLauncher
from nightly_stats.utils.workflow_tracker import get_workflow_tracker

from playwright.async_api import Error as PlaywrightError

logger = logging.getLogger(__name__)
router = APIRouter()

TriggerAction = Callable[[JobTriggerService], Awaitable[TriggerOutcome]]


def create_jenkins_client() -> JenkinsClient:
    """Build a JenkinsClient for the current operator from settings."""
    settings = get_settings()
    return JenkinsClient(
        settings.JENKINS_URL,
        settings.operator_name,
        settings.JENKINS_API_TOKEN,
        verify_ssl=settings.JENKINS_VERIFY_SSL,
        timeout=settings.JENKINS_REQUEST_TIMEOUT,
        trigger_timeout=settings.JENKINS_TRIGGER_TIMEOUT
    )


def get_jenkins_client():
    """FastAPI dependency yielding a JenkinsClient closed after the request."""
    with create_jenkins_client() as client:
        yield client


def create_page_verifier() -> PageVerifier:
    settings = get_settings()
    return PageVerifier(
        BrowserLauncher(settings.alternate_browser_paths or None),
        error_display_seconds=settings.PAGE_ERROR_DISPLAY_SECONDS,
        settle_initial_interval=settings.PAGE_SETTLE_INITIAL_INTERVAL,
        settle_max_wait=settings.PAGE_SETTLE_MAX_WAIT
    )


def _start_workflow(kind: str, description: str) -> str:
    """Register a new workflow in the tracker and return its id."""
    tracker = get_workflow_tracker()
    tracker.prune_finished(timedelta(minutes=get_settings().WORKFLOW_RETENTION_MINUTES))

    workflow_id = str(uuid.uuid4())
    tracker.set_workflow(workflow_id, {
        'id': workflow_id,
        'kind': kind,
        'description': description,
        'status': 'pending',
        'started_at': datetime.now(timezone.utc).isoformat(),
        'completed_at': None,
        'result': None,
        'error': None
    })
    return workflow_id


def _started_response(workflow_id: str, message: str) -> dict:
    return {
        'workflow_id': workflow_id,
        'message': message,
        'status_url': f'/api/v1/jenkins/workflows/{workflow_id}'
    }


def _finish_workflow(workflow_id: str, status: str, result: Optional[dict] = None, error: Optional[str] = None):
    get_workflow_tracker().update_workflow_fields(workflow_id, {
        'status': status,
        'completed_at': datetime.now(timezone.utc).isoformat(),
        'result': result,
        'error': error
    })


async def run_trigger_workflow(workflow_id: str, action: TriggerAction):
    """
    Run a trigger workflow in the background.

    Args:
        workflow_id: Tracker id of the workflow
        action: Coroutine function that starts the build with the given service
    """
    tracker = get_workflow_tracker()
    tracker.update_workflow_fields(workflow_id, {'status': 'running'})

    try:
        with create_jenkins_client() as client:
            outcome = await action(JobTriggerService.from_settings(client))
    except (JenkinsConnectionError, JenkinsAuthenticationError, ValueError) as e:
        logger.error(f"[{workflow_id}] Trigger failed: {e}")
        _finish_workflow(workflow_id, 'failed', error=str(e))
        return

    status = 'completed' if outcome.confirmed else 'unconfirmed'
    logger.info(f"[{workflow_id}] Trigger for {outcome.job_name} {status} after {outcome.attempts} request(s)")
    _finish_workflow(workflow_id, status, result=outcome.to_dict())


async def run_verification_workflow(workflow_id: str, target_url: str, fallback_url: str):
    """
    Show target_url in a verification window in the background.

    The window stays open (and the browser alive) until the operator
    closes it when the page rendered content. The fallback browser is
    opened here only when the window could not be used at all; once
    verify() has reached a terminal state, later browser errors are logged
    and leave the recorded outcome alone.
    """
    settings = get_settings()
    verifier = create_page_verifier()
    get_workflow_tracker().update_workflow_fields(workflow_id, {'status': 'running'})

    outcome = None
    try:
        async with PlaywrightSurface.launch(
            headless=settings.HEADLESS_VERIFICATION,
            load_timeout=settings.PAGE_LOAD_TIMEOUT_SECONDS
        ) as surface:
            outcome = await verifier.verify(target_url, fallback_url, surface)
            _finish_workflow(workflow_id, 'completed', result=outcome.to_dict())
            if surface.is_open():
                await surface.wait_closed()
    except PlaywrightError as e:
        if outcome is not None:
            logger.warning(f"[{workflow_id}] Verification window closed abnormally: {e}")
            return
        logger.error(f"[{workflow_id}] Verification window failed: {e}")
        fallback = verifier.launcher.open_default(fallback_url)
        _finish_workflow(workflow_id, 'failed', result={'fallback': fallback}, error=str(e))


def _queue_verification(
    background_tasks: BackgroundTasks,
    request: JobTriggerRequest,
    client: JenkinsClient,
    description: str,
    fallback_url: Optional[str] = None
) -> dict:
    target_url = f"{client.url}{request.path(get_settings().JENKINS_BUILD_TOKEN)}"
    fallback_url = fallback_url or client.job_url(request.job_name)
    workflow_id = _start_workflow('verify', description)
    background_tasks.add_task(run_verification_workflow, workflow_id, target_url, fallback_url)
    return _started_response(workflow_id, 'Verification window opening')


@router.post("/rerun", response_model=WorkflowStartedResponse, dependencies=[Depends(verify_api_key)])
async def rerun_tests(
    request: RerunRequest,
    background_tasks: BackgroundTasks,
    client: JenkinsClient = Depends(get_jenkins_client)
):
    """
    Rerun the selected failed tests against their original build.

    All selected tests must come from the same project, env and build.
    With verify_page the trigger URL is opened in the verification window
    instead of being posted.
    """
    trigger_request = build_rerun_request(request.tests)
    description = f"Rerun {len(request.tests)} test(s) of {trigger_request.job_name} #{trigger_request.previous_build}"

    if request.verify_page:
        first = request.tests[0]
        jira_id = await asyncio.to_thread(client.get_jira_id_from_job, first.project, first.build_no)
        return _queue_verification(
            background_tasks, build_rerun_request(request.tests, jira_id), client, description
        )

    tests = list(request.tests)
    workflow_id = _start_workflow('rerun', description)
    background_tasks.add_task(run_trigger_workflow, workflow_id, lambda service: service.rerun_tests(tests))
    return _started_response(workflow_id, 'Rerun started')


@router.post("/run", response_model=WorkflowStartedResponse, dependencies=[Depends(verify_api_key)])
async def run_job(
    request: RunJobRequest,
    background_tasks: BackgroundTasks,
    client: JenkinsClient = Depends(get_jenkins_client)
):
    """Start an ad hoc run of a project on a branch and environment."""
    trigger_request = build_run_request(
        request.project, request.branch, request.env, request.jira_id, request.browser, request.tests
    )
    description = f"Run {request.project} ({request.branch}) on {request.env}"

    if request.verify_page:
        return _queue_verification(background_tasks, trigger_request, client, description)

    workflow_id = _start_workflow('run', description)
    background_tasks.add_task(
        run_trigger_workflow, workflow_id, lambda service: service.trigger(trigger_request)
    )
    return _started_response(workflow_id, 'Run started')


@router.post("/maintenance", response_model=WorkflowStartedResponse, dependencies=[Depends(verify_api_key)])
async def run_maintenance(
    request: MaintenanceRequest,
    background_tasks: BackgroundTasks,
    client: JenkinsClient = Depends(get_jenkins_client)
):
    """
    Start the IVR maintenance job for an environment.

    With verify_page the trigger URL is opened in the verification window,
    falling back to the job under the Maintenance view.
    """
    trigger_request = build_maintenance_request(request.env)

    if request.verify_page:
        return _queue_verification(
            background_tasks, trigger_request, client, f"Maintenance on {request.env}",
            fallback_url=maintenance_landing_url(client.url)
        )

    env = request.env
    workflow_id = _start_workflow('maintenance', f"Maintenance on {env}")
    background_tasks.add_task(
        run_trigger_workflow, workflow_id, lambda service: service.run_maintenance_job(env)
    )
    return _started_response(workflow_id, 'Maintenance job started')


@router.post("/open-job", response_model=WorkflowStartedResponse, dependencies=[Depends(verify_api_key)])
async def open_job(request: OpenJobRequest, background_tasks: BackgroundTasks):
    """Open a Jenkins page in the verification window."""
    workflow_id = _start_workflow('verify', f"Open {request.url}")
    background_tasks.add_task(
        run_verification_workflow, workflow_id, request.url, request.fallback_url or request.url
    )
    return _started_response(workflow_id, 'Verification window opening')


@router.get("/workflows/{workflow_id}")
async def get_workflow(workflow_id: str):
    """Get the state of a background workflow."""
    workflow = get_workflow_tracker().get_workflow(workflow_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail=f"Workflow '{workflow_id}' not found")
    return workflow


@router.post("/nightly-stats", dependencies=[Depends(verify_api_key)])
async def post_nightly_stats(client: JenkinsClient = Depends(get_jenkins_client)):
    """Kick off the job that posts the nightly stats and open its page."""
    return await JobTriggerService.from_settings(client).post_nightly_stats()


@router.get("/job-url")
async def get_job_url(
    project: str = Query(..., min_length=1),
    build: Optional[int] = Query(None, ge=1),
    client: JenkinsClient = Depends(get_jenkins_client)
):
    """Jenkins page of a project, or of one of its builds."""
    return {'url': client.job_url(project, build)}


@router.get("/screenshot")
async def get_screenshot(
    test_name: str = Query(..., min_length=1),
    project: str = Query(..., min_length=1),
    build: int = Query(..., ge=1),
    client: JenkinsClient = Depends(get_jenkins_client)
):
    """Find the failure screenshot of a test."""
    url = await asyncio.to_thread(client.get_screenshot_url, test_name, project, build)
    if url is None:
        raise HTTPException(status_code=404, detail=f"Screenshot not found for test '{test_name}'")
    return {'url': url}


@router.get("/nightly-reruns")
async def get_nightly_reruns(
    run_date: date = Query(..., description="Nightly run date as selected by the operator"),
    client: JenkinsClient = Depends(get_jenkins_client)
):
    """List the failed or aborted child builds of the last Nightly run."""
    return await asyncio.to_thread(client.get_nightly_reruns, get_utc_date_for_selected_date(run_date))
