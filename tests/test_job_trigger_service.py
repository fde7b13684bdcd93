"""
Tests for the job trigger workflow.

Covers:
- 201 on first send (no retries)
- Bounded retry loop with early stop on a running job or a 201 resend
- Running-job poll tolerating request errors
- Errors on send propagating
- Landing page always opened
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, AsyncMock

import pytest

from nightly_stats.models.jenkins_models import JobTriggerRequest, JobStatusSnapshot
from nightly_stats.services.errors import JenkinsConnectionError, JenkinsAuthenticationError
from nightly_stats.services.job_trigger_service import JobTriggerService

JOB = "qe-crm-ui-customer-search-v2"
LANDING = f"https://jenkins.example.com/job/{JOB}/"


def make_client(statuses=(201,), colors=("blue",)):
    """Mock JenkinsClient returning the given trigger statuses and job colors in order."""
    client = MagicMock()
    client.url = "https://jenkins.example.com"
    client.job_url.side_effect = lambda job, build=None: f"https://jenkins.example.com/job/{job}/"
    client.post_build.side_effect = list(statuses)
    client.get_job_status.side_effect = [JobStatusSnapshot(JOB, color) for color in colors]
    client.get_jira_id_from_job.return_value = "CRM-7"
    return client


def make_service(client):
    sleep = AsyncMock()
    opener = MagicMock()
    service = JobTriggerService(client, "tok", opener=opener, sleep=sleep)
    return service, sleep, opener


def request():
    return JobTriggerRequest(job_name=JOB, parameters=(("ENV", "TEST"),))


def sleep_durations(sleep):
    """Durations passed to the injected sleep, in order."""
    return [call.args[0] for call in sleep.await_args_list]


class TestTrigger:
    """Tests for JobTriggerService.trigger()."""

    @pytest.mark.asyncio
    async def test_created_needs_no_retry(self):
        client = make_client(statuses=[201])
        service, sleep, opener = make_service(client)

        outcome = await service.trigger(request())

        assert outcome.confirmed
        assert outcome.attempts == 1
        assert outcome.status_code == 201
        assert client.post_build.call_count == 1
        client.get_job_status.assert_not_called()
        sleep.assert_not_awaited()
        opener.assert_called_once_with(LANDING)

    @pytest.mark.asyncio
    async def test_stops_when_job_is_running(self):
        """A non-201 answer followed by a running job is a confirmed trigger."""
        client = make_client(statuses=[500], colors=["blue_anime"])
        service, sleep, opener = make_service(client)

        outcome = await service.trigger(request())

        assert outcome.confirmed
        assert outcome.attempts == 1
        assert client.post_build.call_count == 1
        # retry delay, then poll settle delay
        assert sleep_durations(sleep) == [10.0, 10.0]
        opener.assert_called_once_with(LANDING)

    @pytest.mark.asyncio
    async def test_stops_on_created_resend(self):
        client = make_client(statuses=[500, 201], colors=["blue"] * 4)
        service, sleep, opener = make_service(client)

        outcome = await service.trigger(request())

        assert outcome.confirmed
        assert outcome.attempts == 2
        assert client.post_build.call_count == 2
        assert client.get_job_status.call_count == 4
        opener.assert_called_once_with(LANDING)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        """Five iterations, each one wait, one poll and one resend."""
        client = make_client(statuses=[500] * 6, colors=["blue"] * 20)
        service, sleep, opener = make_service(client)

        outcome = await service.trigger(request())

        assert not outcome.confirmed
        assert outcome.attempts == 6
        assert outcome.status_code == 500
        assert client.post_build.call_count == 6
        # each poll makes four status reads
        assert client.get_job_status.call_count == 20
        # per iteration: retry delay, settle delay, three poll intervals
        assert sleep_durations(sleep) == [10.0, 10.0, 1.5, 1.5, 1.5] * 5
        opener.assert_called_once_with(LANDING)

    @pytest.mark.asyncio
    async def test_every_resend_is_identical(self):
        client = make_client(statuses=[500, 500, 201], colors=["blue"] * 8)
        service, _, _ = make_service(client)
        trigger_request = request()

        await service.trigger(trigger_request)

        sent = [call.args for call in client.post_build.call_args_list]
        assert sent == [(trigger_request, "tok")] * 3

    @pytest.mark.asyncio
    async def test_network_error_propagates(self):
        client = make_client()
        client.post_build.side_effect = JenkinsConnectionError("Request timeout")
        service, sleep, opener = make_service(client)

        with pytest.raises(JenkinsConnectionError):
            await service.trigger(request())

        sleep.assert_not_awaited()
        opener.assert_not_called()

    @pytest.mark.asyncio
    async def test_auth_error_propagates(self):
        client = make_client()
        client.post_build.side_effect = JenkinsAuthenticationError("bad token")
        service, _, opener = make_service(client)

        with pytest.raises(JenkinsAuthenticationError):
            await service.trigger(request())

        opener.assert_not_called()

    @pytest.mark.asyncio
    async def test_network_error_on_resend(self):
        client = make_client(colors=["blue"] * 4)
        client.post_build.side_effect = [500, JenkinsConnectionError("gone")]
        service, _, opener = make_service(client)

        with pytest.raises(JenkinsConnectionError):
            await service.trigger(request())

        opener.assert_not_called()

    @pytest.mark.asyncio
    async def test_custom_landing_url(self):
        client = make_client(statuses=[201])
        service, _, opener = make_service(client)

        outcome = await service.trigger(request(), landing_url="https://jenkins.example.com/view/X/job/Y/")

        assert outcome.url == "https://jenkins.example.com/view/X/job/Y/"
        opener.assert_called_once_with("https://jenkins.example.com/view/X/job/Y/")


class TestIsJobRunning:
    """Tests for JobTriggerService.is_job_running()."""

    @pytest.mark.asyncio
    async def test_running_on_first_poll(self):
        client = make_client(colors=["red_anime"])
        service, sleep, _ = make_service(client)

        assert await service.is_job_running(JOB) is True
        assert sleep_durations(sleep) == [10.0]

    @pytest.mark.asyncio
    async def test_running_on_last_poll(self):
        client = make_client(colors=["blue", "blue", "blue", "blue_anime"])
        service, _, _ = make_service(client)

        assert await service.is_job_running(JOB) is True
        assert client.get_job_status.call_count == 4

    @pytest.mark.asyncio
    async def test_not_running(self):
        client = make_client(colors=["blue"] * 4)
        service, _, _ = make_service(client)

        assert await service.is_job_running(JOB) is False
        assert client.get_job_status.call_count == 4

    @pytest.mark.asyncio
    async def test_errors_count_as_not_running(self):
        """Four failing status reads end in False without raising."""
        client = make_client()
        client.get_job_status.side_effect = JenkinsConnectionError("unreachable")
        service, sleep, _ = make_service(client)

        assert await service.is_job_running(JOB) is False
        assert client.get_job_status.call_count == 4
        assert sleep_durations(sleep) == [10.0, 1.5, 1.5, 1.5]


class TestWorkflows:
    """Tests for the higher-level trigger helpers."""

    @pytest.mark.asyncio
    async def test_rerun_carries_jira_id(self):
        client = make_client(statuses=[201])
        service, _, _ = make_service(client)
        tests = [
            SimpleNamespace(project=JOB, env="TEST", build_no=100, type="ui", browser="chrome", test_name="testA"),
            SimpleNamespace(project=JOB, env="TEST", build_no=100, type="ui", browser="chrome", test_name="testB"),
        ]

        outcome = await service.rerun_tests(tests)

        assert outcome.confirmed
        client.get_jira_id_from_job.assert_called_once_with(JOB, 100)
        sent = client.post_build.call_args.args[0]
        assert sent.previous_build == 100
        assert sent.raw_query.endswith("&JiraID=CRM-7")

    @pytest.mark.asyncio
    async def test_rerun_validates_before_jenkins(self):
        client = make_client()
        service, _, _ = make_service(client)
        tests = [
            SimpleNamespace(project=JOB, env="TEST", build_no=100, type="ui", browser="chrome", test_name="a"),
            SimpleNamespace(project=JOB, env="PROD", build_no=100, type="ui", browser="chrome", test_name="b"),
        ]

        with pytest.raises(ValueError):
            await service.rerun_tests(tests)

        client.get_jira_id_from_job.assert_not_called()
        client.post_build.assert_not_called()

    @pytest.mark.asyncio
    async def test_maintenance_opens_view_page(self):
        client = make_client(statuses=[201])
        service, _, opener = make_service(client)

        outcome = await service.run_maintenance_job("TEST")

        assert outcome.job_name == "qe-crm-api-ivr-dotnet-v2-Maintenance"
        opener.assert_called_once_with(
            "https://jenkins.example.com/view/Maintenance/job/qe-crm-api-ivr-dotnet-v2-Maintenance/"
        )

    @pytest.mark.asyncio
    async def test_post_nightly_stats(self):
        client = make_client()
        client.post.return_value = 201
        service, _, opener = make_service(client)

        result = await service.post_nightly_stats()

        client.post.assert_called_once_with("/job/Nightly-SDET-Stats/build?token=tok")
        assert result == {'success': True, 'url': "https://jenkins.example.com/job/Nightly-SDET-Stats/", 'status': 201}
        opener.assert_called_once_with(result['url'])
