"""
Tests for the result store query layer.
"""
from datetime import date, datetime

import pytest

from nightly_stats.services import result_store
from nightly_stats.services.errors import TestNotFoundError
from conftest import RUN_DATE, TODAY, SEARCH_PROJECT, ORDERS_PROJECT, make_result


def discount_name(code):
    return make_result(discount=code).discount_name


class TestDateRange:
    """Tests for get_date_range()."""

    def test_weekday_window(self):
        """Window spans run date midnight to end of next day."""
        start, end = result_store.get_date_range(RUN_DATE, today=TODAY)

        assert start == datetime(2024, 11, 20, 0, 0)
        assert end == datetime(2024, 11, 21, 23, 59, 59, 999000)

    def test_monday_extends_to_today(self):
        """On Mondays the window closes at the end of today."""
        monday = date(2024, 11, 25)
        start, end = result_store.get_date_range(date(2024, 11, 22), today=monday)

        assert start == datetime(2024, 11, 22, 0, 0)
        assert end == datetime(2024, 11, 25, 23, 59, 59, 999000)


class TestDiscountCodes:
    """Tests for discount label/code mapping."""

    def test_round_trip_every_label(self):
        """Every non-empty label maps back to itself."""
        for code in range(1, 10):
            name = discount_name(code)
            assert name
            assert discount_name(result_store.get_discount_code(name)) == name

    def test_clear_discount_is_zero(self):
        assert result_store.get_discount_code("Clear Discount") == 0
        assert discount_name(0) == ''

    def test_numeric_string(self):
        assert result_store.get_discount_code("7") == 7

    def test_unknown_label(self):
        assert result_store.get_discount_code("Cosmic Rays") == 0
        assert discount_name(42) == ''
        assert discount_name(None) == ''


class TestFailedTests:
    """Tests for failed test and discount listings."""

    def test_get_failed_tests(self, test_db, sample_results):
        """Failed, skipped, not-executed and timeout nightly rows only."""
        failed = result_store.get_failed_tests(test_db, RUN_DATE, today=TODAY)

        names = [r.test_name for r in failed]
        assert names == ["LoginTest", "SearchTest", "GetOrder", "SlowTest"]

    def test_browser_filter(self, test_db, sample_results):
        failed = result_store.get_failed_tests(test_db, RUN_DATE, browser="firefox", today=TODAY)
        assert [r.test_name for r in failed] == ["SlowTest"]

    def test_no_filter_sentinel(self, test_db, sample_results):
        """'--' means no browser filter."""
        failed = result_store.get_failed_tests(test_db, RUN_DATE, browser="--", today=TODAY)
        assert len(failed) == 4

    def test_outside_window(self, test_db, sample_results):
        failed = result_store.get_failed_tests(test_db, date(2024, 11, 10), today=TODAY)
        assert failed == []

    def test_yesterdays_discounts(self, test_db, sample_results):
        discounts = result_store.get_yesterdays_discounts(test_db, RUN_DATE, today=TODAY)
        assert [r.test_name for r in discounts] == ["GetOrder"]

    def test_recent_discounts_days_back(self, test_db, sample_results):
        """days_back=3 looks at [target - 1, target] for the legacy window."""
        discounts = result_store.get_recent_discounts(test_db, date(2024, 11, 21), days_back=3, today=TODAY)
        assert [r.test_name for r in discounts] == ["GetOrder"]


class TestDiscountTest:
    """Tests for discount_test()."""

    def test_discount_round_trip(self, test_db, sample_results):
        """Discounting by label stores a code that maps back to the label."""
        row = sample_results['login_failed']

        result_store.discount_test(test_db, row.id, "Code Change", "Deployed new login", "tester")
        test_db.commit()

        stored = result_store.get_test_details(test_db, row.id)
        assert stored.discount == 4
        assert stored.discount_name == "Code Change"
        assert stored.discount_reason == "Deployed new login"
        assert stored.modify_by == "tester"
        assert stored.modify_date_utc is not None

    def test_clear_discount_clears_reason(self, test_db, sample_results):
        """Clear Discount wipes the reason even when one is supplied."""
        row = sample_results['orders_discounted']

        result_store.discount_test(test_db, row.id, "Clear Discount", "ignored", "tester")

        assert row.discount == 0
        assert row.discount_reason == ''

    def test_numeric_code(self, test_db, sample_results):
        row = sample_results['login_failed']
        result_store.discount_test(test_db, row.id, 8, "Thanksgiving", "tester")
        assert row.discount_name == "Holiday"

    def test_missing_test(self, test_db, sample_results):
        with pytest.raises(TestNotFoundError) as exc_info:
            result_store.discount_test(test_db, 99999, "Jenkins", "x", "tester")
        assert "99999" in str(exc_info.value)

    def test_details_missing(self, test_db):
        with pytest.raises(TestNotFoundError):
            result_store.get_test_details(test_db, 1)


class TestCopyDiscounts:
    """Tests for copy_discounts()."""

    def _old_discount(self, test_db, error_msg):
        old = make_result(
            build_number=99, test_name="LoginTest", discount=4, discount_reason="Code change",
            error_msg=error_msg, create_date_utc=datetime(2024, 11, 19, 6, 30)
        )
        test_db.add(old)
        test_db.commit()
        return old

    def test_copies_when_error_matches(self, test_db, sample_results):
        old = self._old_discount(test_db, "Element not found: #login")
        failed = result_store.get_failed_tests(test_db, RUN_DATE, today=TODAY)

        outcome = result_store.copy_discounts(test_db, [old.id], failed, "tester")

        target = sample_results['login_failed']
        assert outcome == {'copied': [target.id], 'skipped': []}
        assert target.discount == 4
        assert target.discount_reason == "Code change"

    def test_skips_when_error_differs(self, test_db, sample_results):
        old = self._old_discount(test_db, "NullReferenceException in LoginPage")
        failed = result_store.get_failed_tests(test_db, RUN_DATE, today=TODAY)

        outcome = result_store.copy_discounts(test_db, [old.id], failed, "tester")

        assert outcome['copied'] == []
        assert outcome['skipped'][0]['test_name'] == "LoginTest"
        assert sample_results['login_failed'].discount == 0

    def test_force_copies_anyway(self, test_db, sample_results):
        old = self._old_discount(test_db, "NullReferenceException in LoginPage")
        failed = result_store.get_failed_tests(test_db, RUN_DATE, today=TODAY)

        outcome = result_store.copy_discounts(test_db, [old.id], failed, "tester", force=True)

        assert outcome['copied'] == [sample_results['login_failed'].id]

    def test_ignores_older_builds(self, test_db, sample_results):
        """A discount only moves forward to a higher build number."""
        old = make_result(
            build_number=101, test_name="LoginTest", discount=4, discount_reason="Code change",
            error_msg="Element not found: #login"
        )
        test_db.add(old)
        test_db.commit()
        failed = result_store.get_failed_tests(test_db, RUN_DATE, today=TODAY)

        outcome = result_store.copy_discounts(test_db, [old.id], failed, "tester")

        assert outcome == {'copied': [], 'skipped': []}


class TestProjectList:
    """Tests for get_project_list()."""

    def test_all_projects(self, test_db, sample_results):
        assert result_store.get_project_list(test_db) == ["--", ORDERS_PROJECT, SEARCH_PROJECT]

    def test_filter_by_type(self, test_db, sample_results):
        """Automation type filter is case-insensitive."""
        assert result_store.get_project_list(test_db, "UI") == ["--", SEARCH_PROJECT]

    def test_no_filter_sentinel(self, test_db, sample_results):
        assert len(result_store.get_project_list(test_db, "--")) == 3


class TestStatistics:
    """Tests for stats, percentages and count drift."""

    def test_open_failures_by_project(self, test_db, sample_results):
        stats = result_store.get_stats(test_db, RUN_DATE, discounted=False, today=TODAY)

        assert stats == [{
            'project': SEARCH_PROJECT,
            'test_count': 1,
            'prod_count': 1,
            'discount_reasons': '',
            'type': 'ui',
            'owner': 'Alice Smith',
        }]

    def test_discounted_failures_by_project(self, test_db, sample_results):
        stats = result_store.get_stats(test_db, RUN_DATE, discounted=True, today=TODAY)

        assert len(stats) == 1
        assert stats[0]['project'] == ORDERS_PROJECT
        assert stats[0]['type'] == 'api'
        assert stats[0]['owner'] == 'N/A'
        assert stats[0]['discount_reasons'] == 'Known change'

    def test_discount_reasons_are_unique(self, test_db, sample_results):
        for name in ("A", "B", "C"):
            test_db.add(make_result(
                project_name=ORDERS_PROJECT, automation_type="api", test_name=name,
                discount=7, discount_reason="Jenkins agent lost" if name != "C" else "Known change"
            ))
        test_db.commit()

        stats = result_store.get_stats(test_db, RUN_DATE, discounted=True, today=TODAY)

        assert stats[0]['test_count'] == 4
        assert stats[0]['discount_reasons'] == 'Known change, Jenkins agent lost'

    def test_percentages(self, test_db, sample_results):
        """Discounted failures count as passes; empty groups are 100%."""
        percentages = result_store.get_percentages(test_db, RUN_DATE, today=TODAY)

        assert percentages == {
            'test_ui': 67,
            'test_api': 100,
            'prod_ui': 0,
            'prod_api': 100,
        }

    def test_percentages_no_data(self, test_db):
        percentages = result_store.get_percentages(test_db, RUN_DATE, today=TODAY)
        assert set(percentages.values()) == {100}

    def test_count_stats(self, test_db, sample_results):
        counts = result_store.get_count_stats(test_db, RUN_DATE, today=TODAY)

        assert counts['under'] == f"TEST {SEARCH_PROJECT}\nExpected: 5 Actual: 3\n"
        assert counts['over'] == f"PROD {SEARCH_PROJECT}\nExpected: NONE Actual: 1\n"

    def test_count_stats_skips_zero_expected(self, test_db, sample_results):
        sample_results['search_count'].test_run_time = 0
        test_db.commit()

        counts = result_store.get_count_stats(test_db, RUN_DATE, today=TODAY)

        assert counts['under'] == ''
