from datetime import timedelta

from jobflare.core.models import JobSource
from jobflare.services.notifications import NotificationPolicy

from conftest import NOW


def test_dated_postings_notify_only_inside_window(make_job):
    policy = NotificationPolicy(window_s=2 * 3600)
    jobs = [
        make_job("just-posted", posting_date=NOW - timedelta(minutes=30)),
        make_job("yesterday", posting_date=NOW - timedelta(days=1)),
    ]

    assert [j.id for j in policy.select(jobs, NOW)] == ["just-posted"]


def test_undated_burst_from_one_company_is_throttled(make_job):
    policy = NotificationPolicy(window_s=2 * 3600, group_throttle=10)
    burst = [
        make_job(f"html-{i}", first_seen=NOW - timedelta(minutes=10), company_name="Acme", source=JobSource.UNKNOWN)
        for i in range(11)
    ]
    single = make_job("html-x", first_seen=NOW - timedelta(minutes=10), company_name="Other", source=JobSource.UNKNOWN)

    assert [j.id for j in policy.select(burst + [single], NOW)] == ["html-x"]


def test_undated_postings_need_a_minute_of_history(make_job):
    policy = NotificationPolicy()
    just_found = make_job("a", first_seen=NOW - timedelta(seconds=5))
    known = make_job("b", first_seen=NOW - timedelta(minutes=5))
    stale = make_job("c", first_seen=NOW - timedelta(hours=3))

    assert [j.id for j in policy.select([just_found, known, stale], NOW)] == ["b"]


def test_notified_ids_are_not_repeated(make_job):
    policy = NotificationPolicy()
    job = make_job("a", posting_date=NOW - timedelta(minutes=5))

    policy.mark_notified(policy.select([job], NOW))

    assert policy.select([job], NOW) == []
