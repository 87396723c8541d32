"""Tests for job identity resolution."""

import pytest


@pytest.fixture
def resolver(tracker_repo, job_repo):
    from apptrack.tracker.resolver import JobIdentityResolver

    return JobIdentityResolver(tracker_repo, job_repo)


async def _add_job(job_repo, title, company, location=""):
    from apptrack.jobs import JobCreate

    return await job_repo.create("u1", JobCreate(title=title, company=company, location=location))


class TestJobIdentityResolver:
    """Test the resolver lookup order."""

    @pytest.mark.asyncio
    async def test_index_hit(self, resolver, tracker_repo):
        from apptrack.tracker.models import MatchVia

        await tracker_repo.index_job_fingerprint("u1", "jfp", "job-1")

        match = await resolver.resolve("u1", "jfp", "Engineer", "Acme")

        assert match.job_id == "job-1"
        assert match.via is MatchVia.FINGERPRINT_MAP

    @pytest.mark.asyncio
    async def test_loose_match_is_case_insensitive_and_backfills(
        self, resolver, tracker_repo, job_repo
    ):
        """A loose match should be written back to the index."""
        from apptrack.tracker.models import MatchVia

        job = await _add_job(job_repo, "Backend Engineer", "Acme")

        match = await resolver.resolve("u1", "jfp", "backend engineer", "ACME")

        assert match.job_id == job.id
        assert match.via is MatchVia.LOOSE_JOB_MATCH
        assert await tracker_repo.get_job_for_fingerprint("u1", "jfp") == job.id

        again = await resolver.resolve("u1", "jfp", "backend engineer", "ACME")
        assert again.via is MatchVia.FINGERPRINT_MAP

    @pytest.mark.asyncio
    async def test_loose_match_is_equality_not_similarity(self, resolver, job_repo):
        """'Engineer' and 'Engineer II' should stay separate jobs."""
        from apptrack.tracker.models import MatchVia

        await _add_job(job_repo, "Engineer", "Acme")

        match = await resolver.resolve("u1", "jfp", "Engineer II", "Acme")

        assert match.job_id is None
        assert match.via is MatchVia.NONE

    @pytest.mark.asyncio
    async def test_location_must_match_when_given(self, resolver, job_repo):
        await _add_job(job_repo, "Engineer", "Acme", "Boston")

        miss = await resolver.resolve("u1", "jfp-1", "Engineer", "Acme", "Denver")
        hit = await resolver.resolve("u1", "jfp-2", "Engineer", "Acme", "boston")

        assert miss.job_id is None
        assert hit.job_id is not None

    @pytest.mark.asyncio
    async def test_location_ignored_when_absent(self, resolver, job_repo):
        job = await _add_job(job_repo, "Engineer", "Acme", "Boston")

        match = await resolver.resolve("u1", "jfp", "Engineer", "Acme", None)

        assert match.job_id == job.id

    @pytest.mark.asyncio
    async def test_other_users_jobs_never_match(self, resolver, job_repo):
        from apptrack.jobs import JobCreate

        await job_repo.create("u2", JobCreate(title="Engineer", company="Acme"))

        match = await resolver.resolve("u1", "jfp", "Engineer", "Acme")

        assert match.job_id is None
