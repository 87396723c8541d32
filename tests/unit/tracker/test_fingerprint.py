"""Tests for fingerprint generation."""

import hashlib
from datetime import UTC, datetime


class TestNormalizeKey:
    """Test text normalization used by fingerprints."""

    def test_lowercases_and_collapses_punctuation(self):
        """Should lower-case and collapse runs of non-alphanumerics."""
        from apptrack.tracker.fingerprint import normalize_key

        assert normalize_key("  Senior   Engineer -- Platform!! ") == "senior engineer platform"

    def test_strips_straight_and_curly_apostrophes(self):
        """Should drop apostrophes instead of turning them into spaces."""
        from apptrack.tracker.fingerprint import normalize_key

        assert normalize_key("Macy's") == "macys"
        assert normalize_key("Macy’s") == "macys"

    def test_none_is_empty(self):
        """Should treat None as an empty string."""
        from apptrack.tracker.fingerprint import normalize_key

        assert normalize_key(None) == ""


class TestComputeJobFingerprint:
    """Test job fingerprints."""

    def test_is_sha1_of_normalized_fields(self):
        """Should hash the pipe-joined normalized fields."""
        from apptrack.tracker.fingerprint import compute_job_fingerprint

        expected = hashlib.sha1(b"backend engineer|acme|remote").hexdigest()
        assert compute_job_fingerprint("Backend Engineer", "ACME", "Remote") == expected

    def test_normalization_equivalent_inputs_collide(self):
        """Inputs that normalize the same should share a fingerprint."""
        from apptrack.tracker.fingerprint import compute_job_fingerprint

        a = compute_job_fingerprint("Backend Engineer", "Acme, Inc.", "New York, NY")
        b = compute_job_fingerprint("backend  ENGINEER", "acme inc", "new-york ny")
        assert a == b

    def test_different_company_changes_fingerprint(self):
        """A company that normalizes differently should not collide."""
        from apptrack.tracker.fingerprint import compute_job_fingerprint

        acme = compute_job_fingerprint("Backend Engineer", "Acme", "Remote")
        acme_inc = compute_job_fingerprint("Backend Engineer", "Acme Inc", "Remote")
        assert acme != acme_inc

    def test_is_stable_across_calls(self):
        """Should return the same value for the same input."""
        from apptrack.tracker.fingerprint import compute_job_fingerprint

        assert compute_job_fingerprint("A", "B", "C") == compute_job_fingerprint("A", "B", "C")

    def test_fields_are_positional(self):
        """Swapping title and company should change the fingerprint."""
        from apptrack.tracker.fingerprint import compute_job_fingerprint

        assert compute_job_fingerprint("Acme", "Engineer", None) != compute_job_fingerprint(
            "Engineer", "Acme", None
        )

    def test_missing_location_equals_empty_location(self):
        """None and blank location should hash the same."""
        from apptrack.tracker.fingerprint import compute_job_fingerprint

        assert compute_job_fingerprint("A", "B", None) == compute_job_fingerprint("A", "B", "")


class TestComputeEventFingerprint:
    """Test event fingerprints."""

    JOB_FP = "f" * 40

    def test_external_id_takes_priority(self):
        """Should use the external id as the disambiguator when present."""
        from apptrack.tracker.fingerprint import compute_event_fingerprint

        result = compute_event_fingerprint(
            "u1", "linkedin", "email", self.JOB_FP, None, external_id="ext-1", message_id="m-1"
        )
        expected = hashlib.sha1(b"u1|linkedin|email|ext-1").hexdigest()
        assert result == expected

    def test_message_id_used_without_external_id(self):
        """Should fall back to the message id."""
        from apptrack.tracker.fingerprint import compute_event_fingerprint

        result = compute_event_fingerprint(
            "u1", "linkedin", "email", self.JOB_FP, None, message_id="m-1"
        )
        assert result == hashlib.sha1(b"u1|linkedin|email|m-1").hexdigest()

    def test_falls_back_to_job_and_applied_date(self):
        """Should use job fingerprint, platform, source type and date."""
        from apptrack.tracker.fingerprint import compute_event_fingerprint

        applied = datetime(2024, 1, 10, 15, 30, tzinfo=UTC)
        result = compute_event_fingerprint("u1", "indeed", "manual", self.JOB_FP, applied)
        base = f"{self.JOB_FP}|indeed|manual|2024-01-10"
        expected = hashlib.sha1(f"u1|indeed|manual|{base}".encode()).hexdigest()
        assert result == expected

    def test_same_day_events_collide(self):
        """Two events for the same job on the same day are one event."""
        from apptrack.tracker.fingerprint import compute_event_fingerprint

        morning = datetime(2024, 1, 10, 8, 0, tzinfo=UTC)
        evening = datetime(2024, 1, 10, 20, 0, tzinfo=UTC)
        assert compute_event_fingerprint(
            "u1", "indeed", "manual", self.JOB_FP, morning
        ) == compute_event_fingerprint("u1", "indeed", "manual", self.JOB_FP, evening)

    def test_same_instant_in_other_offset_collides(self):
        """The date is taken in UTC, not in the offset the source used."""
        from datetime import timedelta, timezone

        from apptrack.tracker.fingerprint import compute_event_fingerprint

        utc = datetime(2024, 1, 11, 4, 0, tzinfo=UTC)
        pacific = datetime(2024, 1, 10, 20, 0, tzinfo=timezone(timedelta(hours=-8)))
        assert compute_event_fingerprint(
            "u1", "linkedin", "extension", self.JOB_FP, utc
        ) == compute_event_fingerprint("u1", "linkedin", "extension", self.JOB_FP, pacific)

    def test_naive_applied_at_is_treated_as_utc(self):
        """A naive datetime should hash like the same UTC time."""
        from apptrack.tracker.fingerprint import compute_event_fingerprint

        naive = datetime(2024, 1, 10, 23, 30)
        aware = datetime(2024, 1, 10, 23, 30, tzinfo=UTC)
        assert compute_event_fingerprint(
            "u1", "indeed", "manual", self.JOB_FP, naive
        ) == compute_event_fingerprint("u1", "indeed", "manual", self.JOB_FP, aware)

    def test_missing_applied_at_uses_na(self):
        """Should use 'na' when there is no applied date."""
        from apptrack.tracker.fingerprint import compute_event_fingerprint

        result = compute_event_fingerprint("u1", "unknown", "unknown", self.JOB_FP, None)
        base = f"{self.JOB_FP}|unknown|unknown|na"
        expected = hashlib.sha1(f"u1|unknown|unknown|{base}".encode()).hexdigest()
        assert result == expected

    def test_users_do_not_share_event_fingerprints(self):
        """The same external id for different users should not collide."""
        from apptrack.tracker.fingerprint import compute_event_fingerprint

        a = compute_event_fingerprint("u1", "linkedin", "email", self.JOB_FP, None, "x")
        b = compute_event_fingerprint("u2", "linkedin", "email", self.JOB_FP, None, "x")
        assert a != b


class TestNormalizeUrl:
    """Test URL normalization function."""

    def test_removes_utm_tracking_parameters(self):
        """Should remove utm_* tracking parameters."""
        from apptrack.tracker.fingerprint import normalize_url

        url = "https://example.com/jobs/123?utm_source=linkedin&utm_medium=social"
        assert normalize_url(url) == "https://example.com/jobs/123"

    def test_normalizes_http_to_https_and_lowercases_host(self):
        """Should force https and lower-case the host."""
        from apptrack.tracker.fingerprint import normalize_url

        assert normalize_url("http://Example.COM/jobs/123/") == "https://example.com/jobs/123"

    def test_sorts_query_parameters(self):
        """Should sort query parameters for consistency."""
        from apptrack.tracker.fingerprint import normalize_url

        assert normalize_url("https://example.com/jobs?b=2&a=1") == normalize_url(
            "https://example.com/jobs?a=1&b=2"
        )

    def test_blank_url_is_empty(self):
        """Should return an empty string for blank input."""
        from apptrack.tracker.fingerprint import normalize_url

        assert normalize_url("") == ""
        assert normalize_url("   ") == ""
