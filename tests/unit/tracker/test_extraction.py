"""Tests for email heuristic extraction."""


class TestDetectPlatform:
    """Test platform detection."""

    def test_detects_platform_from_sender(self):
        from apptrack.tracker.extraction import detect_platform

        assert detect_platform("Application sent", "jobs-noreply@linkedin.com") == "linkedin"

    def test_detects_platform_from_subject(self):
        from apptrack.tracker.extraction import detect_platform

        assert detect_platform("Your Indeed application", "noreply@mailer.com") == "indeed"

    def test_unknown_when_nothing_matches(self):
        from apptrack.tracker.extraction import detect_platform

        assert detect_platform("Hello", "friend@example.com") == "unknown"


class TestExtractJobDetailsFromEmail:
    """Test job detail extraction."""

    def test_sent_to_for_phrasing(self):
        """Should read company and title from 'sent to X for Y'."""
        from apptrack.tracker.extraction import extract_job_details_from_email

        details = extract_job_details_from_email(
            "Your application was sent to Acme",
            "jobs-noreply@linkedin.com",
            "Your application was sent to Acme for Backend Engineer\nLocation: Remote",
        )

        assert details.platform == "linkedin"
        assert details.company == "Acme"
        assert details.job_title == "Backend Engineer"
        assert details.location == "Remote"

    def test_subject_applied_to_at_phrasing(self):
        """Should fall back to 'applied to <title> at <company>' in the subject."""
        from apptrack.tracker.extraction import extract_job_details_from_email

        details = extract_job_details_from_email(
            "You applied to Data Analyst at Globex", "alerts@indeed.com", ""
        )

        assert details.platform == "indeed"
        assert details.job_title == "Data Analyst"
        assert details.company == "Globex"

    def test_labelled_lines(self):
        """Should read 'Company:' and 'Role:' lines from the body."""
        from apptrack.tracker.extraction import extract_job_details_from_email

        details = extract_job_details_from_email(
            "Thanks", "hr@initech.com", "Company: Initech\nRole: TPS Analyst"
        )

        assert details.company == "Initech"
        assert details.job_title == "TPS Analyst"
        assert details.location is None

    def test_returns_empty_hints_for_unrelated_email(self):
        """Should return None fields when nothing is recognized."""
        from apptrack.tracker.extraction import extract_job_details_from_email

        details = extract_job_details_from_email("Lunch?", "friend@example.com", "See you")

        assert details.platform == "unknown"
        assert details.job_title is None
        assert details.company is None

    def test_handles_missing_inputs(self):
        """Should accept None for every field."""
        from apptrack.tracker.extraction import extract_job_details_from_email

        details = extract_job_details_from_email(None, None, None)

        assert details.job_title is None
        assert details.company is None
