"""Tests for the profile directory."""

import json

import pytest


class TestProfileDirectory:
    """Test loading profiles from disk."""

    @pytest.mark.asyncio
    async def test_yaml_with_users_key(self, tmp_path):
        from apptrack.profiles import ProfileDirectory

        path = tmp_path / "profiles.yaml"
        path.write_text(
            "users:\n  u1:\n    name: Ada\n    email: ' ada@example.com '\n",
            encoding="utf-8",
        )

        profiles = ProfileDirectory(path)

        assert profiles.get_profile("u1")["name"] == "Ada"
        assert await profiles.get_default_email("u1") == "ada@example.com"
        assert await profiles.get_default_email("u2") is None

    @pytest.mark.asyncio
    async def test_json_top_level_mapping(self, tmp_path):
        from apptrack.profiles import ProfileDirectory

        path = tmp_path / "profiles.json"
        path.write_text(json.dumps({"u1": {"email": "ada@example.com"}}), encoding="utf-8")

        assert await ProfileDirectory(path).get_default_email("u1") == "ada@example.com"

    @pytest.mark.asyncio
    async def test_missing_or_unset_file(self, tmp_path):
        from apptrack.profiles import ProfileDirectory

        assert ProfileDirectory().load() == {}
        assert await ProfileDirectory(tmp_path / "missing.yaml").get_default_email("u1") is None

    @pytest.mark.asyncio
    async def test_blank_email_is_none(self, tmp_path):
        from apptrack.profiles import ProfileDirectory

        path = tmp_path / "profiles.yaml"
        path.write_text("u1:\n  email: ''\n", encoding="utf-8")

        assert await ProfileDirectory(path).get_default_email("u1") is None

    def test_invalid_yaml_raises(self, tmp_path):
        from apptrack.profiles import ProfileDirectory

        path = tmp_path / "profiles.yaml"
        path.write_text("users: [unclosed\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid YAML"):
            ProfileDirectory(path).load()

    def test_non_mapping_raises(self, tmp_path):
        from apptrack.profiles import ProfileDirectory

        path = tmp_path / "profiles.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(ValueError, match="mapping"):
            ProfileDirectory(path).load()
