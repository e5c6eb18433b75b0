"""Smoke tests for all CLI commands using typer CliRunner."""

import re
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import tomlkit
from typer.testing import CliRunner

import pgmt.settings as settings_module
from pgmt.main import app
from pgmt.service import IssueService
from pgmt.settings import PgmtSettings

runner = CliRunner()


@pytest.fixture(autouse=True)
def reset_lru_cache():
    settings_module._read_config.cache_clear()
    yield
    settings_module._read_config.cache_clear()


@pytest.fixture
def use_service(service: IssueService):
    with patch("pgmt.main.get_service", return_value=service):
        yield service


class TestProjects:
    def test_create_and_list(self, use_service: IssueService) -> None:
        result = runner.invoke(app, ["create-project", "pgm", "Mini PGM"])
        assert result.exit_code == 0, result.output
        assert "PGM" in result.output

        result = runner.invoke(app, ["list-projects"])
        assert result.exit_code == 0
        assert "Mini PGM" in result.output

    def test_duplicate_exits(self, use_service: IssueService, project) -> None:
        result = runner.invoke(app, ["create-project", "PGM", "Again"])
        assert result.exit_code == 1
        assert "already exists" in result.output


class TestCreateIssue:
    def test_walkthrough(self, use_service: IssueService, project) -> None:
        result = runner.invoke(app, ["create-issue", "Checkout", "--type", "epic", "-p", "PGM"])
        assert result.exit_code == 0, result.output
        assert "PGM-1" in result.output

        result = runner.invoke(app, ["create-issue", "Cards", "-t", "story", "--parent", "PGM-1", "-p", "PGM"])
        assert result.exit_code == 0, result.output
        assert "PGM-2" in result.output

        result = runner.invoke(app, ["create-issue", "Vault", "-t", "subtask", "--parent", "PGM-2", "-p", "PGM"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["create-issue", "Nope", "-t", "task", "--parent", "PGM-3", "-p", "PGM"])
        assert result.exit_code == 1
        assert "Subtask cannot have children" in result.output

    def test_unknown_type_rejected_by_cli(self, use_service: IssueService, project) -> None:
        result = runner.invoke(app, ["create-issue", "X", "--type", "initiative", "-p", "PGM"])
        assert result.exit_code != 0

    def test_default_project_from_settings(self, use_service: IssueService, project) -> None:
        with patch("pgmt.main.get_settings", return_value=PgmtSettings(default_project="PGM")):
            result = runner.invoke(app, ["create-issue", "Loose task"])
        assert result.exit_code == 0, result.output
        assert "PGM-1" in result.output

    def test_no_project_exits(self, use_service: IssueService) -> None:
        with patch("pgmt.main.get_settings", return_value=PgmtSettings(default_project=None)):
            result = runner.invoke(app, ["create-issue", "Loose task"])
        assert result.exit_code == 1
        assert "No project specified" in result.output


class TestReads:
    def test_list_issues(self, use_service: IssueService, tree) -> None:
        result = runner.invoke(app, ["list-issues", "-p", "PGM"])
        assert result.exit_code == 0
        for key in ("PGM-1", "PGM-2", "PGM-3"):
            assert key in result.output

    def test_get_issue_shows_path_and_children(self, use_service: IssueService, tree) -> None:
        result = runner.invoke(app, ["get-issue", "PGM-2"])
        assert result.exit_code == 0, result.output
        assert "PGM-1 › PGM-2" in result.output
        assert "Children" in result.output
        assert "PGM-3" in result.output

    def test_get_missing_issue(self, use_service: IssueService, project) -> None:
        result = runner.invoke(app, ["get-issue", "PGM-9"])
        assert result.exit_code == 1
        assert "Issue not found" in result.output

    def test_subtasks(self, use_service: IssueService, tree) -> None:
        result = runner.invoke(app, ["subtasks", "PGM-2"])
        assert result.exit_code == 0
        assert "PGM-3" in result.output

    def test_rules(self) -> None:
        result = runner.invoke(app, ["rules"])
        assert result.exit_code == 0
        assert "Subtask" in result.output
        assert "Epic" in result.output


class TestUpdateIssue:
    def test_reparent_epic_rejected(self, use_service: IssueService, tree) -> None:
        result = runner.invoke(app, ["update-issue", "PGM-1", "--parent", "PGM-2"])
        assert result.exit_code == 1
        assert "Epic cannot have a parent" in result.output

    def test_status_update(self, use_service: IssueService, tree) -> None:
        result = runner.invoke(app, ["update-issue", "PGM-2", "--status", "done"])
        assert result.exit_code == 0, result.output
        assert use_service.get_issue("PGM-2").status == "done"

    def test_detach(self, use_service: IssueService, tree) -> None:
        result = runner.invoke(app, ["update-issue", "PGM-2", "--detach"])
        assert result.exit_code == 0, result.output
        assert use_service.get_issue("PGM-2").parent_id is None

    def test_parent_and_detach_conflict(self, use_service: IssueService, tree) -> None:
        result = runner.invoke(app, ["update-issue", "PGM-2", "--detach", "--parent", "PGM-1"])
        assert result.exit_code == 1


class TestDeleteIssue:
    def test_refuses_parent_without_cascade(self, use_service: IssueService, tree) -> None:
        result = runner.invoke(app, ["delete-issue", "PGM-1"])
        assert result.exit_code == 1
        assert "has children" in result.output

    def test_cascade(self, use_service: IssueService, tree) -> None:
        result = runner.invoke(app, ["delete-issue", "PGM-1", "--cascade"])
        assert result.exit_code == 0, result.output
        assert "PGM-3, PGM-2, PGM-1" in result.output


class TestJsonWorkspace:
    def test_state_persists_between_invocations(self, tmp_path: Path) -> None:
        settings = PgmtSettings(store_path=tmp_path / "issues.json", default_project="PGM")
        with patch("pgmt.main.get_settings", return_value=settings):
            assert runner.invoke(app, ["create-project", "PGM", "Mini PGM"]).exit_code == 0
            assert runner.invoke(app, ["create-issue", "Epic", "-t", "epic"]).exit_code == 0
            result = runner.invoke(app, ["list-issues"])
        assert result.exit_code == 0, result.output
        assert "PGM-1" in result.output


class TestSetDefault:
    def test_creates_config_if_missing(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_path = tmp_path / "config.toml"
        monkeypatch.setattr(settings_module, "CONFIG_PATH", config_path)
        result = runner.invoke(app, ["set-default", "myprofile"])
        assert result.exit_code == 0
        assert config_path.exists()
        config = tomlkit.loads(config_path.read_text())
        assert config["default_workspace"] == "myprofile"

    def test_validates_profile_exists(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_path = tmp_path / "config.toml"
        doc = tomlkit.document()
        doc.add("work", {"store": "json"})
        config_path.write_text(tomlkit.dumps(doc))
        monkeypatch.setattr(settings_module, "CONFIG_PATH", config_path)
        result = runner.invoke(app, ["set-default", "nonexistent"])
        assert result.exit_code == 1
        assert "'nonexistent'" in result.output


class TestConfigShow:
    def test_renders_table(self) -> None:
        settings = MagicMock(spec=PgmtSettings)
        settings.default_workspace = None
        settings.store = "json"
        settings.store_path = Path("/tmp/issues.json")
        settings.default_project = "PGM"
        settings.max_walk_steps = 64
        settings.key_max_attempts = 16
        settings.log_level = "WARNING"
        with patch("pgmt.main.get_settings", return_value=settings):
            result = runner.invoke(app, ["config-show"])
        assert result.exit_code == 0
        assert "store_path" in result.output
        assert "PGM" in result.output


class TestInvalidInput:
    def test_empty_title(self, use_service: IssueService, project) -> None:
        result = runner.invoke(app, ["create-issue", "", "-p", "PGM"])
        assert result.exit_code == 1
        assert "Invalid issue" in result.output
        assert isinstance(result.exception, SystemExit)

    def test_bad_project_key(self, use_service: IssueService) -> None:
        result = runner.invoke(app, ["create-project", "P", "Name"])
        assert result.exit_code == 1
        assert "Invalid project" in result.output
        assert use_service.list_projects() == []


class TestProjectMaintenance:
    def test_list_shows_counts(self, use_service: IssueService, tree) -> None:
        use_service.update_issue(tree.subtask.key, status="done")
        result = runner.invoke(app, ["list-projects"])
        assert result.exit_code == 0
        assert "Done" in result.output
        row = next(line for line in result.output.splitlines() if "Mini PGM" in line)
        assert re.search(r"Mini PGM\D+3\D+1\D*$", row)

    def test_update(self, use_service: IssueService, project) -> None:
        result = runner.invoke(app, ["update-project", "pgm", "--name", "Renamed"])
        assert result.exit_code == 0, result.output
        assert use_service.get_project("PGM").name == "Renamed"

    def test_delete_refused_then_cascade(self, use_service: IssueService, tree) -> None:
        result = runner.invoke(app, ["delete-project", "PGM"])
        assert result.exit_code == 1
        assert "still has 3 issues" in result.output

        result = runner.invoke(app, ["delete-project", "PGM", "--cascade"])
        assert result.exit_code == 0, result.output
        assert use_service.list_projects() == []


class TestSprints:
    def test_plan_issue_into_sprint(self, use_service: IssueService, tree) -> None:
        result = runner.invoke(app, ["create-sprint", "Sprint 1", "2026-03-02", "2026-03-13", "-p", "PGM"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["update-issue", tree.story.key, "--sprint", "Sprint 1"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["sprint-issues", "Sprint 1", "-p", "PGM"])
        assert result.exit_code == 0
        assert tree.story.key in result.output

        result = runner.invoke(app, ["get-issue", tree.story.key])
        assert "Sprint 1" in result.output

        result = runner.invoke(app, ["update-issue", tree.story.key, "--no-sprint"])
        assert result.exit_code == 0, result.output
        assert use_service.get_issue(tree.story.key).sprint_id is None

    def test_list_and_status(self, use_service: IssueService, project) -> None:
        runner.invoke(app, ["create-sprint", "Sprint 1", "2026-03-02", "2026-03-13", "-p", "PGM", "--goal", "Cards"])
        result = runner.invoke(app, ["sprint-status", "Sprint 1", "active", "-p", "PGM"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(app, ["list-sprints", "-p", "PGM"])
        assert result.exit_code == 0
        assert "Sprint 1" in result.output
        assert "active" in result.output

    def test_bad_date(self, use_service: IssueService, project) -> None:
        result = runner.invoke(app, ["create-sprint", "S", "March", "2026-03-13", "-p", "PGM"])
        assert result.exit_code != 0

    def test_unknown_sprint(self, use_service: IssueService, project) -> None:
        result = runner.invoke(app, ["create-issue", "Lost", "--sprint", "Sprint 9", "-p", "PGM"])
        assert result.exit_code == 1
        assert "Sprint not found" in result.output


class TestAssignees:
    def test_assigned_and_unassign(self, use_service: IssueService, project) -> None:
        runner.invoke(app, ["create-issue", "Mine", "-a", "kim", "-p", "PGM"])
        result = runner.invoke(app, ["assigned", "kim"])
        assert result.exit_code == 0
        assert "PGM-1" in result.output

        result = runner.invoke(app, ["update-issue", "PGM-1", "--no-assignee"])
        assert result.exit_code == 0, result.output
        assert use_service.get_issue("PGM-1").assignee is None

    def test_assignee_and_unassign_conflict(self, use_service: IssueService, project) -> None:
        runner.invoke(app, ["create-issue", "Mine", "-a", "kim", "-p", "PGM"])
        result = runner.invoke(app, ["update-issue", "PGM-1", "-a", "sam", "--no-assignee"])
        assert result.exit_code == 1
        assert use_service.get_issue("PGM-1").assignee == "kim"
