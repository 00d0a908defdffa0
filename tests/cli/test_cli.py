"""CLI tests via typer's CliRunner against a database in a temporary directory."""

import json

import pytest
from typer.testing import CliRunner

from codefamily import __version__
from codefamily.cli import app
from codefamily.models import ContributorScore
from codefamily.persistence import AnalysisDB, AnalysisStore
from conftest import NOW

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "analysis.db"
    monkeypatch.setenv("CODEFAMILY_DATABASE_PATH", str(path))
    return path


@pytest.fixture
def seeded(db_path):
    with AnalysisDB(str(db_path)) as db:
        store = AnalysisStore(db.conn)
        repo = store.get_or_create_repository("acme", "widgets")
        record = store.get_or_create_file(repo.id, "src/app.py")
        store.replace_ownership(record.id, {"bob": 0.75, "alice": 0.25})
        store.replace_contributor_scores(
            repo.id,
            [
                ContributorScore(repo.id, "alice", "Alice", 1.2, 0.6, 20, 3, NOW),
                ContributorScore(repo.id, "bob", "Bob", 0.3, 0.3, 5, 1, NOW),
            ],
        )
    return db_path


class TestGlobalOptions:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_missing_config_file(self, db_path, tmp_path):
        result = runner.invoke(app, ["-c", str(tmp_path / "nope.toml"), "scores", "acme/widgets"])
        assert result.exit_code == 2

    def test_invalid_config_file(self, db_path, tmp_path):
        bad = tmp_path / "bad.toml"
        bad.write_text('queue_max_attempts = "many"\n')
        result = runner.invoke(app, ["-c", str(bad), "scores", "acme/widgets"])
        assert result.exit_code == 1
        assert "Configuration error" in result.stdout


class TestEnqueue:
    def test_enqueue(self, db_path, tmp_path):
        payload = tmp_path / "push.json"
        payload.write_text(json.dumps({"ref": "refs/heads/main"}))

        result = runner.invoke(app, ["-q", "enqueue", "push", str(payload)])

        assert result.exit_code == 0
        assert "item" in result.stdout
        with AnalysisDB(str(db_path)) as db:
            item = AnalysisStore(db.conn).get_queue_item(1)
        assert item.event_type == "push"
        assert json.loads(item.payload) == {"ref": "refs/heads/main"}

    def test_missing_payload_file(self, db_path, tmp_path):
        result = runner.invoke(app, ["enqueue", "push", str(tmp_path / "missing.json")])
        assert result.exit_code == 2


class TestScores:
    def test_json(self, seeded):
        result = runner.invoke(app, ["-q", "scores", "acme/widgets", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [d["contributor_id"] for d in data] == ["alice", "bob"]
        assert data[0]["normalized_score"] == 0.6
        assert data[0]["last_calculated_at"].startswith("2024-06-01")

    def test_table(self, seeded):
        result = runner.invoke(app, ["-q", "scores", "acme/widgets"])
        assert result.exit_code == 0
        assert "alice" in result.stdout
        assert "0.600" in result.stdout

    def test_unknown_repository(self, db_path):
        result = runner.invoke(app, ["-q", "scores", "acme/nothing"])
        assert result.exit_code == 1
        assert "Unknown repository" in result.stdout

    def test_bad_repository_argument(self, db_path):
        result = runner.invoke(app, ["-q", "scores", "widgets"])
        assert result.exit_code == 2


class TestOwnership:
    def test_json(self, seeded):
        result = runner.invoke(app, ["-q", "ownership", "acme/widgets", "src/app.py", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [(d["author_id"], d["score"]) for d in data] == [("bob", 0.75), ("alice", 0.25)]

    def test_unknown_file(self, seeded):
        result = runner.invoke(app, ["-q", "ownership", "acme/widgets", "src/missing.py"])
        assert result.exit_code == 1
        assert "Unknown file" in result.stdout
