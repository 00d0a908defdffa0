"""Tests for AnalysisStore CRUD, transactions and the work queue."""

import sqlite3
from datetime import timedelta

import pytest

from codefamily.exceptions import DataConsistencyError, NotFoundError
from codefamily.models import CommitFact, ReviewRequest
from codefamily.persistence import AnalysisDB, AnalysisStore, utcnow
from conftest import NOW


def _fact(sha, author="alice", when=NOW, message="work"):
    return CommitFact(sha, author, author.title(), f"{author}@example.com", message, when)


class TestRepositories:
    def test_get_or_create_is_idempotent(self, store):
        first = store.get_or_create_repository("acme", "widgets")
        second = store.get_or_create_repository("acme", "widgets")
        assert first.id == second.id
        assert first.status == "pending"
        assert first.full_name == "acme/widgets"

    def test_status_and_sha(self, store, repo):
        store.update_repository_status(repo.id, "ready")
        store.update_last_analyzed_sha(repo.id, "abc")
        loaded = store.get_repository("acme", "widgets")
        assert loaded.status == "ready"
        assert loaded.last_analyzed_sha == "abc"

    def test_unknown_id(self, store):
        with pytest.raises(NotFoundError):
            store.get_repository_by_id(999)


class TestCommits:
    def test_insert_once(self, store, repo):
        assert store.insert_commit(repo.id, _fact("c1")) is True
        assert store.insert_commit(repo.id, _fact("c1")) is False
        assert store.known_commit_shas(repo.id) == {"c1"}

    def test_round_trip_keeps_timezone(self, store, repo):
        store.insert_commit(repo.id, _fact("c1"))
        assert store.get_commit(repo.id, "c1").committed_at == NOW

    def test_counts_and_names(self, store, repo):
        store.insert_commit(repo.id, _fact("c1", "alice", NOW - timedelta(days=2)))
        store.insert_commit(repo.id, _fact("c2", "alice", NOW))
        store.insert_commit(repo.id, _fact("c3", "bob", NOW))
        assert store.commit_counts_by_author(repo.id) == {"alice": 2, "bob": 1}
        assert store.author_names(repo.id)["bob"] == "Bob"

    def test_branch_links(self, store, repo):
        store.insert_commit(repo.id, _fact("c1"))
        branch = store.get_or_create_branch(repo.id, "main", is_default=True)
        store.link_commit_to_branch(repo.id, "c1", branch.id)
        store.link_commit_to_branch(repo.id, "c1", branch.id)
        assert store.branch_commit_shas(branch.id) == {"c1"}
        assert store.list_branches(repo.id)[0].is_default is True


class TestTransactions:
    def test_rollback_discards_all_writes(self, store, repo):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert_commit(repo.id, _fact("c1"))
                store.get_or_create_file(repo.id, "a.py")
                raise RuntimeError("boom")
        assert store.known_commit_shas(repo.id) == set()
        assert store.list_files(repo.id) == []

    def test_nested_joins_outer(self, store, repo):
        with store.transaction():
            with store.transaction():
                store.insert_commit(repo.id, _fact("c1"))
            store.insert_commit(repo.id, _fact("c2"))
        assert store.known_commit_shas(repo.id) == {"c1", "c2"}


class TestFileChanges:
    def test_ordered_by_commit_time(self, store, repo):
        store.insert_commit(repo.id, _fact("late", "bob", NOW))
        store.insert_commit(repo.id, _fact("early", "alice", NOW - timedelta(days=3)))
        record = store.get_or_create_file(repo.id, "a.py")
        store.upsert_file_change(record.id, "late", 5, 1)
        store.upsert_file_change(record.id, "early", 10, 0)
        changes = store.file_changes(record.id)
        assert [c.commit_sha for c in changes] == ["early", "late"]
        assert changes[1].author_id == "bob"
        assert changes[1].churn == 6

    def test_upsert_overwrites(self, store, repo):
        store.insert_commit(repo.id, _fact("c1"))
        record = store.get_or_create_file(repo.id, "a.py")
        store.upsert_file_change(record.id, "c1", 5, 1)
        store.upsert_file_change(record.id, "c1", 7, 2)
        changes = store.file_changes(record.id)
        assert len(changes) == 1
        assert (changes[0].additions, changes[0].deletions) == (7, 2)


class TestEdges:
    def test_self_edge_rejected(self, store, repo):
        a = store.get_or_create_file(repo.id, "a.py")
        with pytest.raises(DataConsistencyError):
            store.upsert_edge(repo.id, a.id, a.id)

    def test_two_cycle_rejected(self, store, repo):
        a = store.get_or_create_file(repo.id, "a.py")
        b = store.get_or_create_file(repo.id, "b.py")
        store.upsert_edge(repo.id, a.id, b.id)
        with pytest.raises(DataConsistencyError):
            store.upsert_edge(repo.id, b.id, a.id)

    def test_upsert_keeps_one_edge_per_type(self, store, repo):
        a = store.get_or_create_file(repo.id, "a.py")
        b = store.get_or_create_file(repo.id, "b.py")
        store.upsert_edge(repo.id, a.id, b.id, strength=1.0)
        store.upsert_edge(repo.id, a.id, b.id, strength=0.5)
        store.upsert_edge(repo.id, a.id, b.id, edge_type="call")
        edges = store.list_edges(repo.id)
        assert len(edges) == 2
        assert {e.edge_type: e.strength for e in edges}["import"] == 0.5
        assert store.has_edge(a.id, b.id)
        assert not store.has_edge(b.id, a.id)


class TestEmbeddings:
    def test_latest_bounds(self, store, repo):
        record = store.get_or_create_file(repo.id, "a.py")
        old = NOW - timedelta(days=5)
        store.add_embedding(record.id, "c1", "f", [1.0, 0.0], "v1", old)
        store.add_embedding(record.id, "c2", "g", [0.0, 1.0], "v2", NOW)

        assert store.latest_embedding(record.id).commit_sha == "c2"
        assert store.latest_embedding(record.id, before=NOW).commit_sha == "c1"
        assert store.latest_embedding(record.id, at_or_before=NOW).commit_sha == "c2"
        assert store.latest_embedding(record.id, before=old) is None
        assert store.latest_embedding(record.id, chunk_name="f").vector == [1.0, 0.0]
        assert store.embedding_count(record.id) == 2

    def test_current_vectors_skips_unknown(self, store, repo):
        record = store.get_or_create_file(repo.id, "a.py")
        store.add_embedding(record.id, "c1", "f", [0.5, 0.5], "v", NOW)
        assert store.current_vectors(repo.id, ["a.py", "missing.py"]) == {"a.py": [[0.5, 0.5]]}

    def test_current_vectors_before(self, store, repo):
        record = store.get_or_create_file(repo.id, "a.py")
        store.add_embedding(record.id, "c1", "<module>", [1.0, 0.0], "v1", NOW - timedelta(days=1))
        store.add_embedding(record.id, "c2", "<module>", [0.0, 1.0], "v2", NOW)
        assert store.current_vectors(repo.id, ["a.py"]) == {"a.py": [[0.0, 1.0]]}
        assert store.current_vectors(repo.id, ["a.py"], before=NOW) == {"a.py": [[1.0, 0.0]]}
        assert store.current_vectors(repo.id, ["a.py"], before=NOW - timedelta(days=1)) == {}

    def test_chunk_fingerprint_latest_per_chunk(self, store, repo):
        record = store.get_or_create_file(repo.id, "a.py")
        old = NOW - timedelta(days=3)
        store.add_embedding(record.id, "c1", "a", [1.0, 0.0], "a1", old)
        store.add_embedding(record.id, "c1", "b", [0.0, 1.0], "b1", old)
        store.add_embedding(record.id, "c2", "a", [0.5, 0.5], "a2", NOW)

        current = store.chunk_fingerprint(record.id)
        earlier = store.chunk_fingerprint(record.id, at_or_before=old)

        assert {name: e.commit_sha for name, e in current.items()} == {"a": "c2", "b": "c1"}
        assert earlier["a"].vector == [1.0, 0.0]
        assert store.chunk_fingerprint(record.id, before=old) == {}


class TestDeltasAndOwnership:
    def test_delta_recorded_once(self, store, repo):
        record = store.get_or_create_file(repo.id, "a.py")
        assert store.record_delta(record.id, "c1", "f", "alice", 0.5) is True
        assert store.record_delta(record.id, "c1", "f", "alice", 0.5) is False
        store.record_delta(record.id, "c2", "f", "alice", 0.25)
        store.record_delta(record.id, "c3", "f", "bob", 1.0)
        assert store.author_delta_totals(record.id) == {"alice": 0.75, "bob": 1.0}

    def test_replace_ownership(self, store, repo):
        record = store.get_or_create_file(repo.id, "a.py")
        store.replace_ownership(record.id, {"alice": 0.25, "bob": 0.75})
        store.replace_ownership(record.id, {"bob": 1.0})
        shares = store.ownership_for_file(record.id)
        assert [(s.author_id, s.score) for s in shares] == [("bob", 1.0)]


class TestReviewRequests:
    def test_files_replaced_and_head_sha_kept(self, store, repo):
        store.upsert_review_request(ReviewRequest(repo.id, 12, "Add x", head_sha="h1"), ["a.py", "b.py"])
        store.upsert_review_request(ReviewRequest(repo.id, 12, "Add x v2"), ["c.py"])
        request = store.get_review_request(repo.id, 12)
        assert request.title == "Add x v2"
        assert request.head_sha == "h1"
        assert request.files == {"c.py"}

    def test_files_untouched_without_list(self, store, repo):
        store.upsert_review_request(ReviewRequest(repo.id, 3), ["a.py"])
        store.upsert_review_request(ReviewRequest(repo.id, 3, state="closed"))
        assert store.get_review_request(repo.id, 3).files == {"a.py"}
        assert store.open_review_requests(repo.id) == []


class TestWorkQueue:
    def test_claim_in_order(self, store):
        first = store.enqueue("push", "{}")
        second = store.enqueue("pull_request", "{}")
        claimed = store.claim_next()
        assert claimed.id == first
        assert claimed.status == "processing"
        assert claimed.attempts == 1
        assert store.claim_next().id == second
        assert store.claim_next() is None

    def test_mark_status(self, store):
        item_id = store.enqueue("push", "{}")
        store.claim_next()
        store.mark_status(item_id, "failed", "boom")
        item = store.get_queue_item(item_id)
        assert item.status == "failed"
        assert item.last_error == "boom"
        assert store.queue_counts()["failed"] == 1

    def test_reschedule_delays_claim(self, store):
        item_id = store.enqueue("push", "{}")
        store.claim_next()
        store.reschedule(item_id, 60, "503")
        assert store.claim_next() is None
        later = store.claim_next(now=utcnow() + timedelta(minutes=2))
        assert later.id == item_id
        assert later.attempts == 2

    def test_claim_is_exclusive_across_connections(self, tmp_path):
        path = str(tmp_path / "queue.db")
        with AnalysisDB(path) as db_a, AnalysisDB(path) as db_b:
            a, b = AnalysisStore(db_a.conn), AnalysisStore(db_b.conn)
            item_id = a.enqueue("push", "{}")
            claims = [a.claim_next(), b.claim_next()]
        assert [c.id for c in claims if c is not None] == [item_id]

    def test_unknown_item(self, store):
        with pytest.raises(NotFoundError):
            store.get_queue_item(42)


class TestAnalysisClaim:
    def test_claim_and_release(self, store, repo):
        assert store.claim_repository(repo.id, 60) == "pending"
        assert store.get_repository_by_id(repo.id).status == "analyzing"
        assert store.claim_repository(repo.id, 60) is None

        store.update_repository_status(repo.id, "ready")
        assert store.claim_repository(repo.id, 60) == "ready"

    def test_claim_is_exclusive_across_connections(self, tmp_path):
        path = str(tmp_path / "claim.db")
        with AnalysisDB(path) as db_a, AnalysisDB(path) as db_b:
            a, b = AnalysisStore(db_a.conn), AnalysisStore(db_b.conn)
            repo = a.get_or_create_repository("acme", "widgets")
            assert a.claim_repository(repo.id, 3600) == "pending"
            assert b.claim_repository(repo.id, 3600) is None
            assert b.get_repository_by_id(repo.id).status == "analyzing"

    def test_stale_claim_taken_over(self, store, repo):
        store.claim_repository(repo.id, 60, now=NOW)
        assert store.claim_repository(repo.id, 60, now=NOW + timedelta(seconds=30)) is None
        assert store.claim_repository(repo.id, 60, now=NOW + timedelta(minutes=5)) == "pending"

    def test_status_left_analyzing_without_claim_time_is_stale(self, store, repo):
        store.update_repository_status(repo.id, "analyzing")
        assert store.claim_repository(repo.id, 3600) == "pending"

    def test_unknown_repository(self, store):
        with pytest.raises(NotFoundError):
            store.claim_repository(999, 60)


class TestSchemaUpgrade:
    def test_adds_claim_column(self, tmp_path):
        path = str(tmp_path / "old.db")
        conn = sqlite3.connect(path)
        conn.executescript(
            """
            CREATE TABLE schema_version (version INTEGER NOT NULL);
            INSERT INTO schema_version (version) VALUES (1);
            CREATE TABLE repositories (
                id                INTEGER PRIMARY KEY AUTOINCREMENT,
                owner             TEXT    NOT NULL,
                name              TEXT    NOT NULL,
                status            TEXT    NOT NULL DEFAULT 'pending',
                last_analyzed_sha TEXT,
                UNIQUE (owner, name)
            );
            INSERT INTO repositories (owner, name, status) VALUES ('acme', 'widgets', 'ready');
            """
        )
        conn.close()

        with AnalysisDB(path) as db:
            store = AnalysisStore(db.conn)
            version = db.conn.execute("SELECT version FROM schema_version").fetchone()["version"]
            repo = store.get_repository("acme", "widgets")
            assert version == 2
            assert repo.status == "ready"
            assert store.claim_repository(repo.id, 60) == "ready"
