"""Tests for queue event decoding and webhook ingress."""

import json

import pytest

from codefamily.exceptions import SignatureError
from codefamily.pipeline import (
    PushEvent,
    ReviewRequestEvent,
    UnsupportedEvent,
    WebhookIngress,
    decode_event,
    sign,
)

PUSH_BODY = {
    "ref": "refs/heads/main",
    "after": "c3",
    "repository": {"name": "widgets", "owner": {"login": "acme"}, "clone_url": "https://example.com/acme/widgets.git"},
    "sender": {"login": "bob"},
    "pusher": {"name": "Bob Builder"},
    "commits": [
        {"id": "c2", "message": "add b", "added": ["b.py"], "modified": ["a.py"], "removed": []},
        {"id": "c3", "message": "drop b", "added": ["c.py"], "modified": [], "removed": ["b.py"]},
    ],
}

PR_BODY = {
    "action": "opened",
    "number": 12,
    "pull_request": {"number": 12, "title": "Rework F", "state": "open", "user": {"login": "carol"}, "head": {"sha": "h1"}},
    "repository": {"full_name": "acme/widgets"},
}


class TestDecodeEvent:
    def test_push(self):
        event = decode_event("push", json.dumps(PUSH_BODY))
        assert isinstance(event, PushEvent)
        assert (event.owner, event.name, event.branch, event.after) == ("acme", "widgets", "main", "c3")
        assert event.pusher == "bob"
        assert event.clone_url.endswith("widgets.git")
        assert [c.sha for c in event.commits] == ["c2", "c3"]

    def test_push_changed_files_drop_later_removals(self):
        event = decode_event("push", json.dumps(PUSH_BODY))
        assert event.changed_files == {"a.py", "c.py"}

    def test_push_pusher_fallback(self):
        body = dict(PUSH_BODY)
        del body["sender"]
        assert decode_event("push", json.dumps(body)).pusher == "Bob Builder"

    def test_review_request_full_name(self):
        event = decode_event("pull_request", json.dumps(PR_BODY))
        assert isinstance(event, ReviewRequestEvent)
        assert (event.owner, event.name, event.number) == ("acme", "widgets", 12)
        assert (event.author, event.head_sha, event.state, event.action) == ("carol", "h1", "open", "opened")

    def test_unsupported_not_parsed(self):
        assert decode_event("issues", "not json") == UnsupportedEvent("issues")

    @pytest.mark.parametrize(
        "payload",
        [
            "not json",
            "[1, 2]",
            json.dumps({"ref": "refs/heads/main", "after": "x"}),
            json.dumps({"repository": {"name": "widgets"}, "ref": "r", "after": "x"}),
            json.dumps({"repository": {"full_name": "acme/widgets"}, "after": "x"}),
        ],
    )
    def test_malformed_push(self, payload):
        with pytest.raises(ValueError):
            decode_event("push", payload)


class TestWebhookIngress:
    def test_sign_format(self):
        assert sign("s3cret", b"{}").startswith("sha256=")
        assert len(sign("s3cret", b"{}")) == len("sha256=") + 64

    def test_accept_enqueues(self, store):
        body = json.dumps(PUSH_BODY).encode()
        ingress = WebhookIngress(store, "s3cret")
        item_id = ingress.accept("push", body, sign("s3cret", body))
        item = store.get_queue_item(item_id)
        assert item.event_type == "push"
        assert json.loads(item.payload) == PUSH_BODY

    def test_accept_str_body(self, store):
        ingress = WebhookIngress(store, "s3cret")
        assert ingress.accept("push", "{}", sign("s3cret", b"{}")) > 0

    @pytest.mark.parametrize("signature", [None, "", "sha1=abc", "sha256=" + "0" * 64])
    def test_rejected(self, store, signature):
        with pytest.raises(SignatureError):
            WebhookIngress(store, "s3cret").accept("push", b"{}", signature)
        assert store.queue_counts()["pending"] == 0

    def test_wrong_secret(self, store):
        with pytest.raises(SignatureError, match="mismatch"):
            WebhookIngress(store, "s3cret").verify(b"{}", sign("other", b"{}"))

    def test_no_secret_configured(self, store):
        with pytest.raises(SignatureError):
            WebhookIngress(store, "").verify(b"{}", sign("", b"{}"))
