"""Tests for the retry policy and the outbound HTTP clients."""

import json

import httpx
import pytest

from codefamily.config import AppConfig
from codefamily.exceptions import NotFoundError, ParseError, TransientExternalFailure
from codefamily.services import (
    ExternalServices,
    GeminiEmbeddingGateway,
    GitHubPlatform,
    RetryPolicy,
    SidecarParserService,
    SlackNotifier,
    is_retryable,
)

NO_WAIT = RetryPolicy(max_attempts=3, base_delay_seconds=0, max_delay_seconds=0)


class Recorder:
    """MockTransport handler replaying canned responses and recording requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        # fresh copy, the last response may be served more than once
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    @property
    def transport(self):
        return httpx.MockTransport(self)


class TestRetryPolicy:
    def test_is_retryable(self):
        assert is_retryable(TransientExternalFailure("x", "down"))
        assert is_retryable(TransientExternalFailure("x", "slow", status_code=429))
        assert is_retryable(TransientExternalFailure("x", "oops", status_code=502))
        assert not is_retryable(TransientExternalFailure("x", "bad", status_code=400))
        assert not is_retryable(NotFoundError("commit", "abc"))

    def test_from_config(self):
        policy = RetryPolicy.from_config(AppConfig(retry_max_attempts=5))
        assert policy.max_attempts == 5

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TransientExternalFailure("x", "down", status_code=503)
            return "ok"

        assert await NO_WAIT.call(flaky) == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_with_last_error(self):
        calls = []

        async def down():
            calls.append(1)
            raise TransientExternalFailure("x", f"attempt {len(calls)}")

        with pytest.raises(TransientExternalFailure, match="x request failed") as exc_info:
            await NO_WAIT.call(down)
        assert exc_info.value.reason == "attempt 3"

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self):
        calls = []

        async def missing():
            calls.append(1)
            raise NotFoundError("commit", "abc")

        with pytest.raises(NotFoundError):
            await NO_WAIT.call(missing)
        assert len(calls) == 1


class TestGitHubPlatform:
    @pytest.mark.asyncio
    async def test_paginates_review_requests(self):
        page1 = [{"number": i, "title": f"PR {i}", "state": "open", "user": {"login": "dev"}} for i in range(100)]
        page2 = [{"number": 100, "title": "last", "state": "open", "head": {"sha": "h"}}]
        recorder = Recorder(httpx.Response(200, json=page1), httpx.Response(200, json=page2))
        async with GitHubPlatform("tok", retry=NO_WAIT, transport=recorder.transport) as gh:
            requests = await gh.list_review_requests("acme", "widgets")

        assert len(requests) == 101
        assert requests[-1].head_sha == "h"
        assert requests[0].author == "dev"
        first = recorder.requests[0]
        assert first.url.path == "/repos/acme/widgets/pulls"
        assert first.url.params["state"] == "open"
        assert first.url.params["page"] == "1"
        assert recorder.requests[1].url.params["page"] == "2"
        assert first.headers["Authorization"] == "Bearer tok"
        assert first.headers["Accept"] == "application/vnd.github+json"

    @pytest.mark.asyncio
    async def test_review_request_files(self):
        recorder = Recorder(httpx.Response(200, json=[{"filename": "a.py"}, {"filename": "b.py"}]))
        async with GitHubPlatform(retry=NO_WAIT, transport=recorder.transport) as gh:
            assert await gh.list_review_request_files("acme", "widgets", 12) == ["a.py", "b.py"]
        assert recorder.requests[0].url.path == "/repos/acme/widgets/pulls/12/files"
        assert "Authorization" not in recorder.requests[0].headers

    @pytest.mark.asyncio
    async def test_create_status_truncates(self):
        recorder = Recorder(httpx.Response(201, json={}))
        async with GitHubPlatform("tok", retry=NO_WAIT, transport=recorder.transport) as gh:
            await gh.create_status("acme", "widgets", "abc123", "failure", "x" * 300, "codefamily/conflict-risk")
        body = json.loads(recorder.requests[0].content)
        assert recorder.requests[0].url.path == "/repos/acme/widgets/statuses/abc123"
        assert body["state"] == "failure"
        assert len(body["description"]) == 140
        assert body["context"] == "codefamily/conflict-risk"

    @pytest.mark.asyncio
    async def test_commit_author(self):
        recorder = Recorder(httpx.Response(200, json={"author": {"login": "octocat"}}), httpx.Response(404))
        async with GitHubPlatform(retry=NO_WAIT, transport=recorder.transport) as gh:
            assert await gh.get_commit_author("acme", "widgets", "c1") == "octocat"
            assert await gh.get_commit_author("acme", "widgets", "c2") is None

    @pytest.mark.asyncio
    async def test_server_errors_retried(self):
        recorder = Recorder(httpx.Response(502), httpx.Response(200, json=[]))
        async with GitHubPlatform(retry=NO_WAIT, transport=recorder.transport) as gh:
            assert await gh.list_review_request_files("acme", "widgets", 1) == []
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        recorder = Recorder(httpx.Response(422, json={"message": "bad"}))
        async with GitHubPlatform(retry=NO_WAIT, transport=recorder.transport) as gh:
            with pytest.raises(TransientExternalFailure) as exc_info:
                await gh.create_status("acme", "widgets", "abc", "success", "ok", "ctx")
        assert exc_info.value.status_code == 422
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self):
        recorder = Recorder(httpx.ConnectError("refused"))
        async with GitHubPlatform(retry=NO_WAIT, transport=recorder.transport) as gh:
            with pytest.raises(TransientExternalFailure) as exc_info:
                await gh.list_review_request_files("acme", "widgets", 1)
        assert exc_info.value.status_code is None
        assert len(recorder.requests) == 3


class TestEmbeddingGateway:
    @pytest.mark.asyncio
    async def test_embed(self):
        recorder = Recorder(httpx.Response(200, json={"embedding": {"values": [0.1, 0.2, 0.3]}}))
        gateway = GeminiEmbeddingGateway("key", dimensions=3, retry=NO_WAIT, transport=recorder.transport)
        async with gateway:
            assert await gateway.embed("def f(): pass") == [0.1, 0.2, 0.3]

        request = recorder.requests[0]
        assert request.url.path == "/v1beta/models/text-embedding-004:embedContent"
        assert request.url.params["key"] == "key"
        body = json.loads(request.content)
        assert body["model"] == "models/text-embedding-004"
        assert body["content"]["parts"][0]["text"] == "def f(): pass"

    @pytest.mark.asyncio
    async def test_wrong_dimensions(self):
        recorder = Recorder(httpx.Response(200, json={"embedding": {"values": [0.1]}}))
        async with GeminiEmbeddingGateway("key", dimensions=3, retry=NO_WAIT, transport=recorder.transport) as g:
            with pytest.raises(TransientExternalFailure, match="embedding"):
                await g.embed("x")

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        recorder = Recorder(httpx.Response(200, json={"unexpected": True}))
        async with GeminiEmbeddingGateway("key", dimensions=3, retry=NO_WAIT, transport=recorder.transport) as g:
            with pytest.raises(TransientExternalFailure):
                await g.embed("x")


class TestParserService:
    @pytest.mark.asyncio
    async def test_parse(self):
        body = {
            "functions": [{"name": "handler", "code": "def handler(): ...", "startLine": 3, "endLine": 9}],
            "imports": [{"module": "os"}, "./util", {"module": ""}],
        }
        recorder = Recorder(httpx.Response(200, json=body))
        async with SidecarParserService(retry=NO_WAIT, transport=recorder.transport) as parser:
            result = await parser.parse("def handler(): ...", "python", "a.py")

        assert result.functions[0].name == "handler"
        assert (result.functions[0].start_line, result.functions[0].end_line) == (3, 9)
        assert result.imports == ["os", "./util"]
        assert json.loads(recorder.requests[0].content) == {"code": "def handler(): ...", "language": "python"}
        assert recorder.requests[0].url.path == "/parse"

    @pytest.mark.asyncio
    async def test_unsupported_language_skips_request(self):
        recorder = Recorder(httpx.Response(500))
        async with SidecarParserService(retry=NO_WAIT, transport=recorder.transport) as parser:
            assert (await parser.parse("puts 1", "ruby")).is_empty
            assert (await parser.parse("   ", "python")).is_empty
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_oversized_input(self):
        recorder = Recorder(httpx.Response(200, json={}))
        async with SidecarParserService(max_bytes=10, retry=NO_WAIT, transport=recorder.transport) as parser:
            with pytest.raises(ParseError):
                await parser.parse("x = 1\n" * 10, "python", "big.py")
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_rejected_input_is_parse_error(self):
        recorder = Recorder(httpx.Response(400, json={"error": "syntax"}))
        async with SidecarParserService(retry=NO_WAIT, transport=recorder.transport) as parser:
            with pytest.raises(ParseError) as exc_info:
                await parser.parse("def (", "python", "bad.py")
        assert exc_info.value.path == "bad.py"
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_unavailable(self):
        recorder = Recorder(httpx.Response(503))
        async with SidecarParserService(retry=NO_WAIT, transport=recorder.transport) as parser:
            with pytest.raises(TransientExternalFailure):
                await parser.parse("x = 1", "python")
        assert len(recorder.requests) == 3


class TestSlackNotifier:
    @pytest.mark.asyncio
    async def test_direct_message(self):
        recorder = Recorder(
            httpx.Response(200, json={"ok": True, "channel": {"id": "D123"}}),
            httpx.Response(200, json={"ok": True}),
        )
        async with SlackNotifier("xoxb", retry=NO_WAIT, transport=recorder.transport) as slack:
            await slack.send_direct_message("U1", "hello")

        open_call, post_call = recorder.requests
        assert open_call.url.path == "/api/conversations.open"
        assert json.loads(open_call.content) == {"users": "U1"}
        assert post_call.url.path == "/api/chat.postMessage"
        assert json.loads(post_call.content) == {"channel": "D123", "text": "hello"}
        assert post_call.headers["Authorization"] == "Bearer xoxb"

    @pytest.mark.asyncio
    async def test_api_error_not_retried(self):
        recorder = Recorder(httpx.Response(200, json={"ok": False, "error": "user_not_found"}))
        async with SlackNotifier("xoxb", retry=NO_WAIT, transport=recorder.transport) as slack:
            with pytest.raises(TransientExternalFailure, match="slack"):
                await slack.send_direct_message("nobody", "hi")
        assert len(recorder.requests) == 1


class TestExternalServices:
    @pytest.mark.asyncio
    async def test_from_config(self):
        services = ExternalServices.from_config(AppConfig(slack_token="xoxb", embedding_api_key=""))
        try:
            assert services.embedder is None
            assert isinstance(services.parser, SidecarParserService)
            assert isinstance(services.platform, GitHubPlatform)
            assert isinstance(services.notifier, SlackNotifier)
        finally:
            await services.aclose()

    @pytest.mark.asyncio
    async def test_embedder_with_key(self):
        services = ExternalServices.from_config(AppConfig(embedding_api_key="k", parser_url=""))
        try:
            assert isinstance(services.embedder, GeminiEmbeddingGateway)
            assert services.parser is None
            assert services.notifier is None
        finally:
            await services.aclose()
