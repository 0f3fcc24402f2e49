"""Tests for the network pipeline and the interception contract."""

import asyncio
import base64

import pytest

from conftest import attach, flush
from pagewire.core.errors import (
    AlreadyResolvedError,
    InterceptionNotEnabledError,
    PagewireError,
    RequestFailedError,
    TargetClosedError,
)
from pagewire.core.events import NetworkEvent
from pagewire.network.pipeline import NetworkPipeline
from pagewire.types import ContinueOverrides, Credentials, FulfillResponse, RequestState, ResolutionAction


def will_be_sent(transport, request_id, url, redirect_response=None, resource_type="Script"):
    params = {
        "requestId": request_id,
        "loaderId": "L1",
        "frameId": "F1",
        "type": resource_type,
        "request": {"url": url, "method": "GET", "headers": {"Accept": "*/*"}},
    }
    if redirect_response is not None:
        params["redirectResponse"] = redirect_response
    transport.event("Network.requestWillBeSent", params, session_id="S1")


def request_paused(transport, interception_id, network_id, url):
    transport.event(
        "Fetch.requestPaused",
        {
            "requestId": interception_id,
            "networkId": network_id,
            "frameId": "F1",
            "resourceType": "Script",
            "request": {"url": url, "method": "GET", "headers": {}},
        },
        session_id="S1",
    )


@pytest.fixture
def session(transport, connection):
    attach(transport, "S1", "T1")
    transport.auto_respond = True
    return connection.session("S1")


@pytest.fixture
def pipeline(session):
    return NetworkPipeline(session)


@pytest.fixture
def seen(pipeline):
    events = []
    for name in (
        NetworkEvent.REQUEST,
        NetworkEvent.RESPONSE,
        NetworkEvent.REQUEST_FINISHED,
        NetworkEvent.REQUEST_FAILED,
    ):
        pipeline.on(name, lambda r, name=name: events.append((name, r.request_id)))
    return events


async def paused_request(transport, pipeline, request_id="R1", interception_id="I1", url="https://example.com/app.js"):
    will_be_sent(transport, request_id, url)
    request_paused(transport, interception_id, request_id, url)
    await flush()
    request = pipeline.request(request_id)
    assert request is not None and request.is_paused
    return request


@pytest.mark.asyncio
async def test_enable_interception(transport, pipeline):
    """Test interception enables the Fetch domain with auth handling."""
    await pipeline.set_request_interception(True)

    fetch = transport.last("Fetch.enable")
    assert fetch["params"] == {"handleAuthRequests": True, "patterns": [{"urlPattern": "*"}]}
    assert transport.last("Network.setCacheDisabled")["params"] == {"cacheDisabled": True}
    assert pipeline.intercepting

    await pipeline.set_request_interception(False)
    assert "Fetch.disable" in transport.methods()


@pytest.mark.asyncio
async def test_pairing_will_be_sent_first(transport, pipeline, seen):
    """Test a request is announced once both events are known."""
    await pipeline.set_request_interception(True)

    will_be_sent(transport, "R1", "https://example.com/app.js")
    await flush()
    assert seen == []

    request_paused(transport, "I1", "R1", "https://example.com/app.js")
    await flush()

    assert seen == [(NetworkEvent.REQUEST, "R1")]
    request = pipeline.request("R1")
    assert request.interception_id == "I1"
    assert request.state is RequestState.INTERCEPTION_PAUSED
    assert request.headers == {"accept": "*/*"}
    assert request.resource_type == "script"


@pytest.mark.asyncio
async def test_pairing_paused_first(transport, pipeline, seen):
    """Test the pairing also holds when Fetch.requestPaused arrives first."""
    await pipeline.set_request_interception(True)

    request_paused(transport, "I1", "R1", "https://example.com/app.js")
    await flush()
    assert seen == []

    will_be_sent(transport, "R1", "https://example.com/app.js")
    await flush()

    assert seen == [(NetworkEvent.REQUEST, "R1")]
    assert pipeline.request("R1").is_paused
    assert pipeline.paused_requests() == [pipeline.request("R1")]


@pytest.mark.asyncio
async def test_second_resolution_is_rejected(transport, pipeline):
    """Test a paused request accepts exactly one decision."""
    await pipeline.set_request_interception(True)
    request = await paused_request(transport, pipeline)

    first = asyncio.ensure_future(request.continue_(ContinueOverrides(headers={"X-Test": "1"})))
    await flush(1)
    with pytest.raises(AlreadyResolvedError):
        await request.fulfill(FulfillResponse(body="late"))
    with pytest.raises(AlreadyResolvedError):
        await request.abort()
    await first

    assert request.resolution is ResolutionAction.CONTINUE
    assert len(transport.commands("Fetch.continueRequest")) == 1
    assert transport.commands("Fetch.fulfillRequest") == []
    assert transport.commands("Fetch.failRequest") == []
    params = transport.last("Fetch.continueRequest")["params"]
    assert params == {"requestId": "I1", "headers": [{"name": "X-Test", "value": "1"}]}
    assert request.state is RequestState.SENT


@pytest.mark.asyncio
async def test_paused_requests_are_independent(transport, pipeline):
    """Test resolving one paused request leaves others paused."""
    await pipeline.set_request_interception(True)
    first = await paused_request(transport, pipeline, "R1", "I1", "https://example.com/a.js")
    second = await paused_request(transport, pipeline, "R2", "I2", "https://example.com/b.js")

    await second.continue_()

    assert first.is_paused
    assert not second.is_paused
    assert pipeline.paused_requests() == [first]

    await first.continue_()
    assert pipeline.paused_requests() == []


@pytest.mark.asyncio
async def test_fulfill_sends_synthetic_response(transport, pipeline, seen):
    """Test fulfill encodes status, headers and body, then finishes the request."""
    await pipeline.set_request_interception(True)
    request = await paused_request(transport, pipeline)

    await request.fulfill(FulfillResponse(status=404, content_type="text/plain", body="nope"))
    await flush()

    params = transport.last("Fetch.fulfillRequest")["params"]
    assert params["requestId"] == "I1"
    assert params["responseCode"] == 404
    assert params["responsePhrase"] == "Not Found"
    assert params["responseHeaders"] == [
        {"name": "content-type", "value": "text/plain"},
        {"name": "content-length", "value": "4"},
    ]
    assert base64.b64decode(params["body"]) == b"nope"
    assert request.state is RequestState.RESOLVED
    assert request.response.status == 404
    assert (NetworkEvent.REQUEST_FINISHED, "R1") in seen
    assert pipeline.request("R1") is None
    assert await request.wait_for_completion() is request


@pytest.mark.asyncio
async def test_abort_fails_request(transport, pipeline, seen):
    """Test abort maps the error code and fails the request."""
    await pipeline.set_request_interception(True)
    request = await paused_request(transport, pipeline)

    await request.abort("blockedbyclient")
    await flush()

    assert transport.last("Fetch.failRequest")["params"] == {"requestId": "I1", "errorReason": "BlockedByClient"}
    assert request.state is RequestState.FAILED
    assert request.failure_text == "net::ERR_BLOCKEDBYCLIENT"
    assert (NetworkEvent.REQUEST_FAILED, "R1") in seen
    with pytest.raises(RequestFailedError):
        await request.wait_for_completion()


@pytest.mark.asyncio
async def test_abort_with_unknown_code_keeps_request_paused(transport, pipeline):
    await pipeline.set_request_interception(True)
    request = await paused_request(transport, pipeline)

    with pytest.raises(PagewireError):
        await request.abort("teapot")

    assert request.is_paused
    assert request.resolution is ResolutionAction.NONE
    assert transport.commands("Fetch.failRequest") == []


@pytest.mark.asyncio
async def test_resolving_unintercepted_request_fails(transport, pipeline):
    """Test requests seen without interception cannot be resolved."""
    will_be_sent(transport, "R1", "https://example.com/")
    await flush()
    request = pipeline.request("R1")

    assert not request.is_intercepted
    with pytest.raises(InterceptionNotEnabledError):
        await request.continue_()


@pytest.mark.asyncio
async def test_data_urls_are_never_paused(transport, pipeline, seen):
    await pipeline.set_request_interception(True)

    will_be_sent(transport, "R1", "data:text/plain,hello")
    await flush()

    assert seen == [(NetworkEvent.REQUEST, "R1")]
    assert not pipeline.request("R1").is_paused


@pytest.mark.asyncio
async def test_session_detach_fails_paused_requests(transport, session, pipeline, seen):
    """Test a detached session force-fails its requests."""
    await pipeline.set_request_interception(True)
    request = await paused_request(transport, pipeline)
    waiter = asyncio.ensure_future(request.wait_for_completion())
    await flush()

    session.mark_detached()
    await flush()

    assert request.state is RequestState.FAILED
    assert (NetworkEvent.REQUEST_FAILED, "R1") in seen
    assert pipeline.requests() == []
    with pytest.raises(TargetClosedError):
        await waiter
    with pytest.raises(TargetClosedError):
        await request.continue_()


@pytest.mark.asyncio
async def test_response_lifecycle_without_interception(transport, pipeline, seen):
    """Test request, response and finished are announced in order."""
    will_be_sent(transport, "R1", "https://example.com/")
    transport.event(
        "Network.responseReceived",
        {"requestId": "R1", "type": "Document", "response": {"url": "https://example.com/", "status": 200, "headers": {"Content-Type": "text/html"}}},
        session_id="S1",
    )
    transport.event("Network.loadingFinished", {"requestId": "R1", "encodedDataLength": 10}, session_id="S1")
    await flush()

    assert seen == [
        (NetworkEvent.REQUEST, "R1"),
        (NetworkEvent.RESPONSE, "R1"),
        (NetworkEvent.REQUEST_FINISHED, "R1"),
    ]
    assert pipeline.requests() == []


@pytest.mark.asyncio
async def test_loading_failed(transport, pipeline):
    will_be_sent(transport, "R1", "https://example.com/")
    request = pipeline.request("R1")
    waiter = asyncio.ensure_future(request.wait_for_completion(timeout=1))
    await flush()

    transport.event("Network.loadingFailed", {"requestId": "R1", "errorText": "net::ERR_CONNECTION_RESET"}, session_id="S1")

    with pytest.raises(RequestFailedError) as exc_info:
        await waiter
    assert exc_info.value.error_text == "net::ERR_CONNECTION_RESET"


@pytest.mark.asyncio
async def test_redirect_builds_chain(transport, pipeline):
    """Test a redirect completes the previous hop and chains it."""
    will_be_sent(transport, "R1", "http://example.com/")
    first = pipeline.request("R1")
    will_be_sent(
        transport,
        "R1",
        "https://example.com/",
        redirect_response={"url": "http://example.com/", "status": 301, "headers": {"Location": "https://example.com/"}},
    )

    second = pipeline.request("R1")
    assert second is not first
    assert second.redirect_chain == [first]
    assert first.state is RequestState.RESOLVED
    assert first.response.status == 301


@pytest.mark.asyncio
async def test_authentication_challenge(transport, pipeline):
    """Test credentials are offered once, then the challenge is cancelled."""
    await pipeline.authenticate(Credentials(username="user", password="secret"))
    assert transport.last("Fetch.enable")["params"]["handleAuthRequests"] is True

    transport.event("Fetch.authRequired", {"requestId": "I7", "authChallenge": {"source": "Server"}}, session_id="S1")
    await flush()
    transport.event("Fetch.authRequired", {"requestId": "I7", "authChallenge": {"source": "Server"}}, session_id="S1")
    await flush()

    first, second = transport.commands("Fetch.continueWithAuth")
    assert first["params"]["authChallengeResponse"] == {"response": "ProvideCredentials", "username": "user", "password": "secret"}
    assert second["params"]["authChallengeResponse"] == {"response": "CancelAuth"}


@pytest.mark.asyncio
async def test_paused_without_interception_is_continued(transport, pipeline):
    """Test requests paused only for auth handling pass straight through."""
    await pipeline.authenticate(Credentials(username="user", password="secret"))

    request_paused(transport, "I9", "R9", "https://example.com/")
    await flush()

    assert transport.last("Fetch.continueRequest")["params"] == {"requestId": "I9"}
    assert pipeline.request("R9") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("paused_first", [True, False])
async def test_intercepted_redirect_pairs_in_either_order(transport, pipeline, paused_first):
    """Test a redirect hop is paired with its own pause whichever event comes first."""
    await pipeline.set_request_interception(True)
    first = await paused_request(transport, pipeline, "R1", "I1", "http://example.com/")
    await first.continue_()

    redirect = {"url": "http://example.com/", "status": 301, "headers": {"Location": "https://example.com/"}}
    if paused_first:
        request_paused(transport, "I2", "R1", "https://example.com/")
        will_be_sent(transport, "R1", "https://example.com/", redirect_response=redirect)
    else:
        will_be_sent(transport, "R1", "https://example.com/", redirect_response=redirect)
        request_paused(transport, "I2", "R1", "https://example.com/")
    await flush()

    second = pipeline.request("R1")
    assert second is not first
    assert second.url == "https://example.com/"
    assert second.interception_id == "I2"
    assert second.is_paused
    assert second.redirect_chain == [first]
    assert first.interception_id == "I1"
    assert first.state is RequestState.RESOLVED
    assert first.response.status == 301

    await second.continue_()
    assert transport.last("Fetch.continueRequest")["params"] == {"requestId": "I2"}


@pytest.mark.asyncio
async def test_unpaired_events_are_dropped_when_loading_ends(transport, pipeline, seen):
    """Test a half-paired request that fails or finishes is not paired later."""
    await pipeline.set_request_interception(True)

    will_be_sent(transport, "R5", "https://example.com/a.js")
    transport.event("Network.loadingFailed", {"requestId": "R5", "errorText": "net::ERR_ABORTED"}, session_id="S1")
    request_paused(transport, "I6", "R6", "https://example.com/b.js")
    transport.event("Network.loadingFinished", {"requestId": "R6"}, session_id="S1")

    request_paused(transport, "I5", "R5", "https://example.com/a.js")
    will_be_sent(transport, "R6", "https://example.com/b.js")
    await flush()

    assert seen == []
    assert pipeline.request("R5") is None
    assert pipeline.request("R6") is None
