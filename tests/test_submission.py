from unittest.mock import MagicMock

import pytest
import requests

from expense_form.config import ClientSettings
from expense_form.errors import (
    RelayNetworkError,
    RelayTimeoutError,
    SubmissionInProgressError,
)
from expense_form.state import new_form_state
from expense_form.submission import (
    CompositionFailed,
    ControllerState,
    HttpReply,
    Invalid,
    NetworkFailure,
    RequestsTransport,
    ServerError,
    Success,
    SubmissionController,
    Timeout,
    backoff_delay,
)

OK = HttpReply(
    200,
    {
        "success": True,
        "status": "success",
        "message": "Demande envoyée avec succès",
        "pdf_filename": "fiche_remboursement_20240502_jean-dupont_deplacement-competition.pdf",
        "total_amount": 77.6,
        "attachments_processed": 1,
    },
)


class FakeTransport:
    def __init__(self, replies=(), probe_error=None):
        self.replies = list(replies)
        self.probe_error = probe_error
        self.posts = []
        self.probes = 0
        self.during_post = None

    def probe(self, url, timeout):
        self.probes += 1
        if self.probe_error:
            raise self.probe_error

    def post(self, url, data, files, timeout):
        self.posts.append((url, data, files, timeout))
        if self.during_post:
            self.during_post()
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def downloads():
    return []


def make_controller(transport, downloads, sleeps=None, **overrides):
    settings = ClientSettings(relay_url="http://relay.test/form-handler", **overrides)
    return SubmissionController(
        settings,
        transport,
        sleep=(sleeps.append if sleeps is not None else lambda s: None),
        on_download=lambda name, doc: downloads.append((name, doc)),
    )


def test_success_downloads_once(example_state, downloads):
    transport = FakeTransport([OK])
    controller = make_controller(transport, downloads)

    outcome = controller.submit(example_state)

    assert isinstance(outcome, Success)
    assert outcome.ok
    assert outcome.attempts == 1
    assert outcome.filename == "fiche_remboursement_20240502_jean-dupont_deplacement-competition.pdf"
    assert downloads == [(outcome.filename, outcome.document)]
    assert outcome.document.startswith(b"%PDF")
    assert controller.state is ControllerState.IDLE
    assert controller.last_errors == []

    url, data, files, timeout = transport.posts[0]
    assert url == "http://relay.test/form-handler"
    assert timeout == 30.0
    assert data["grandTotal"] == "77.600"
    assert files[0][0] == "summary_pdf"


def test_retries_with_exponential_pauses(example_state, downloads):
    transport = FakeTransport(
        [RelayNetworkError("connection refused"), HttpReply(502, {"error": "bad gateway"}), OK]
    )
    sleeps = []
    controller = make_controller(transport, downloads, sleeps)

    outcome = controller.submit(example_state)

    assert isinstance(outcome, Success)
    assert outcome.attempts == 3
    assert sleeps == [1.0, 2.0]
    assert len(downloads) == 1
    first, *others = transport.posts
    assert all(post[1] is first[1] and post[2] is first[2] for post in others)


def test_exhausted_retries_never_download(example_state, downloads):
    transport = FakeTransport([RelayNetworkError("down")] * 3)
    sleeps = []
    controller = make_controller(transport, downloads, sleeps)

    outcome = controller.submit(example_state)

    assert isinstance(outcome, NetworkFailure)
    assert len(transport.posts) == 3
    assert sleeps == [1.0, 2.0]
    assert downloads == []
    assert controller.last_errors[0].field == "Réseau"


def test_invalid_form_makes_no_network_call(downloads):
    transport = FakeTransport()
    controller = make_controller(transport, downloads)

    outcome = controller.submit(new_form_state())

    assert isinstance(outcome, Invalid)
    assert [e.field for e in outcome.errors()][0] == "Lieu"
    assert transport.probes == 0
    assert transport.posts == []
    assert downloads == []


def test_unreachable_relay_stops_before_sending(example_state, downloads):
    transport = FakeTransport(probe_error=RelayNetworkError("no route to host"))
    controller = make_controller(transport, downloads)

    outcome = controller.submit(example_state)

    assert isinstance(outcome, NetworkFailure)
    assert "no route to host" in outcome.message
    assert transport.posts == []


def test_probe_can_be_disabled(example_state, downloads):
    transport = FakeTransport([OK], probe_error=RelayNetworkError("unused"))
    controller = make_controller(transport, downloads, probe_relay=False)

    assert isinstance(controller.submit(example_state), Success)
    assert transport.probes == 0


def test_timeout_outcome(example_state, downloads):
    transport = FakeTransport([RelayTimeoutError("délai de 30 s dépassé")])
    controller = make_controller(transport, downloads, max_attempts=1)

    outcome = controller.submit(example_state)

    assert isinstance(outcome, Timeout)
    assert downloads == []


def test_server_error_carries_status_and_message(example_state, downloads):
    transport = FakeTransport(
        [HttpReply(500, {"success": False, "status": "error", "error": "Erreur lors de l'envoi de l'email"})]
    )
    controller = make_controller(transport, downloads, max_attempts=1)

    outcome = controller.submit(example_state)

    assert outcome == ServerError(500, "Erreur lors de l'envoi de l'email")
    assert "Erreur 500" in outcome.errors()[0].message


def test_reply_reporting_failure_is_not_success(example_state, downloads):
    transport = FakeTransport([HttpReply(200, {"success": False, "error": "refusé"})])
    controller = make_controller(transport, downloads, max_attempts=1)

    outcome = controller.submit(example_state)

    assert isinstance(outcome, ServerError)
    assert outcome.message == "refusé"
    assert downloads == []


def test_unreadable_reply_is_a_server_error(example_state, downloads):
    transport = FakeTransport([HttpReply(200, None, "<html>oops</html>")])
    controller = make_controller(transport, downloads, max_attempts=1)

    assert isinstance(controller.submit(example_state), ServerError)


def test_composition_failure(example_state, downloads, monkeypatch):
    from expense_form.errors import DocumentCompositionError

    def fail(*args, **kwargs):
        raise DocumentCompositionError("Impossible de générer le document : boom")

    monkeypatch.setattr("expense_form.submission.compose", fail)
    transport = FakeTransport()
    outcome = make_controller(transport, downloads).submit(example_state)

    assert isinstance(outcome, CompositionFailed)
    assert transport.posts == []


def test_second_submit_while_busy_is_refused(example_state, downloads):
    transport = FakeTransport([OK])
    controller = make_controller(transport, downloads)
    seen = []

    def reenter():
        seen.append(controller.busy)
        with pytest.raises(SubmissionInProgressError):
            controller.submit(example_state)

    transport.during_post = reenter

    assert isinstance(controller.submit(example_state), Success)
    assert seen == [True]
    assert len(transport.posts) == 1
    assert not controller.busy


def test_backoff_delay():
    assert [backoff_delay(n, 1.0) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]
    assert backoff_delay(2, 0.5) == 1.0


def test_requests_transport_maps_failures():
    session = MagicMock()
    session.post.side_effect = requests.Timeout("slow")
    with pytest.raises(RelayTimeoutError):
        RequestsTransport(session).post("http://relay.test", {}, [], timeout=30)

    session.post.side_effect = requests.ConnectionError("refused")
    with pytest.raises(RelayNetworkError):
        RequestsTransport(session).post("http://relay.test", {}, [], timeout=30)

    session.options.side_effect = requests.ConnectionError("refused")
    with pytest.raises(RelayNetworkError):
        RequestsTransport(session).probe("http://relay.test", timeout=5)


def test_requests_transport_decodes_json():
    response = MagicMock(status_code=200, text='{"success": true}')
    response.json.return_value = {"success": True}
    session = MagicMock()
    session.post.return_value = response

    reply = RequestsTransport(session).post("http://relay.test", {"a": "b"}, [], timeout=30)

    assert reply == HttpReply(200, {"success": True}, '{"success": true}')
    session.post.assert_called_once_with("http://relay.test", data={"a": "b"}, files=[], timeout=30)
