import json
import os
import smtplib
import subprocess
import sys
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from mail_relay import content
from mail_relay.audit import SubmissionLog, configure_logging
from mail_relay.config import RelaySettings, load_settings
from mail_relay.errors import MailSendError
from mail_relay.forms import (
    IncomingFile,
    RelayAttachment,
    attachment_name,
    collect_attachments,
    missing_fields,
    parse_expenses,
    sanitize_input,
)
from mail_relay.mailer import build_message, send_message

SETTINGS = RelaySettings(admin_email="tresorier@example.org", from_email="formulaire@example.org")


def upload(field, filename="doc.pdf", content=b"%PDF data", content_type="application/pdf"):
    return IncomingFile(field, filename, content_type, content)


def test_sanitize_input():
    assert sanitize_input("  <b>Jean</b>\x00 ") == "Jean"
    assert sanitize_input("ligne 1\nligne 2") == "ligne 1\nligne 2"
    assert sanitize_input(None) == ""


def test_missing_fields():
    fields = {"firstName": "Jean", "lastName": "", "role": "x"}
    assert missing_fields(fields) == ["lastName", "place", "date", "subject", "motivation", "paymentMethod"]


@pytest.mark.parametrize("raw", [None, "", "{not json", '{"nature": "x"}', "42"])
def test_malformed_expenses_become_empty(raw):
    assert parse_expenses(raw) == []


def test_expenses_are_sanitized():
    raw = json.dumps([{"nature": "<i>Repas</i>", "amount": "12.5", "attachments": ["a/b/ticket.pdf"]}, "junk"])
    assert parse_expenses(raw) == [{"nature": "Repas", "amount": "12.5", "attachments": ["ticket.pdf"]}]


@pytest.mark.parametrize(
    "field, filename, expected",
    [
        ("summary_pdf", "whatever.pdf", "fiche.pdf"),
        ("expense_0_1", "ticket.pdf", "justificatif_depense_1_ticket.pdf"),
        ("banking_0_0", "rib.pdf", "banking_rib.pdf"),
        ("signatureFile", "sig.png", "signature_sig.png"),
        ("mystery", "x.pdf", None),
    ],
)
def test_attachment_names(field, filename, expected):
    assert attachment_name(upload(field, filename), "fiche.pdf") == expected


def test_collect_orders_and_rejects():
    uploads = [
        upload("expense_1_0", "b.pdf"),
        upload("other_0_0", "c.png", b"png", "image/png"),
        upload("summary_pdf", "x.pdf"),
        upload("transport_0_0", "a.pdf"),
        upload("unknown_key", "z.pdf"),
        upload("expense_0_0", "huge.pdf", b"x" * 11),
        upload("expense_0_1", "tool.exe", b"MZ", "application/x-msdownload"),
    ]

    attachments, rejected = collect_attachments(uploads, "fiche.pdf", 10, SETTINGS.allowed_file_types)

    assert [a.filename for a in attachments] == [
        "fiche.pdf",
        "transport_a.pdf",
        "other_c.png",
        "justificatif_depense_2_b.pdf",
    ]
    assert [(r["field"], r["filename"]) for r in rejected] == [
        ("expense_0_0", "huge.pdf"),
        ("expense_0_1", "tool.exe"),
    ]


def test_missing_content_type_is_guessed():
    attachments, rejected = collect_attachments(
        [upload("other_0_0", "photo.jpg", b"jpeg", "application/octet-stream")],
        "fiche.pdf",
        SETTINGS.max_file_size,
        SETTINGS.allowed_file_types,
    )
    assert rejected == []
    assert attachments[0].mime_type == "image/jpeg"


def test_email_subject():
    fields = {"lastName": "Dupont", "firstName": "Jean", "requestDate": "2024-05-02", "subject": "Stage"}
    assert content.email_subject(fields) == (
        "FORMULAIRE DE REMBOURSEMENT DE FRAIS - DUPONT Jean - 02/05/2024 - Motif : Stage"
    )


def test_grand_total_and_html_escaping():
    fields = {
        "firstName": "Jean",
        "lastName": "Dupont & Fils",
        "totalAmount": "45.50",
        "kilometricReimbursement": "32.100",
        "kilometers": "100",
        "rentalVehicle": "false",
        "motivation": "a\nb",
    }
    expenses = [{"nature": "Carburant", "amount": "45.50", "attachments": []}, {"nature": "", "amount": "3"}]
    total = content.grand_total(fields)
    assert total == Decimal("77.600")

    body = content.html_body(fields, expenses, total, ["fiche.pdf"], "SAM")
    assert "Dupont &amp; Fils" in body
    assert "45,50 €" in body
    assert "77,60 €" in body
    assert "a<br>b" in body
    assert body.count("<tr><td>") == 1


def test_text_body_prefers_client_summary():
    assert content.text_body({"summary": "Résumé"}, [], Decimal("0")) == "Résumé"
    assert "MONTANT TOTAL: 0,00 €" in content.text_body({}, [], Decimal("0"))


def test_build_message():
    attachment = RelayAttachment("fiche.pdf", b"%PDF", "application/pdf", "summary_pdf")
    msg = build_message(SETTINGS, "Sujet", "texte", "<p>html</p>", [attachment])

    assert msg["To"] == "tresorier@example.org"
    assert "formulaire@example.org" in msg["From"]
    parts = list(msg.iter_attachments())
    assert [p.get_filename() for p in parts] == ["fiche.pdf"]
    assert parts[0].get_content() == b"%PDF"
    assert msg.get_body(("html",)).get_content().strip() == "<p>html</p>"


def test_build_message_needs_addresses():
    with pytest.raises(MailSendError):
        build_message(RelaySettings(), "Sujet", "texte", "<p></p>")


def test_send_message_plain_smtp():
    settings = RelaySettings(
        admin_email="a@example.org", from_email="b@example.org", smtp_port=587, smtp_user="u", smtp_password="p"
    )
    msg = build_message(settings, "Sujet", "texte", "<p></p>")
    with patch("mail_relay.mailer.smtplib.SMTP") as mock_smtp:
        server = MagicMock()
        mock_smtp.return_value.__enter__.return_value = server

        send_message(settings, msg)

        server.starttls.assert_called_once()
        server.login.assert_called_once_with("u", "p")
        server.send_message.assert_called_once_with(msg)


def test_send_message_ssl():
    settings = RelaySettings(admin_email="a@example.org", from_email="b@example.org", smtp_port=465)
    msg = build_message(settings, "Sujet", "texte", "<p></p>")
    with patch("mail_relay.mailer.smtplib.SMTP_SSL") as mock_smtp:
        server = MagicMock()
        mock_smtp.return_value.__enter__.return_value = server

        send_message(settings, msg)

        server.login.assert_not_called()
        server.send_message.assert_called_once_with(msg)


def test_send_failure_raises():
    msg = build_message(SETTINGS, "Sujet", "texte", "<p></p>")
    with patch("mail_relay.mailer.smtplib.SMTP", side_effect=ConnectionRefusedError("refused")):
        with pytest.raises(MailSendError):
            send_message(SETTINGS, msg)
    with patch("mail_relay.mailer.smtplib.SMTP") as mock_smtp:
        mock_smtp.return_value.__enter__.return_value.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
        with pytest.raises(MailSendError):
            send_message(SETTINGS, msg)


def test_submission_log_appends_json_lines(tmp_path):
    log = SubmissionLog(tmp_path / "logs" / "submissions.log")
    log.record("Jean Dupont", "Stage", 2, "sent", "10.0.0.1")
    log.record("Jean Dupont", "Stage", 2, "failed")

    lines = [json.loads(line) for line in log.path.read_text(encoding="utf-8").splitlines()]
    assert [line["status"] for line in lines] == ["sent", "failed"]
    assert lines[0]["attachments_count"] == 2
    assert lines[1]["ip"] == "unknown"
    assert set(lines[0]) == {"timestamp", "name", "subject", "attachments_count", "status", "ip"}


def test_configure_logging_writes_both_files(tmp_path):
    logger = configure_logging(RelaySettings(log_dir=tmp_path), logger_name="relay-test")
    configure_logging(RelaySettings(log_dir=tmp_path), logger_name="relay-test")
    assert len(logger.handlers) == 2

    logger.info("hello")
    logger.error("broken")
    for handler in logger.handlers:
        handler.flush()

    assert "hello" in (tmp_path / "form-handler.log").read_text(encoding="utf-8")
    errors = (tmp_path / "errors.log").read_text(encoding="utf-8")
    assert "broken" in errors and "hello" not in errors

    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_load_settings(monkeypatch):
    monkeypatch.setenv("ADMIN_EMAIL", "x@example.org")
    monkeypatch.setenv("MAX_FILE_SIZE_MB", "2")
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example, https://b.example")
    settings = load_settings()
    assert settings.admin_email == "x@example.org"
    assert settings.max_file_size == 2 * 1024 * 1024
    assert settings.allowed_origins == ("https://a.example", "https://b.example")


def test_relay_imports_stay_off_the_form_package():
    code = (
        "import sys, main; "
        "print(sorted(m for m in ('expense_form', 'streamlit', 'reportlab') if m in sys.modules))"
    )
    result = subprocess.run(
        [sys.executable, "-c", code],
        capture_output=True,
        text=True,
        env=dict(os.environ, PYTHONPATH=os.pathsep.join(sys.path)),
        check=True,
    )
    assert result.stdout.strip() == "[]"
