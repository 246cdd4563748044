"""
Relay diagnostics::

    python -m mail_relay check [--no-send]

Prints the active configuration, checks the log directory and sends a test
email to ADMIN_EMAIL.
"""

from __future__ import annotations

import argparse
import datetime as dt
import sys

from dotenv import load_dotenv

from .config import RelaySettings, load_settings
from .errors import MailSendError
from .mailer import build_message, is_valid_email, send_message


def _check_log_dir(settings: RelaySettings) -> bool:
    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        marker = settings.log_dir / ".write-check"
        marker.write_text("ok", encoding="utf-8")
        marker.unlink()
    except OSError as exc:
        print(f"[FAIL] log directory {settings.log_dir}: {exc}")
        return False
    print(f"[ OK ] log directory {settings.log_dir} is writable")
    return True


def check(settings: RelaySettings, send: bool = True) -> int:
    print("Relay configuration")
    print(f"  ADMIN_EMAIL   {settings.admin_email or '-'}")
    print(f"  FROM          {settings.from_name} <{settings.from_email or '-'}>")
    print(f"  SMTP          {settings.smtp_host}:{settings.smtp_port} (user: {settings.smtp_user or '-'})")
    print(f"  max file size {settings.max_file_size // (1024 * 1024)} MB")
    print(f"  origins       {', '.join(settings.allowed_origins)}")

    ok = _check_log_dir(settings)
    for label, value in (("ADMIN_EMAIL", settings.admin_email), ("FROM_EMAIL", settings.from_email)):
        if is_valid_email(value):
            print(f"[ OK ] {label} looks valid")
        else:
            print(f"[FAIL] {label} is missing or invalid")
            ok = False

    if send and ok:
        now = dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        try:
            msg = build_message(
                settings,
                f"Test de configuration {settings.org_name} - {now}",
                "Ceci est un email de test du relais de formulaire.",
                "<p>Ceci est un email de test du relais de formulaire.</p>",
            )
            send_message(settings, msg)
        except MailSendError as exc:
            print(f"[FAIL] test email: {exc}")
            ok = False
        else:
            print(f"[ OK ] test email sent to {settings.admin_email}")

    return 0 if ok else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="python -m mail_relay")
    sub = parser.add_subparsers(dest="command", required=True)
    check_parser = sub.add_parser("check", help="verify configuration and send a test email")
    check_parser.add_argument("--no-send", action="store_true", help="skip the test email")
    args = parser.parse_args(argv)

    load_dotenv(".env.local")
    load_dotenv()
    if args.command == "check":
        return check(load_settings(), send=not args.no_send)
    return 2


if __name__ == "__main__":
    sys.exit(main())
