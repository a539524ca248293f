"""Command line entry point for the booking provider."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

if __package__ is None or __package__ == "":  # pragma: no cover - runtime safety for script execution
    sys.path.append(str(Path(__file__).resolve().parent.parent))

from checkers.faults import Severity, has_severity
from connector.fhir import FhirParseError, appointment_from_fhir, make_bundle, slot_to_fhir
from connector.resources import Appointment
from datastore.slot_store import SlotStore
from orchestrator.booking import DEFAULT_REJECT_SEVERITY, BookingWorkflow, build_default_validator

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_INPUT = 2

logger = logging.getLogger(__name__)


def _load_appointment(path: Path) -> Appointment:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise FhirParseError(f"{path} is not valid JSON: {exc.msg}") from exc
    return appointment_from_fhir(payload)


def _emit(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2))


def run_validate(args: argparse.Namespace) -> int:
    appointment = _load_appointment(args.file)
    validator = build_default_validator(remote_enabled=not args.offline)
    faults = validator.validate(appointment)
    for fault in faults:
        print(fault)
    if has_severity(faults, args.reject_at):
        return EXIT_FAILED
    return EXIT_OK


def run_book(args: argparse.Namespace) -> int:
    appointment = _load_appointment(args.file)
    workflow = BookingWorkflow(
        SlotStore(),
        build_default_validator(remote_enabled=not args.offline),
        reject_at=args.reject_at,
    )
    result = workflow.book(appointment)
    _emit(
        {
            "status": result.status.value,
            "appointment_id": result.appointment_id,
            "faults": [str(fault) for fault in result.faults],
        }
    )
    return EXIT_OK if result.booked else EXIT_FAILED


def run_slots(args: argparse.Namespace) -> int:
    store = SlotStore()
    slots = store.list_slots_by_healthcare_service(args.service_id, args.status)
    _emit(make_bundle([slot_to_fhir(slot) for slot in slots]))
    return EXIT_OK


def run_serve(args: argparse.Namespace) -> int:
    from ui.dashboard import create_app

    app = create_app()
    app.run(host=args.host, port=args.port, debug=False)
    return EXIT_OK


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Appointment booking provider")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    commands = parser.add_subparsers(dest="command", required=True)

    for name, handler, help_text in (
        ("validate", run_validate, "Check an Appointment JSON file and list its faults"),
        ("book", run_book, "Validate and book an Appointment JSON file into a fresh store"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("file", type=Path, help="FHIR JSON Appointment")
        command.add_argument(
            "--offline",
            action="store_true",
            help="Skip the remote profile validation service",
        )
        command.add_argument(
            "--reject-at",
            type=Severity.parse,
            default=DEFAULT_REJECT_SEVERITY,
            help="Lowest severity that blocks a booking (default: %(default)s)",
        )
        command.set_defaults(handler=handler)

    slots = commands.add_parser("slots", help="List the slots of a healthcare service")
    slots.add_argument("service_id", help="HealthcareService id, e.g. 918999198999")
    slots.add_argument("--status", choices=("free", "busy"), default=None)
    slots.set_defaults(handler=run_slots)

    serve = commands.add_parser("serve", help="Run the HTTP API and dashboard")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=int(os.environ.get("PORT", "5000")))
    serve.set_defaults(handler=run_serve)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO), format=LOG_FORMAT)

    try:
        return args.handler(args)
    except (OSError, FhirParseError) as exc:
        logger.error("Unable to read input: %s", exc)
        return EXIT_BAD_INPUT


if __name__ == "__main__":
    sys.exit(main())
