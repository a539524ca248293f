"""HTTP interface and status dashboard for the booking provider.

This module exposes a small Flask application with FHIR-style JSON routes
for slot search, appointment booking and catalog reads, plus an HTML page
summarising slot usage. All state lives in the :class:`SlotStore` handed to
:func:`create_app`.
"""
from __future__ import annotations

import os
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import Flask, Response, jsonify, render_template_string, request

from checkers.faults import Fault
from connector.fhir import (
    FhirParseError,
    appointment_from_fhir,
    appointment_to_fhir,
    make_bundle,
    make_operation_outcome,
    resource_to_fhir,
    slot_to_fhir,
)
from connector.resources import SlotStatus
from datastore.search import search_slots
from datastore.slot_store import SlotStore
from orchestrator.booking import BookingStatus, BookingWorkflow, build_default_validator

SERVICE_PARAM = "schedule.actor:healthcareservice"
FHIR_JSON = "application/fhir+json"
MAX_REPORTED_FAULTS = 10

dashboard_template = """
<!doctype html>
<html lang=\"en\">
  <head>
    <meta charset=\"utf-8\">
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\">
    <meta http-equiv=\"refresh\" content=\"60\">
    <title>Booking Provider</title>
    <link
      href=\"https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/css/bootstrap.min.css\"
      rel=\"stylesheet\"
      integrity=\"sha384-QWTKZyjpPEjISv5WaRU9OFeRpok6YctnYmDr5pNlyT2bRjXh0JMhjY6hW+ALEwIH\"
      crossorigin=\"anonymous\"
    >
  </head>
  <body class=\"bg-light\">
    <nav class=\"navbar navbar-dark bg-primary\">
      <div class=\"container-fluid\">
        <span class=\"navbar-brand\">Booking Provider</span>
        <form method=\"post\" action=\"/reset\">
          <button type=\"submit\" class=\"btn btn-outline-light btn-sm\">Reset data</button>
        </form>
      </div>
    </nav>
    <main class=\"container my-4\">
      <section class=\"row g-4 mb-4\">
        <div class=\"col-md-3\"><div class=\"card shadow-sm\"><div class=\"card-body\">
          <h6 class=\"text-muted\">Slots</h6><p class=\"display-6 mb-0\">{{ counts.slots_total }}</p>
        </div></div></div>
        <div class=\"col-md-3\"><div class=\"card shadow-sm\"><div class=\"card-body\">
          <h6 class=\"text-muted\">Free</h6><p class=\"display-6 mb-0 text-success\">{{ counts.slots_free }}</p>
        </div></div></div>
        <div class=\"col-md-3\"><div class=\"card shadow-sm\"><div class=\"card-body\">
          <h6 class=\"text-muted\">Busy</h6><p class=\"display-6 mb-0 text-danger\">{{ counts.slots_busy }}</p>
        </div></div></div>
        <div class=\"col-md-3\"><div class=\"card shadow-sm\"><div class=\"card-body\">
          <h6 class=\"text-muted\">Appointments</h6><p class=\"display-6 mb-0\">{{ counts.appointments }}</p>
        </div></div></div>
      </section>
      <section class=\"card shadow-sm\">
        <div class=\"card-header bg-secondary text-white\">Slots</div>
        <div class=\"card-body\">
          {% if slots %}
            <div class=\"table-responsive\">
              <table class=\"table table-sm table-striped\">
                <thead>
                  <tr>
                    <th scope=\"col\">Slot</th>
                    <th scope=\"col\">Schedule</th>
                    <th scope=\"col\">Start</th>
                    <th scope=\"col\">End</th>
                    <th scope=\"col\">Status</th>
                  </tr>
                </thead>
                <tbody>
                  {% for slot in slots %}
                    <tr>
                      <td>{{ slot.id }}</td>
                      <td>{{ slot.schedule_ref }}</td>
                      <td>{{ slot.start.strftime('%Y-%m-%d %H:%M') }}</td>
                      <td>{{ slot.end.strftime('%H:%M') }}</td>
                      <td>{{ slot.status.value }}</td>
                    </tr>
                  {% endfor %}
                </tbody>
              </table>
            </div>
          {% else %}
            <p class=\"text-muted mb-0\">No slots loaded.</p>
          {% endif %}
        </div>
      </section>
    </main>
  </body>
</html>
"""


def _fhir_response(payload: Dict[str, Any], status: int = 200) -> Response:
    response = jsonify(payload)
    response.status_code = status
    response.mimetype = FHIR_JSON
    return response


def _outcome(messages: List[Any], status: int, *, code: str = "processing") -> Response:
    return _fhir_response(make_operation_outcome(messages, code=code), status)


def _most_severe(faults: List[Fault]) -> List[Fault]:
    return sorted(faults, key=lambda fault: fault.severity, reverse=True)[:MAX_REPORTED_FAULTS]


def _parse_instant(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is not None:
        # Slot times are naive local times.
        moment = moment.astimezone().replace(tzinfo=None)
    return moment


def parse_start_filters(values: List[str]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Turn repeated ``start=ge...``/``start=le...`` parameters into bounds."""

    lower: Optional[datetime] = None
    upper: Optional[datetime] = None
    for raw in values:
        prefix, value = raw[:2], raw[2:]
        if prefix not in ("ge", "le"):
            raise ValueError(f"Unsupported start filter: {raw!r}")
        moment = _parse_instant(value)
        if prefix == "ge":
            lower = moment if lower is None else max(lower, moment)
        else:
            upper = moment if upper is None else min(upper, moment)
    return lower, upper


def slot_counts(store: SlotStore) -> Dict[str, int]:
    slots = store.list_slots()
    free = sum(1 for slot in slots if slot.status is SlotStatus.FREE)
    return {
        "slots_total": len(slots),
        "slots_free": free,
        "slots_busy": len(slots) - free,
        "appointments": store.appointment_count(),
    }


def create_app(store: Optional[SlotStore] = None, workflow: Optional[BookingWorkflow] = None) -> Flask:
    """Build the Flask application around a store and booking workflow."""

    if store is None:
        store = workflow.store if workflow is not None else SlotStore()
    if workflow is None:
        workflow = BookingWorkflow(store, build_default_validator())

    app = Flask(__name__)

    readers: Dict[str, Callable[[str], Any]] = {
        "Schedule": store.get_schedule,
        "HealthcareService": store.get_healthcare_service,
        "Practitioner": store.get_practitioner,
        "PractitionerRole": store.get_practitioner_role,
        "Organization": store.get_organization,
        "Location": store.get_location,
    }

    @app.route("/", methods=["GET"])
    def dashboard() -> str:
        return render_template_string(dashboard_template, counts=slot_counts(store), slots=store.list_slots())

    @app.route("/status", methods=["GET"])
    def status() -> Response:
        return jsonify(slot_counts(store))

    @app.route("/Slot", methods=["GET"])
    def search() -> Response:
        service_id = request.args.get(SERVICE_PARAM)
        if not service_id:
            return _outcome([f"Search parameter {SERVICE_PARAM} is required"], 400, code="required")
        try:
            lower, upper = parse_start_filters(request.args.getlist("start"))
        except ValueError as exc:
            return _outcome([str(exc)], 400, code="invalid")
        try:
            result = search_slots(
                store,
                service_id,
                status=request.args.get("status"),
                start=lower,
                end=upper,
                includes=request.args.getlist("_include"),
            )
        except ValueError as exc:
            return _outcome([str(exc)], 422, code="invalid")
        bundle = make_bundle(
            [slot_to_fhir(slot) for slot in result.slots],
            included=[resource_to_fhir(item) for item in result.included],
            base_url=request.url_root,
        )
        return _fhir_response(bundle)

    @app.route("/Slot/<slot_id>", methods=["GET"])
    def read_slot(slot_id: str) -> Response:
        slot = store.find_slot(slot_id)
        if slot is None:
            return _outcome([f"Slot/{slot_id} not found"], 404, code="not-found")
        return _fhir_response(slot_to_fhir(slot))

    @app.route("/Appointment", methods=["POST"])
    def create_appointment() -> Response:
        payload = request.get_json(silent=True)
        if payload is None:
            return _outcome(["Request body must be a FHIR JSON Appointment"], 400, code="structure")
        try:
            appointment = appointment_from_fhir(payload)
        except FhirParseError as exc:
            return _outcome([str(exc)], 400, code="structure")

        result = workflow.book(appointment)
        if result.status is BookingStatus.BOOKED:
            stored = store.get_appointment(result.appointment_id)
            response = _fhir_response(appointment_to_fhir(stored), 201)
            response.headers["Location"] = f"{request.url_root.rstrip('/')}/Appointment/{result.appointment_id}"
            return response
        if result.status is BookingStatus.CONFLICT:
            return _outcome(["Slot is no longer free"] + _most_severe(result.faults), 409, code="conflict")
        messages: List[Any] = []
        if result.status is BookingStatus.NOT_FOUND:
            messages.append("Referenced Slot was not found")
        messages.extend(_most_severe(result.faults))
        return _outcome(messages[:MAX_REPORTED_FAULTS], 422, code="business-rule")

    @app.route("/Appointment/<appointment_id>", methods=["GET"])
    def read_appointment(appointment_id: str) -> Response:
        appointment = store.get_appointment(appointment_id)
        if appointment is None:
            return _outcome([f"Appointment/{appointment_id} not found"], 404, code="not-found")
        return _fhir_response(appointment_to_fhir(appointment))

    @app.route("/Appointment", methods=["GET"])
    def list_appointments() -> Response:
        appointments = [appointment_to_fhir(item) for item in store.list_appointments()]
        return _fhir_response(make_bundle(appointments, base_url=request.url_root))

    @app.route("/<resource_type>/<resource_id>", methods=["GET"])
    def read_resource(resource_type: str, resource_id: str) -> Response:
        reader = readers.get(resource_type)
        resource = reader(resource_id) if reader is not None else None
        if resource is None:
            return _outcome([f"{resource_type}/{resource_id} not found"], 404, code="not-found")
        return _fhir_response(resource_to_fhir(resource))

    @app.route("/reset", methods=["POST"])
    def reset() -> Response:
        store.reset()
        return _fhir_response(make_operation_outcome(["Store reset"], severity="information", code="informational"))

    return app


if __name__ == "__main__":
    create_app().run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "5000")),
        debug=False,
    )
