"""JSON API behind the staff dashboard: leads, clinic settings, test tools."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from selaro.classification import analyze_message
from selaro.followup import build_notifications
from selaro.leads import build_manual_lead_row
from selaro.store import StoreError
from selaro.validation import (
    LEAD_STATUSES,
    MAX_TEXT_LENGTH,
    is_non_empty,
    is_valid_phone,
    sanitize_string,
)

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_INSTRUCTIONS_LENGTH = 10000
LEADS_PAGE_SIZE = 20
NOTIFICATION_SCAN_SIZE = 100


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status)


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.get("/api/leads")
async def list_leads(request: Request):
    try:
        leads = await request.app.state.store.list_leads(LEADS_PAGE_SIZE)
    except StoreError as e:
        return _error(500, str(e))
    return {"ok": True, "data": leads}


@router.post("/api/leads/update-status")
async def update_lead_status(request: Request):
    body = await _json_body(request)
    if not is_non_empty(body.get("id")):
        logger.warning("update-status rejected: id missing")
        return _error(400, "Invalid lead status update: id required.")
    status = sanitize_string(body.get("status"))
    if status not in LEAD_STATUSES:
        logger.warning("update-status rejected: status %r", status)
        return _error(400, "Invalid status value.")

    try:
        lead = await request.app.state.store.update_lead(sanitize_string(body["id"]), {"status": status})
    except StoreError as e:
        return _error(500, str(e))
    if not lead:
        return _error(404, "Lead not found")
    return {"ok": True, "lead": lead}


@router.post("/api/leads/update-notes")
async def update_lead_notes(request: Request):
    body = await _json_body(request)
    if not is_non_empty(body.get("id")):
        logger.warning("update-notes rejected: id missing")
        return _error(400, "Invalid input: lead id required.")
    notes = sanitize_string(body.get("notes") or "", MAX_TEXT_LENGTH)

    try:
        lead = await request.app.state.store.update_lead(sanitize_string(body["id"]), {"notes": notes})
    except StoreError as e:
        return _error(500, str(e))
    if not lead:
        return _error(404, "Lead not found")
    return {"ok": True, "lead": lead}


@router.post("/api/leads/create-manual")
async def create_manual_lead(request: Request):
    body = await _json_body(request)
    for field, label in (("name", "Name"), ("phone", "Phone"), ("reason", "Reason")):
        if not is_non_empty(body.get(field)):
            return _error(400, f"{label} is required")

    row = build_manual_lead_row(body)
    try:
        lead = await request.app.state.store.insert_lead(row)
    except StoreError as e:
        logger.error("Manual lead insert failed: %s", e)
        return _error(500, str(e))
    logger.info("Manual lead created: %s (urgency=%s)", lead.get("id"), row["urgency"])
    return {"ok": True, "lead_id": lead.get("id"), "lead": lead}


@router.post("/api/clinic/update")
async def update_clinic(request: Request):
    body = await _json_body(request)
    if not is_non_empty(body.get("name")):
        return _error(400, "Praxisname ist erforderlich.")
    if not is_valid_phone(body.get("phone_number")):
        return _error(400, "Telefonnummer ungültig.")
    instructions = body.get("instructions") or ""
    if not isinstance(instructions, str) or len(instructions.strip()) > MAX_INSTRUCTIONS_LENGTH:
        return _error(400, "Anweisungen sind zu lang.")

    fields = {
        "name": sanitize_string(body["name"]),
        "phone_number": sanitize_string(body["phone_number"]),
        "instructions": instructions.strip(),
    }
    address = body.get("address")
    if isinstance(address, str) and address.strip() not in ("", "-"):
        fields["address"] = address.strip()

    settings = request.app.state.settings
    try:
        clinic = await request.app.state.store.update_clinic(settings.clinic_id, fields)
    except StoreError as e:
        return _error(500, str(e))
    if not clinic:
        return _error(404, "Klinik nicht gefunden")
    logger.info("Clinic %s updated", settings.clinic_id)
    return {"ok": True, "clinic": clinic}


@router.get("/api/notifications")
async def notifications(request: Request):
    try:
        leads = await request.app.state.store.list_leads(NOTIFICATION_SCAN_SIZE)
    except StoreError as e:
        return _error(500, str(e))
    return {"ok": True, "notifications": build_notifications(leads)}


@router.get("/api/test/config")
async def test_config(request: Request):
    settings = request.app.state.settings
    try:
        clinic = await request.app.state.store.get_clinic(settings.clinic_id)
    except StoreError as e:
        return _error(500, str(e))
    if not clinic:
        return _error(404, "Klinik nicht gefunden")
    return {"ok": True, "config": clinic}


@router.post("/api/test/nlu")
async def test_nlu(request: Request):
    body = await _json_body(request)
    message = body.get("message")
    if not is_non_empty(message):
        return _error(400, "Message is required and must be a non-empty string")
    return {"ok": True, **analyze_message(message)}
