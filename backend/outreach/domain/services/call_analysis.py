"""
Call Analysis Helpers
Interpret voice-provider post-call payloads: status mapping, reach and
conversion flags, insights, and string coercion of dynamic variables
"""
import json
from typing import Any, Dict, Iterable, Optional

from outreach.domain.models.call import CallStatus, ResolutionStatus


TRUTHY_STRINGS = {"true", "yes", "1"}
FALSY_STRINGS = {"false", "no", "0"}

PATIENT_REACHED_FIELDS = ("patient_reached", "patientReached")

CONVERSION_FIELDS = (
    "appointment_confirmed",
    "appointmentConfirmed",
    "converted",
    "conversion",
    "call_successful",
    "goal_achieved",
    "goal_met",
    "main_kpi_value",
)

# Any of these set means the outreach attempt achieved its purpose
RESOLVED_FIELDS = (
    "appointment_confirmed",
    "medication_confirmed",
    "issue_resolved",
    "agreed_to_schedule",
    "agreed_to_reschedule",
    "transferred",
)

FAILED_PROVIDER_STATUSES = {"failed", "error"}
VOICEMAIL_PROVIDER_STATUSES = {"voicemail"}
NO_ANSWER_PROVIDER_STATUSES = {"no-answer", "no_answer"}
NO_ANSWER_DISCONNECT_REASONS = {"dial_no_answer", "no_answer"}


def is_truthy_flag(value: Any) -> bool:
    """Accept booleans, 1, and 'true'/'yes'/'1' strings (any case)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_STRINGS
    return False


def any_flag(analysis: Optional[Dict[str, Any]], fields: Iterable[str]) -> bool:
    if not analysis:
        return False
    return any(is_truthy_flag(analysis.get(field)) for field in fields)


def ensure_string_value(value: Any) -> str:
    """
    Coerce a variable to the string form the voice provider expects.

    Booleans become TRUE/FALSE, None becomes "", containers become JSON.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return str(value)


def stringify_values(values: Optional[Dict[str, Any]]) -> Dict[str, str]:
    return {str(key): ensure_string_value(value) for key, value in (values or {}).items()}


def _provider_status(call: Dict[str, Any]) -> str:
    status = call.get("call_status") or call.get("status") or ""
    return str(status).lower()


def is_voicemail(call: Dict[str, Any]) -> bool:
    metrics = call.get("metrics") or {}
    call_analysis = call.get("call_analysis") or {}
    return (
        _provider_status(call) in VOICEMAIL_PROVIDER_STATUSES
        or is_truthy_flag(metrics.get("voicemail_detected"))
        or is_truthy_flag(call_analysis.get("in_voicemail"))
    )


def is_no_answer(call: Dict[str, Any]) -> bool:
    metrics = call.get("metrics") or {}
    return (
        _provider_status(call) in NO_ANSWER_PROVIDER_STATUSES
        or is_truthy_flag(metrics.get("no_answer"))
        or str(call.get("disconnection_reason") or "").lower() in NO_ANSWER_DISCONNECT_REASONS
    )


def map_call_status(call: Dict[str, Any]) -> CallStatus:
    """
    Map a provider call payload onto a terminal call status.

    Order: failed, voicemail, no-answer, otherwise completed.
    """
    if _provider_status(call) in FAILED_PROVIDER_STATUSES:
        return CallStatus.FAILED
    if is_voicemail(call):
        return CallStatus.VOICEMAIL
    if is_no_answer(call):
        return CallStatus.NO_ANSWER
    return CallStatus.COMPLETED


def build_analysis(call: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten the provider's analysis into one map.

    Uses call["analysis"] when present, then custom_analysis_data plus the
    standard summary fields from call["call_analysis"].
    """
    analysis: Dict[str, Any] = dict(call.get("analysis") or {})
    call_analysis = call.get("call_analysis") or {}

    analysis.update(call_analysis.get("custom_analysis_data") or {})
    for field in ("call_summary", "user_sentiment", "call_successful", "call_completion_rating", "in_voicemail"):
        if field in call_analysis and field not in analysis:
            analysis[field] = call_analysis[field]
    if "call_summary" in analysis and "summary" not in analysis:
        analysis["summary"] = analysis["call_summary"]

    return analysis


def is_patient_reached(analysis: Optional[Dict[str, Any]]) -> bool:
    return any_flag(analysis, PATIENT_REACHED_FIELDS)


def is_conversion(analysis: Optional[Dict[str, Any]], kpi_field: Optional[str] = None) -> bool:
    """Conversion goal met, checking canonical and legacy field names."""
    fields = CONVERSION_FIELDS if not kpi_field else (kpi_field,) + CONVERSION_FIELDS
    return any_flag(analysis, fields)


def extract_call_insights(analysis: Optional[Dict[str, Any]], call_status: str) -> Dict[str, Any]:
    """Operator-facing summary of a call outcome."""
    analysis = analysis or {}
    follow_up_needed = any_flag(analysis, ("follow_up_needed", "followUpNeeded", "callback_requested"))
    follow_up_reason = analysis.get("follow_up_reason") or analysis.get("followUpReason")

    return {
        "sentiment": analysis.get("user_sentiment") or analysis.get("sentiment"),
        "follow_up_needed": follow_up_needed,
        "follow_up_reason": follow_up_reason if follow_up_needed else None,
        "patient_reached": is_patient_reached(analysis),
        "voicemail_left": call_status == CallStatus.VOICEMAIL.value
            or any_flag(analysis, ("voicemail_left", "left_voicemail")),
    }


def is_false_flag(value: Any) -> bool:
    """Explicit no: False, 0, or 'false'/'no'/'0'. Missing values are not false."""
    if isinstance(value, bool):
        return not value
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, str):
        return value.strip().lower() in FALSY_STRINGS
    return False


def derive_resolution_status(analysis: Optional[Dict[str, Any]]) -> str:
    """
    Resolution of an outbound attempt from its post-call analysis.

    Resolved when any goal flag is set, or when the patient explicitly
    declined a callback. Otherwise the attempt stays open.
    """
    if not analysis:
        return ResolutionStatus.OPEN.value
    if any_flag(analysis, RESOLVED_FIELDS) or is_false_flag(analysis.get("callback_requested")):
        return ResolutionStatus.RESOLVED.value
    return ResolutionStatus.OPEN.value
