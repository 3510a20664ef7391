from __future__ import annotations

from dataclasses import replace

from flask import Blueprint, jsonify

from app.parkdesk.db import db_session
from app.parkdesk.modules.calculator.engine import (
    CalculatorInputs,
    calculate,
    format_field_value,
    goal_seek,
)
from app.parkdesk.modules.properties.models import Lot
from app.parkdesk.utils import json_error, request_payload

bp = Blueprint("calculator", __name__)

_MAX_ITERATIONS_CAP = 1000


def _inputs_from_request(payload: dict) -> CalculatorInputs:
    """Calculator inputs; a lotId without an explicit price takes the lot's listed price."""
    raw_inputs = payload.get("inputs") or payload
    if not isinstance(raw_inputs, dict):
        raise ValueError("inputs must be an object")
    data = dict(raw_inputs)
    lot_id = payload.get("lotId")
    if lot_id is not None and data.get("price") in (None, ""):
        if isinstance(lot_id, bool) or not isinstance(lot_id, (int, str)):
            raise ValueError("lotId must be an integer")
        try:
            lot_pk = int(lot_id)
        except ValueError:
            raise ValueError("lotId must be an integer") from None
        lot = db_session().get(Lot, lot_pk)
        if lot is not None and lot.price is not None:
            data["price"] = float(lot.price)
    return CalculatorInputs.from_payload(data)


def _field_name(payload: dict, key: str, default: str) -> str:
    value = payload.get(key)
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a field name")
    return value.strip()


def _result_body(inputs: CalculatorInputs) -> dict:
    result = calculate(inputs).to_dict()
    return {
        "result": result,
        "formatted": {k: format_field_value(k, v) for k, v in result.items()},
    }


@bp.post("/calculator")
def calculator_compute():
    try:
        inputs = _inputs_from_request(request_payload())
    except ValueError as e:
        return json_error(str(e), 400)
    return jsonify(_result_body(inputs))


@bp.post("/calculator/goal-seek")
def calculator_goal_seek():
    payload = request_payload()
    try:
        target_field = _field_name(payload, "targetField", "total_monthly")
        changing_field = _field_name(payload, "changingField", "downpayment")
        inputs = _inputs_from_request(payload)
        target_value = float(payload.get("targetValue"))
        max_iterations = min(int(payload.get("maxIterations") or 100), _MAX_ITERATIONS_CAP)
        tolerance = float(payload.get("tolerance") or 0.01)
        outcome = goal_seek(
            inputs,
            target_field=target_field,
            changing_field=changing_field,
            target_value=target_value,
            max_iterations=max_iterations,
            tolerance=tolerance,
        )
    except (TypeError, ValueError) as e:
        return json_error(f"Invalid goal seek request: {e}", 400)

    body = {
        "goalSeek": outcome.to_dict(),
        "foundValueFormatted": format_field_value(changing_field, outcome.found_value),
    }
    # Only a converged value is applied, matching the calculator dialog.
    applied = replace(inputs, **{changing_field: outcome.found_value}) if outcome.success else inputs
    body.update(_result_body(applied))
    return jsonify(body)
