"""
Contract-for-deed payment calculator with Goal Seek.

All money values are floats in dollars. ``interest_rate`` is an annual
percentage (9.25 means 9.25%); it is converted to an effective monthly rate,
not divided by twelve.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, replace

from pyxirr import pmt

INPUT_FIELDS = (
    "years",
    "interest_rate",
    "price",
    "downpayment",
    "taxes",
    "insurance",
    "lot_rent",
    "security_deposit",
)
DERIVED_FIELDS = (
    "monthly_interest_rate",
    "financed_amount",
    "finance_payment",
    "taxes_insurance",
    "total_monthly",
    "upfront_downpayment",
    "total_one_time",
)

FIELD_LABELS = {
    "years": "Years",
    "interest_rate": "Interest Rate",
    "monthly_interest_rate": "Monthly Interest Rate",
    "price": "Price",
    "downpayment": "Downpayment",
    "financed_amount": "Financed Amount",
    "taxes": "Taxes",
    "insurance": "Insurance",
    "finance_payment": "Finance Payment",
    "lot_rent": "Lot Rent",
    "taxes_insurance": "Taxes Insurance",
    "total_monthly": "Total Monthly",
    "upfront_downpayment": "Upfront Downpayment",
    "security_deposit": "Security Deposit",
    "total_one_time": "Total One Time",
}

MONEY_FIELDS = frozenset(
    {
        "price",
        "downpayment",
        "financed_amount",
        "taxes",
        "insurance",
        "finance_payment",
        "lot_rent",
        "taxes_insurance",
        "total_monthly",
        "upfront_downpayment",
        "security_deposit",
        "total_one_time",
    }
)
PERCENT_FIELDS = frozenset({"interest_rate", "monthly_interest_rate"})

# Below this slope Newton steps are meaningless; fall back to bisection.
_MIN_DERIVATIVE = 1e-10


@dataclass(frozen=True)
class CalculatorInputs:
    price: float = 0.0
    years: float = 12
    interest_rate: float = 9.25
    downpayment: float = 1000.0
    taxes: float = 336.0  # annual
    insurance: float = 1464.0  # annual
    lot_rent: float = 525.0  # monthly
    security_deposit: float = 1000.0

    @classmethod
    def from_payload(cls, payload: dict) -> "CalculatorInputs":
        """Build from a JSON payload; unknown keys are ignored, blanks keep the default."""
        values = {}
        for name in INPUT_FIELDS:
            raw = payload.get(name)
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                continue
            try:
                values[name] = float(raw)
            except (TypeError, ValueError):
                raise ValueError(f"{FIELD_LABELS[name]} must be a number.")
            if not math.isfinite(values[name]):
                raise ValueError(f"{FIELD_LABELS[name]} must be a finite number.")
        inputs = cls(**values)
        if inputs.years <= 0:
            raise ValueError("Years must be greater than zero.")
        if inputs.interest_rate <= -100:
            raise ValueError("Interest Rate must be greater than -100%.")
        return inputs


@dataclass(frozen=True)
class CalculatorResult:
    years: float
    interest_rate: float
    monthly_interest_rate: float
    price: float
    downpayment: float
    financed_amount: float
    taxes: float
    insurance: float
    finance_payment: float
    lot_rent: float
    taxes_insurance: float
    total_monthly: float
    upfront_downpayment: float
    security_deposit: float
    total_one_time: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class GoalSeekResult:
    success: bool
    found_value: float
    iterations: int
    final_error: float
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


def calculate(inputs: CalculatorInputs) -> CalculatorResult:
    if inputs.interest_rate <= -100:
        raise ValueError("Interest Rate must be greater than -100%.")
    monthly_rate = (1 + inputs.interest_rate / 100) ** (1 / 12) - 1
    financed_amount = inputs.price - inputs.downpayment
    # Spreadsheet PMT: fv=0, payments at period end.
    finance_payment = pmt(monthly_rate, inputs.years * 12, financed_amount)
    taxes_insurance = -(inputs.taxes + inputs.insurance) / 12

    # finance_payment and taxes_insurance are outgoing (negative); totals are shown positive.
    total_monthly = abs(finance_payment) + inputs.lot_rent + abs(taxes_insurance)

    return CalculatorResult(
        years=inputs.years,
        interest_rate=inputs.interest_rate,
        monthly_interest_rate=monthly_rate,
        price=inputs.price,
        downpayment=inputs.downpayment,
        financed_amount=financed_amount,
        taxes=inputs.taxes,
        insurance=inputs.insurance,
        finance_payment=finance_payment,
        lot_rent=inputs.lot_rent,
        taxes_insurance=taxes_insurance,
        total_monthly=total_monthly,
        upfront_downpayment=inputs.downpayment,
        security_deposit=inputs.security_deposit,
        total_one_time=inputs.downpayment + inputs.security_deposit,
    )


def _evaluate(inputs: CalculatorInputs, changing_field: str, value: float, target_field: str) -> float:
    try:
        result = calculate(replace(inputs, **{changing_field: value}))
    except (ZeroDivisionError, OverflowError, ValueError):
        return math.nan
    return float(getattr(result, target_field))


def goal_seek(
    inputs: CalculatorInputs,
    *,
    target_field: str,
    changing_field: str,
    target_value: float,
    max_iterations: int = 100,
    tolerance: float = 0.01,
) -> GoalSeekResult:
    """
    Find the value of ``changing_field`` that makes ``target_field`` hit ``target_value``.

    Newton-Raphson with a forward-difference derivative runs first. It gives up when the
    slope flattens out or a step leaves [1%, 100x] of the starting value; bisection over
    that same bracket then uses the remaining iterations. A zero starting value has no
    such bracket, so [0, 1] is doubled until the target lies between its ends.
    """
    if changing_field not in INPUT_FIELDS:
        raise ValueError(f"{changing_field!r} is not an input field.")
    if target_field not in DERIVED_FIELDS:
        raise ValueError(f"{target_field!r} is not a calculated field.")
    if max_iterations <= 0:
        raise ValueError("max_iterations must be positive.")
    if tolerance <= 0:
        raise ValueError("tolerance must be positive.")

    current = float(getattr(inputs, changing_field))
    iteration = 0
    lower, upper = sorted((current * 0.01, current * 100))
    if lower == upper:
        lower, upper = 0.0, 1.0
        low_gap = _evaluate(inputs, changing_field, lower, target_field) - target_value
        while iteration < max_iterations:
            high_gap = _evaluate(inputs, changing_field, upper, target_field) - target_value
            if not (math.isfinite(low_gap) and math.isfinite(high_gap)) or low_gap * high_gap <= 0:
                break
            upper *= 2
            iteration += 1

    error = _evaluate(inputs, changing_field, current, target_field) - target_value

    while iteration < max_iterations:
        result = _evaluate(inputs, changing_field, current, target_field)
        error = result - target_value
        if not math.isfinite(error) or abs(error) <= tolerance:
            break

        delta = abs(current) * 0.001 or 0.001
        derivative = (_evaluate(inputs, changing_field, current + delta, target_field) - result) / delta
        if not math.isfinite(derivative) or abs(derivative) < _MIN_DERIVATIVE:
            break

        candidate = current - error / derivative
        if candidate < lower or candidate > upper:
            break
        current = candidate
        iteration += 1

    if not (math.isfinite(error) and abs(error) <= tolerance) and iteration < max_iterations:
        # Orient the bracket so "error > 0" always means "move towards lower".
        increasing = _evaluate(inputs, changing_field, upper, target_field) >= _evaluate(
            inputs, changing_field, lower, target_field
        )
        current = (lower + upper) / 2
        while iteration < max_iterations:
            error = _evaluate(inputs, changing_field, current, target_field) - target_value
            if math.isfinite(error) and abs(error) <= tolerance:
                break
            if (error > 0) == increasing:
                upper = current
            else:
                lower = current
            current = (lower + upper) / 2
            iteration += 1

    success = math.isfinite(error) and abs(error) <= tolerance
    final_error = abs(error) if math.isfinite(error) else math.inf
    if success:
        message = f"Goal Seek completed successfully in {iteration} iterations."
    else:
        message = (
            f"Goal Seek did not converge within {max_iterations} iterations. "
            f"Final error: {final_error:.4f}"
        )
    return GoalSeekResult(
        success=success,
        found_value=current,
        iterations=iteration,
        final_error=final_error,
        message=message,
    )


def format_currency(value: float) -> str:
    """Whole dollars, sign dropped: outgoing payments display as positive amounts."""
    return f"${abs(value):,.0f}"


def format_field_value(field_name: str, value: float) -> str:
    if field_name in MONEY_FIELDS:
        return format_currency(value)
    if field_name in PERCENT_FIELDS:
        return f"{value:.3f}%"
    if field_name == "years":
        return f"{value:.1f} years"
    return f"{value:.2f}"
