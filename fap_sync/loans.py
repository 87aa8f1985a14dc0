"""Loan request terms: interest rate by member role and monthly payment."""

import math
from typing import Iterable

__all__ = [
    "LoanRequestError",
    "interest_rate_for",
    "monthly_payment",
    "validate_loan_request",
    "has_pending_request",
    "build_loan_request",
    "DEFAULT_TERM_MONTHS",
]

ASSOCIATE_ROLE = "asociado"
ASSOCIATE_RATE = 0.02
CLIENT_RATE = 0.025
DEFAULT_TERM_MONTHS = 12
PENDING = "pendiente"


class LoanRequestError(ValueError):
    """A loan request that cannot be submitted."""

    pass


def interest_rate_for(rol: str) -> float:
    """Annual rate offered to a member: 2% for associates, 2.5% otherwise."""
    return ASSOCIATE_RATE if rol == ASSOCIATE_ROLE else CLIENT_RATE


def monthly_payment(
    principal: float, annual_rate: float, months: int = DEFAULT_TERM_MONTHS
) -> float:
    """Fixed instalment that repays principal over months (annuity formula)."""
    if months <= 0:
        raise LoanRequestError("Loan term must be at least one month")
    monthly_rate = annual_rate / 12
    if monthly_rate == 0:
        return principal / months
    growth = (1 + monthly_rate) ** months
    return principal * monthly_rate * growth / (growth - 1)


def validate_loan_request(loan: dict) -> None:
    """Raise LoanRequestError unless loan has a positive amount and a purpose."""
    try:
        amount = float(loan.get("monto_solicitado"))
    except (TypeError, ValueError):
        raise LoanRequestError("Enter a valid loan amount")
    if math.isnan(amount) or amount <= 0:
        raise LoanRequestError("Enter a valid loan amount")

    purpose = loan.get("proposito")
    if not isinstance(purpose, str) or not purpose.strip():
        raise LoanRequestError("Describe the purpose of the loan")


def has_pending_request(loans: Iterable[dict]) -> bool:
    return any(loan.get("estado") == PENDING for loan in loans)


def build_loan_request(
    monto: float,
    proposito: str,
    rol: str,
    existing_loans: Iterable[dict] = (),
    months: int = DEFAULT_TERM_MONTHS,
) -> dict:
    """Payload for a new loan request, priced for the member's role.

    Args:
        monto: Requested amount
        proposito: What the loan is for
        rol: Member role ("asociado" gets the lower rate)
        existing_loans: The member's loans, to refuse a second pending request
        months: Repayment term

    Raises:
        LoanRequestError: If the request is invalid or one is already pending
    """
    loan = {"monto_solicitado": monto, "proposito": proposito}
    validate_loan_request(loan)
    if has_pending_request(existing_loans):
        raise LoanRequestError("A loan request is already pending")

    amount = float(monto)
    rate = interest_rate_for(rol)
    return {
        "monto_solicitado": amount,
        "tasa_interes": rate,
        "proposito": proposito.strip(),
        "plazo_meses": months,
        "cuota_mensual": round(monthly_payment(amount, rate, months), 2),
    }
