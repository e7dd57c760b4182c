"""Escalation letter templating."""

from decimal import ROUND_HALF_UP, Decimal

from refund_review.domain.models.transaction import Transaction

_CURRENCY_SYMBOLS = {"USD": "$", "CAD": "CA$", "EUR": "€", "GBP": "£"}


def format_currency(amount: Decimal | float, currency: str) -> str:
    """Format an amount with no fractional digits, e.g. ``$1,250``."""
    whole = Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    symbol = _CURRENCY_SYMBOLS.get(currency.upper())
    if symbol is None:
        return f"{currency} {whole:,}"
    sign = "-" if whole < 0 else ""
    return f"{sign}{symbol}{abs(whole):,}"


def format_percent(value: float) -> str:
    return f"{round(value * 100)}%"


def generate_escalation_letter(transaction: Transaction, reason: str) -> str:
    """Render the letter attached to an escalation. Pure; no I/O."""
    summary = transaction.model_explanation.summary if transaction.model_explanation else None
    summary_line = f"- Model summary: {summary}" if summary else "- Model summary: (not provided)"

    return "\n".join(
        [
            "Subject: Refund Transaction Escalation Review",
            "",
            f"Transaction ID: {transaction.id}",
            f"Warehouse: {transaction.warehouse_id}",
            f"Region: {transaction.region_id}",
            f"Refund Amount: {format_currency(transaction.refund_amount, transaction.currency)}",
            f"AI Risk Score: {format_percent(transaction.risk_score)}",
            f"AI Recommendation: {transaction.model_recommendation.value.upper()}",
            "",
            "Escalation Reason:",
            reason,
            "",
            "Requested Action:",
            "- Please perform secondary review and provide approval/denial guidance.",
            "- Attach any supporting documentation for audit purposes.",
            "",
            "Notes:",
            summary_line,
            "",
            "Thank you,",
            "Fraud Operations",
        ]
    )
