from invoice_oracle.domain.models import InvoiceInput

NOW = 1_750_000_000
DAY = 86400
ETH = 10**18


def make_invoice(
    invoice_id: str = "1",
    debtor_name: str = "Random Corp Ltd",
    tokens: int | float = 5000,
    due_in_days: int = 45,
    now: int = NOW,
) -> InvoiceInput:
    return InvoiceInput(
        invoice_id=invoice_id,
        debtor_name=debtor_name,
        face_value_wei=int(tokens * ETH),
        due_date_epoch_seconds=now + due_in_days * DAY,
    )
