"""ReceiptFlow — receipt extraction pipeline with a metered credit ledger."""
