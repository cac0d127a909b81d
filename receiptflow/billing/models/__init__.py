from receiptflow.billing.models.credit import CreditTransactionModel, ProfileModel  # noqa: F401
