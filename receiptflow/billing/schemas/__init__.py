from receiptflow.billing.schemas.credits import *  # noqa: F401,F403
