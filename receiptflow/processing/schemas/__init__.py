from receiptflow.processing.schemas.base import *  # noqa: F401,F403
