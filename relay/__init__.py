from .client import MissingFieldError, RelayClient, RelayError, epoch_ms
from .models import OutboundMessage, SendReceipt, TimeSyncReply

__all__ = [
    "MissingFieldError",
    "OutboundMessage",
    "RelayClient",
    "RelayError",
    "SendReceipt",
    "TimeSyncReply",
    "epoch_ms",
]
