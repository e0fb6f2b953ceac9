from .sms import router as sms_router
from .webhooks import router as webhooks_router

__all__ = [
    'sms_router',
    'webhooks_router',
]
