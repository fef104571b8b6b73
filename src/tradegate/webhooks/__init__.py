"""
Webhook intake: typed payload models and the source normalizer.
"""

from .normalizer import NormalizedFragment, detect_source, normalize
from .payloads import PAYLOAD_MODELS, WebhookSource

__all__ = ['WebhookSource', 'PAYLOAD_MODELS', 'NormalizedFragment', 'detect_source', 'normalize']
