"""Models package."""

from .user import User
from .credit_history import CreditHistory
from .transaction import Transaction
from .video import Video
from .crm_integration import CrmIntegration
from .embed_session import EmbedSession
