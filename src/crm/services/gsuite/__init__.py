"""Google Workspace integration for per-user Calendar sync.

Provides the OAuth web flow, credential storage on the users table,
token refresh with write-back, and Meet-enabled calendar event sync.
"""

from src.crm.services.gsuite.calendar import ConferenceProvisioner
from src.crm.services.gsuite.credentials import CredentialStore
from src.crm.services.gsuite.models import (
    ConferenceIssue,
    ConferenceResult,
    OAuthTokens,
    StoredCredential,
)
from src.crm.services.gsuite.oauth import OAuthClientConfig
from src.crm.services.gsuite.token_manager import TokenManager

__all__ = [
    "ConferenceIssue",
    "ConferenceProvisioner",
    "ConferenceResult",
    "CredentialStore",
    "OAuthClientConfig",
    "OAuthTokens",
    "StoredCredential",
    "TokenManager",
]
