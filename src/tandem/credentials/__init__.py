"""Tandem Credentials — stored provider secrets and OAuth refresh policy."""

from tandem.credentials.crypto import SecretBox
from tandem.credentials.models import Credential, CredentialKind
from tandem.credentials.oauth import OAuthRefresher
from tandem.credentials.resolver import CredentialResolver
from tandem.credentials.store import CredentialStore

__all__ = [
    "Credential",
    "CredentialKind",
    "CredentialResolver",
    "CredentialStore",
    "OAuthRefresher",
    "SecretBox",
]
