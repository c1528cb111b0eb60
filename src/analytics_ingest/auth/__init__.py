"""Device authentication: request signing, credential issuance, the gate."""

from analytics_ingest.auth.gate import AuthContext, AuthenticationGate
from analytics_ingest.auth.issuer import CredentialIssuer, IssuedCredential

__all__ = [
    "AuthContext",
    "AuthenticationGate",
    "CredentialIssuer",
    "IssuedCredential",
]
