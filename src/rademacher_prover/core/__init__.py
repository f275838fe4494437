"""
Core Module - Certificates

Provides:
- NodeStatus / Verdict enums
- Node and case certificates
- Output gate (enforces the 3-verdict contract)
"""

from .certificate import (
    NodeStatus,
    Verdict,
    NodeCertificate,
    CaseCertificate,
    CertificateGate,
    verdict_for,
)

__all__ = [
    'NodeStatus',
    'Verdict',
    'NodeCertificate',
    'CaseCertificate',
    'CertificateGate',
    'verdict_for',
]
