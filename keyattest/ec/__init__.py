"""
Elliptic-curve engines for the two curves used by hardware attestation
chains. Each curve is its own module with its own constants and key type;
callers match on the key class rather than dispatching through a generic
curve object.

  p256.P256PublicKey   NIST P-256 + SHA-256
  p384.P384PublicKey   NIST P-384 + SHA-384
"""

from .ecdsa import EcdsaSignature
from .p256 import P256PublicKey
from .p384 import P384PublicKey

__all__ = ["EcdsaSignature", "P256PublicKey", "P384PublicKey"]
