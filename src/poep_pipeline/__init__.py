"""
PoEP Proof-of-Uniqueness Pipeline

Turns a camera frame into a deterministic biometric fingerprint, builds the
witness inputs of the face-hash circuit and drives a Groth16 proving backend
to obtain the proof and nullifier consumed by the on-chain minting contract.
"""

__version__ = "2.0.0"
__author__ = "PoEP Team"
__email__ = "dev@poep.xyz"
