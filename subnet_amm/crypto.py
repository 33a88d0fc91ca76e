"""
Address helpers for pool participants and pool custody accounts.
"""
import hashlib
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives import serialization

ADDRESS_LENGTH = 20
ZERO_ADDRESS = b'\x00' * ADDRESS_LENGTH

POOL_ADDRESS_DOMAIN = b"SUBNET_AMM_POOL:"


def generate_hash(data: bytes) -> bytes:
    """Generates a Keccak-256 hash."""
    from Crypto.Hash import keccak
    return keccak.new(digest_bits=256, data=data).digest()

def generate_key_pair() -> tuple[ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey]:
    """Generates an ECDSA private/public key pair (SECP256R1)."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    public_key = private_key.public_key()
    return private_key, public_key

def serialize_public_key(public_key: ec.EllipticCurvePublicKey) -> str:
    """Serializes a public key object into PEM format (string)."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')

def deserialize_public_key(pem_data: str) -> ec.EllipticCurvePublicKey:
    """Deserializes a public key from a PEM formatted string."""
    return serialization.load_pem_public_key(pem_data.encode('utf-8'))

def public_key_to_address(public_key_pem: str) -> bytes:
    """Derives a 20-byte account address from a public key PEM string."""
    public_key = deserialize_public_key(public_key_pem)
    der_bytes = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return hashlib.sha256(der_bytes).digest()[:ADDRESS_LENGTH]

def sign(private_key: ec.EllipticCurvePrivateKey, data: bytes) -> bytes:
    """Signs byte data using ECDSA with SHA256."""
    return private_key.sign(data, ec.ECDSA(hashes.SHA256()))

def verify_signature(public_key_pem: str, signature: bytes, data: bytes) -> bool:
    """Verifies an ECDSA/SHA256 signature. Malformed keys count as invalid."""
    try:
        public_key = deserialize_public_key(public_key_pem)
        public_key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False

def new_address() -> bytes:
    """Generates a fresh key pair and returns only its address."""
    _, public_key = generate_key_pair()
    return public_key_to_address(serialize_public_key(public_key))

def derive_pool_address(netuid: int) -> bytes:
    """
    Deterministic custody address of the pool for a subnet.

    The pool holds both reserves on the token ledgers under this address.
    """
    return generate_hash(POOL_ADDRESS_DOMAIN + netuid.to_bytes(2, 'big'))[-ADDRESS_LENGTH:]

def is_zero_address(address: bytes) -> bool:
    return not address or address == ZERO_ADDRESS
