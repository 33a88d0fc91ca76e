"""
Signed swap orders.

A swap pulls tokens from the trader's account, so the pool only acts on an
order signed by the key that owns that account. Orders carry the subnet id
and a per-trader nonce so a signed order cannot be replayed on another pool
or executed twice.
"""
from typing import Optional

import msgpack

from subnet_amm.crypto import (
    generate_key_pair,
    public_key_to_address,
    serialize_public_key,
    sign,
    verify_signature,
)


class SwapOrder:
    def __init__(self,
                 sender_public_key: str,
                 netuid: int,
                 direction: str,
                 amount_in: int,
                 min_amount_out: int,
                 recipient: bytes,
                 nonce: int,
                 signature: Optional[bytes] = None):
        self.sender_public_key = sender_public_key
        self.netuid = netuid
        self.direction = direction
        self.amount_in = amount_in
        self.min_amount_out = min_amount_out
        self.recipient = recipient
        self.nonce = nonce
        self.signature = signature

    @classmethod
    def from_dict(cls, data: dict) -> 'SwapOrder':
        return cls(
            sender_public_key=data["sender_public_key"],
            netuid=int(data["netuid"]),
            direction=data["direction"],
            amount_in=int(data["amount_in"]),
            min_amount_out=int(data["min_amount_out"]),
            recipient=bytes.fromhex(data["recipient"]),
            nonce=int(data["nonce"]),
            signature=bytes.fromhex(data["signature"]) if data.get("signature") else None,
        )

    def to_dict(self, include_signature=True) -> dict:
        # Amounts may exceed 64 bits, so they travel as decimal strings
        data = {
            "sender_public_key": self.sender_public_key,
            "netuid": str(self.netuid),
            "direction": self.direction,
            "amount_in": str(self.amount_in),
            "min_amount_out": str(self.min_amount_out),
            "recipient": self.recipient.hex(),
            "nonce": str(self.nonce),
        }
        if include_signature and self.signature:
            data["signature"] = self.signature.hex()
        return data

    def get_signing_data(self) -> bytes:
        """Returns the canonical byte representation for signing."""
        return msgpack.packb(self.to_dict(include_signature=False), use_bin_type=True)

    def sign(self, private_key):
        self.signature = sign(private_key, self.get_signing_data())

    def verify_signature(self) -> bool:
        if not self.signature or not isinstance(self.sender_public_key, str):
            return False
        return verify_signature(self.sender_public_key, self.signature, self.get_signing_data())

    @property
    def sender(self) -> bytes:
        """Account address of the signing key."""
        return public_key_to_address(self.sender_public_key)

    def __repr__(self) -> str:
        return (f"SwapOrder(netuid={self.netuid}, {self.direction}, amount_in={self.amount_in}, "
                f"min_out={self.min_amount_out}, nonce={self.nonce})")


class Signer:
    """Key pair of a trading account."""

    def __init__(self, private_key=None):
        if private_key is None:
            private_key, _ = generate_key_pair()
        self.private_key = private_key
        self.public_key_pem = serialize_public_key(private_key.public_key())
        self.address = public_key_to_address(self.public_key_pem)

    def swap_order(self, pool, direction, amount_in: int, min_amount_out: int = 0,
                   recipient: Optional[bytes] = None, nonce: Optional[int] = None) -> SwapOrder:
        """
        Build and sign an order for a pool.

        The nonce defaults to the next one the pool expects from this account.
        """
        order = SwapOrder(
            self.public_key_pem,
            pool.netuid,
            getattr(direction, 'value', direction),
            amount_in,
            min_amount_out,
            self.address if recipient is None else recipient,
            pool.nonce_of(self.address) if nonce is None else nonce,
        )
        order.sign(self.private_key)
        return order

    def __repr__(self) -> str:
        return f"Signer({self.address.hex()[:8]}...)"
