"""
Controller capability for reserve-mutating pool operations.

A pool is created with the ControllerHandle objects of its controller and
owner contract, and only those exact objects unlock inject_liquidity and
withdraw_liquidity. Handles compare by identity: a handle rebuilt from a
published address is a different object and is refused. The pool creator
is recorded for provenance and is never given a handle.
"""
from dataclasses import dataclass

from subnet_amm.amm_state import PoolState
from subnet_amm.crypto import is_zero_address
from subnet_amm.errors import AuthorizationError, ValidationError


@dataclass(frozen=True, eq=False)
class ControllerHandle:
    """Capability held by the controller of one or more pools."""
    address: bytes

    def __post_init__(self):
        if not isinstance(self.address, bytes) or is_zero_address(self.address):
            raise ValidationError("Controller handle needs a non-zero address")

    def __repr__(self) -> str:
        return f"ControllerHandle({self.address.hex()[:8]}...)"


def authorized_addresses(state: PoolState) -> frozenset[bytes]:
    return frozenset((state.controller_address, state.owner_contract_address))


def check_issued_handles(state: PoolState, handles) -> tuple:
    """
    Validate the handles a pool is constructed with.

    Raises:
        ValidationError: if a handle is not a ControllerHandle or speaks for
            an address that is not authorized on this pool
    """
    handles = tuple(handles)
    allowed = authorized_addresses(state)
    for handle in handles:
        if not isinstance(handle, ControllerHandle):
            raise ValidationError(f"Not a controller handle: {handle!r}")
        if handle.address not in allowed:
            raise ValidationError(
                f"Handle {handle!r} is not authorized on pool {state.netuid}"
            )
    return handles


def require_controller(state: PoolState, handle, issued: tuple) -> bytes:
    """
    Check the caller holds a controller capability issued to this pool.

    Returns:
        The authorized address the handle speaks for.

    Raises:
        AuthorizationError: if the handle is missing, forged or not authorized
    """
    if not isinstance(handle, ControllerHandle):
        raise AuthorizationError("Controller capability required")
    if not any(handle is h for h in issued):
        raise AuthorizationError(
            f"Handle for {handle.address.hex()[:8]} was not issued to pool {state.netuid}"
        )
    if handle.address not in authorized_addresses(state):
        raise AuthorizationError(
            f"Address {handle.address.hex()[:8]} is not a controller of pool {state.netuid}"
        )
    return handle.address
