"""
Witness Builder: assemble ordered circuit inputs.

Takes the face hash, a fresh nonce and (for anchored circuits) the anchor,
reduces each into the field and checks the result against the configured
circuit version before anything is handed to the prover.
"""

import secrets
from typing import Optional

import structlog

from .circuits import CircuitVersion, get_circuit_version
from .constants import NONCE_BYTES
from .data_models import CircuitInputs
from .exceptions import ArityMismatchError, InvalidWitnessError, MissingAnchorError
from .field import FieldLike, check_bit_bound, non_zero, reduce, to_field_element

# Initialize structured logger
logger = structlog.get_logger(__name__)


def generate_nonce() -> int:
    """
    Draw a fresh nonce from the OS CSPRNG.

    31 random bytes reduced into the field, never zero. Every call returns a
    new value; nonces are never derived from the biometric or the address.
    """
    return non_zero(reduce(int.from_bytes(secrets.token_bytes(NONCE_BYTES), "big")))


class WitnessBuilder:
    """
    Build :class:`CircuitInputs` for one circuit version.

    Parameters
    ----------
    circuit_version : CircuitVersion or str
        Configured circuit version, or its registered name.

    Examples
    --------
    >>> builder = WitnessBuilder("facehash-v1")
    >>> inputs = builder.build(face_hash)
    >>> inputs.names
    ('faceHash', 'nonce')
    """

    def __init__(self, circuit_version) -> None:
        if isinstance(circuit_version, str):
            circuit_version = get_circuit_version(circuit_version)
        self.circuit_version: CircuitVersion = circuit_version

    def _prepare(self, name: str, value: FieldLike) -> int:
        version = self.circuit_version
        element = to_field_element(value)
        if element == 0:
            element = version.zero_fallback

        try:
            return check_bit_bound(element, version.max_input_bits)
        except ValueError:
            raise InvalidWitnessError(
                f"Input '{name}' exceeds the {version.max_input_bits}-bit bound",
                circuit_version=version.name,
            )

    def build(
        self,
        face_hash: FieldLike,
        nonce: Optional[FieldLike] = None,
        anchor: Optional[FieldLike] = None,
    ) -> CircuitInputs:
        """
        Assemble the ordered inputs for the configured circuit.

        Parameters
        ----------
        face_hash : int, str or bytes
            Fingerprint hash.
        nonce : optional
            Nonce to use; a fresh one is generated when omitted.
        anchor : optional
            Anchor value; required exactly when the circuit declares one.

        Returns
        -------
        CircuitInputs
            Values in the circuit's declared order.

        Raises
        ------
        MissingAnchorError
            If the circuit requires an anchor and none was supplied.
        ArityMismatchError
            If an anchor is supplied to a circuit without an anchor slot.
        InvalidWitnessError
            If a reduced value breaks the circuit's bit bound.
        """
        version = self.circuit_version

        if version.requires_anchor and anchor is None:
            raise MissingAnchorError(version.name)

        if not version.requires_anchor and anchor is not None:
            raise ArityMismatchError(
                f"Circuit '{version.name}' takes no anchor input",
                circuit_version=version.name,
                expected=version.arity,
                actual=version.arity + 1,
            )

        if nonce is None:
            nonce = generate_nonce()

        supplied = {"faceHash": face_hash, "nonce": nonce, "anchor": anchor}
        values = tuple(self._prepare(name, supplied[name]) for name in version.input_names)

        if len(values) != version.arity:
            raise ArityMismatchError(
                f"Built {len(values)} inputs for a {version.arity}-input circuit",
                circuit_version=version.name,
                expected=version.arity,
                actual=len(values),
            )

        logger.debug(
            "Circuit inputs built",
            circuit_version=version.name,
            arity=len(values),
        )

        return CircuitInputs(
            circuit_version=version.name, names=version.input_names, values=values
        )
