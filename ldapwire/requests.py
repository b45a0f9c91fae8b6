"""Modify, modify-DN, unbind and "Who Am I?" operations: encoding requests and reading responses."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterable, Optional, Protocol

from .ber import (
    BerClass,
    BerType,
    Packet,
    Tag,
    decode_string,
    encode,
    new_boolean,
    new_integer,
    new_sequence,
    new_string,
)
from .errors import (
    ERROR_NETWORK,
    ERROR_UNEXPECTED_RESPONSE,
    LDAP_RESULT_REFERRAL,
    LDAPError,
    get_ldap_error,
    is_error_with_code,
    new_error,
)

logger = logging.getLogger(__name__)

WHOAMI_OID = "1.3.6.1.4.1.4203.1.11.3"
_AUTHZ_ID_TAG = 11


class Application(IntEnum):
    """Application tags of LDAP protocol operations."""

    BIND_REQUEST = 0
    BIND_RESPONSE = 1
    UNBIND_REQUEST = 2
    SEARCH_REQUEST = 3
    SEARCH_RESULT_ENTRY = 4
    SEARCH_RESULT_DONE = 5
    MODIFY_REQUEST = 6
    MODIFY_RESPONSE = 7
    ADD_REQUEST = 8
    ADD_RESPONSE = 9
    DEL_REQUEST = 10
    DEL_RESPONSE = 11
    MODIFY_DN_REQUEST = 12
    MODIFY_DN_RESPONSE = 13
    COMPARE_REQUEST = 14
    COMPARE_RESPONSE = 15
    ABANDON_REQUEST = 16
    SEARCH_RESULT_REFERENCE = 19
    EXTENDED_REQUEST = 23
    EXTENDED_RESPONSE = 24
    INTERMEDIATE_RESPONSE = 25


class Operation(IntEnum):
    """The kinds of change a modify request can make."""

    ADD = 0
    DELETE = 1
    REPLACE = 2
    INCREMENT = 3


class _Request(Protocol):
    def append_to(self, envelope: Packet) -> None: ...


def _encode_controls(controls: Iterable[Any]) -> Packet:
    """Wrap controls in the ``[0] Controls`` sequence of an LDAPMessage.

    Each control is either a ready packet or an object with an ``encode()`` method.
    """
    packet = encode(BerClass.CONTEXT, BerType.CONSTRUCTED, 0, None, "Controls")
    for control in controls:
        packet.append_child(control if isinstance(control, Packet) else control.encode())
    return packet


def _octet_string(value: str, description: str) -> Packet:
    return new_string(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.OCTET_STRING, value, description)


@dataclass
class PartialAttribute:
    """An attribute type with the values a change applies to."""

    type: str
    values: list = field(default_factory=list)

    def encode(self) -> Packet:
        """Encode as a PartialAttribute sequence."""
        seq = new_sequence("PartialAttribute")
        seq.append_child(_octet_string(self.type, "Type"))
        values = encode(BerClass.UNIVERSAL, BerType.CONSTRUCTED, Tag.SET, None, "AttributeValue")
        for value in self.values:
            values.append_child(_octet_string(value, "Vals"))
        seq.append_child(values)
        return seq


@dataclass
class Change:
    """One change of a modify request."""

    operation: Operation
    modification: PartialAttribute

    def encode(self) -> Packet:
        """Encode as a change sequence."""
        change = new_sequence("Change")
        change.append_child(
            new_integer(
                BerClass.UNIVERSAL,
                BerType.PRIMITIVE,
                Tag.ENUMERATED,
                int(self.operation),
                "Operation",
            )
        )
        change.append_child(self.modification.encode())
        return change


@dataclass
class ModifyRequest:
    """A request to change the attributes of one entry."""

    dn: str
    controls: list = field(default_factory=list)
    changes: list = field(default_factory=list)

    def _append_change(self, operation: Operation, attr_type: str, values: Iterable[str]) -> None:
        self.changes.append(Change(operation, PartialAttribute(attr_type, list(values))))

    def add(self, attr_type: str, values: Iterable[str]) -> None:
        """Queue adding ``values`` to ``attr_type``."""
        self._append_change(Operation.ADD, attr_type, values)

    def delete(self, attr_type: str, values: Iterable[str]) -> None:
        """Queue deleting ``values`` (or the whole attribute when empty)."""
        self._append_change(Operation.DELETE, attr_type, values)

    def replace(self, attr_type: str, values: Iterable[str]) -> None:
        """Queue replacing all values of ``attr_type``."""
        self._append_change(Operation.REPLACE, attr_type, values)

    def increment(self, attr_type: str, value: str) -> None:
        """Queue incrementing ``attr_type`` by ``value``."""
        self._append_change(Operation.INCREMENT, attr_type, [value])

    def append_to(self, envelope: Packet) -> None:
        """Add the encoded request, and any controls, to an LDAPMessage."""
        pkt = encode(
            BerClass.APPLICATION,
            BerType.CONSTRUCTED,
            Application.MODIFY_REQUEST,
            None,
            "Modify Request",
        )
        pkt.append_child(_octet_string(self.dn, "DN"))
        changes = new_sequence("Changes")
        for change in self.changes:
            changes.append_child(change.encode())
        pkt.append_child(changes)
        envelope.append_child(pkt)
        if self.controls:
            envelope.append_child(_encode_controls(self.controls))


@dataclass
class ModifyResult:
    """What the server returned for a modify request."""

    controls: list = field(default_factory=list)
    referral: str = ""


@dataclass
class ModifyDNRequest:
    """A request to rename an entry and optionally move it under a new superior.

    An empty ``new_superior`` only changes the RDN.
    """

    dn: str
    new_rdn: str
    delete_old_rdn: bool
    new_superior: str = ""
    controls: list = field(default_factory=list)

    def append_to(self, envelope: Packet) -> None:
        """Add the encoded request, and any controls, to an LDAPMessage."""
        pkt = encode(
            BerClass.APPLICATION,
            BerType.CONSTRUCTED,
            Application.MODIFY_DN_REQUEST,
            None,
            "Modify DN Request",
        )
        pkt.append_child(_octet_string(self.dn, "DN"))
        pkt.append_child(_octet_string(self.new_rdn, "New RDN"))
        if self.delete_old_rdn:
            pkt.append_child(
                new_string(
                    BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.BOOLEAN, b"\xff", "Delete old RDN"
                )
            )
        else:
            pkt.append_child(
                new_boolean(
                    BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.BOOLEAN, False, "Delete old RDN"
                )
            )
        if self.new_superior:
            pkt.append_child(
                new_string(
                    BerClass.CONTEXT, BerType.PRIMITIVE, 0, self.new_superior, "New Superior"
                )
            )
        envelope.append_child(pkt)
        if self.controls:
            envelope.append_child(_encode_controls(self.controls))


@dataclass
class UnbindRequest:
    """The "quit" operation; the connection is unusable after it is sent."""

    def append_to(self, envelope: Packet) -> None:
        """Add the encoded request to an LDAPMessage."""
        envelope.append_child(
            encode(
                BerClass.APPLICATION,
                BerType.PRIMITIVE,
                Application.UNBIND_REQUEST,
                None,
                "Unbind Request",
            )
        )


@dataclass
class _WhoAmIRequest:
    controls: list = field(default_factory=list)

    def append_to(self, envelope: Packet) -> None:
        request = encode(
            BerClass.APPLICATION,
            BerType.CONSTRUCTED,
            Application.EXTENDED_REQUEST,
            None,
            "Who Am I? Extended Operation",
        )
        request.append_child(
            new_string(
                BerClass.CONTEXT,
                BerType.PRIMITIVE,
                0,
                WHOAMI_OID,
                "Extended Request Name: Who Am I? OID",
            )
        )
        envelope.append_child(request)
        if self.controls:
            envelope.append_child(_encode_controls(self.controls))


@dataclass
class WhoAmIResult:
    """The authorization identity the server associates with the connection."""

    authz_id: str = ""


def build_request(message_id: int, request: _Request) -> Packet:
    """Wrap ``request`` in an LDAPMessage with the given message id."""
    packet = new_sequence("LDAP Request")
    packet.append_child(
        new_integer(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.INTEGER, message_id, "MessageID")
    )
    request.append_to(packet)
    return packet


def whoami_request(message_id: int) -> Packet:
    """Build the "Who Am I?" extended request message."""
    return build_request(message_id, _WhoAmIRequest())


def parse_whoami_response(packet: Optional[Packet]) -> WhoAmIResult:
    """Read the authzId from a "Who Am I?" response, raising on failure."""
    if packet is None:
        raise new_error(ERROR_NETWORK, "ldap: could not retrieve message")
    response = packet.children[1]
    if response.tag != Application.EXTENDED_RESPONSE:
        raise new_error(ERROR_UNEXPECTED_RESPONSE, f"Unexpected Response: {response.tag}")
    error = get_ldap_error(packet)
    if error is not None:
        raise error
    result = WhoAmIResult()
    for child in response.children:
        if child.tag == _AUTHZ_ID_TAG:
            result.authz_id = decode_string(child.data)
    return result


def get_referral(err: Optional[BaseException], packet: Packet) -> str:
    """Return the referral carried by a response whose error is a referral.

    Returns '' when ``err`` is not a referral error; raises ValueError when the
    packet claims a referral that cannot be read.
    """
    if not is_error_with_code(err, LDAP_RESULT_REFERRAL):
        return ""
    if len(packet.children) < 2:
        raise ValueError(
            "ldap: returned error indicates the packet contains a referral but it "
            f"doesn't have sufficient child nodes: {err}"
        ) from err
    if packet.children[1].tag != Tag.OBJECT_DESCRIPTOR:
        raise ValueError(
            "ldap: returned error indicates the packet contains a referral but the "
            f"relevant child node isn't an object descriptor: {err}"
        ) from err
    for child in packet.children[1].children:
        if child.tag == Tag.BIT_STRING and child.children:
            referral = child.children[0].value
            if isinstance(referral, str):
                return referral
    raise ValueError(
        "ldap: returned error indicates the packet contains a referral but the "
        f"referral couldn't be decoded: {err}"
    ) from err


def parse_modify_response(packet: Packet) -> ModifyResult:
    """Read a modify response into a result.

    On a failed result the LDAPError is raised with the partial result,
    including any referral, attached as its ``result`` attribute.
    """
    result = ModifyResult()
    if packet.children[1].tag != Application.MODIFY_RESPONSE:
        return result
    error = get_ldap_error(packet)
    if error is not None:
        result.referral = get_referral(error, packet)
        error.result = result
        raise error
    if len(packet.children) == 3:
        result.controls.extend(packet.children[2].children)
    return result


def check_modify_dn_response(packet: Packet) -> None:
    """Raise the LDAPError of a failed modify-DN response; log other responses."""
    response = packet.children[1]
    if response.tag == Application.MODIFY_DN_RESPONSE:
        error = get_ldap_error(packet)
        if error is not None:
            raise error
    else:
        logger.warning("Unexpected Response: %d", response.tag)


__all__ = [
    "Application",
    "Change",
    "LDAPError",
    "ModifyDNRequest",
    "ModifyRequest",
    "ModifyResult",
    "Operation",
    "PartialAttribute",
    "UnbindRequest",
    "WHOAMI_OID",
    "WhoAmIResult",
    "build_request",
    "check_modify_dn_response",
    "get_referral",
    "parse_modify_response",
    "parse_whoami_response",
    "whoami_request",
]