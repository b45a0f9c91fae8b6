"""Distinguished names: parsing, normalised text forms and matching rules."""

from __future__ import annotations

from dataclasses import dataclass, field

from .ber import decode_packet, decode_string


class DNError(ValueError):
    """Raised when a distinguished name cannot be parsed."""


_SPACE = ord(" ")
_HASH = ord("#")
_BACKSLASH = ord("\\")
_EQUALS = ord("=")
_COMMA = ord(",")
_PLUS = ord("+")
_SEMICOLON = ord(";")

_ESCAPABLE = frozenset(b' "#+,;<=>\\')
_VALUE_SPECIALS = frozenset(b'"+,;<>\\')
_HEX_DIGITS = b"0123456789abcdefABCDEF"


def _describe_byte(octet: int) -> str:
    char = chr(octet)
    if char.isprintable():
        return f"U+{octet:04X} '{char}'"
    return f"U+{octet:04X}"


def _hex_decode(data: bytes) -> bytes:
    """Decode hex octets, failing with the same messages as a strict decoder."""
    for pos in range(0, len(data) - 1, 2):
        for octet in data[pos : pos + 2]:
            if octet not in _HEX_DIGITS:
                raise ValueError(f"encoding/hex: invalid byte: {_describe_byte(octet)}")
    if len(data) % 2:
        last = data[-1]
        if last not in _HEX_DIGITS:
            raise ValueError(f"encoding/hex: invalid byte: {_describe_byte(last)}")
        raise ValueError("encoding/hex: odd length hex string")
    return bytes.fromhex(data.decode("ascii"))


def _equal_fold(left: str, right: str) -> bool:
    """Case-insensitive comparison, character by character."""
    if len(left) != len(right):
        return False
    return all(
        a == b or a.lower() == b.lower() or a.upper() == b.upper()
        for a, b in zip(left, right)
    )


@dataclass
class AttributeTypeAndValue:
    """One ``type=value`` pair of a relative distinguished name."""

    type: str
    value: str

    def __str__(self) -> str:
        return self.type.lower() + "=" + self._encode_value()

    def _encode_value(self) -> str:
        raw = self.value.encode("utf-8", "surrogateescape")
        last = len(raw) - 1
        parts = []
        for pos, octet in enumerate(raw):
            if (pos == 0 and octet == _SPACE) or octet == _HASH:
                parts.append("\\" + chr(octet))
            elif pos == last and octet == _SPACE:
                parts.append("\\" + chr(octet))
            elif octet in _VALUE_SPECIALS:
                parts.append("\\" + chr(octet))
            elif octet < 0x20 or octet > 0x7E:
                parts.append(f"\\{octet:02x}")
            else:
                parts.append(chr(octet))
        return "".join(parts)

    def equal(self, other: "AttributeTypeAndValue") -> bool:
        """Types match ignoring case, values match exactly."""
        return _equal_fold(self.type, other.type) and self.value == other.value

    def equal_fold(self, other: "AttributeTypeAndValue") -> bool:
        """Types and values both match ignoring case."""
        return _equal_fold(self.type, other.type) and _equal_fold(self.value, other.value)


@dataclass
class RelativeDN:
    """A set of attribute type and value pairs joined with ``+``."""

    attributes: list = field(default_factory=list)

    def __str__(self) -> str:
        return "+".join(sorted(str(attr) for attr in self.attributes))

    def _has_all(self, attrs: list, fold: bool) -> bool:
        def matches(mine: AttributeTypeAndValue, theirs: AttributeTypeAndValue) -> bool:
            return mine.equal_fold(theirs) if fold else mine.equal(theirs)

        return all(any(matches(mine, attr) for mine in self.attributes) for attr in attrs)

    def equal(self, other: "RelativeDN") -> bool:
        """Same number of attributes, each present in the other; order is ignored."""
        if len(self.attributes) != len(other.attributes):
            return False
        return self._has_all(other.attributes, False) and other._has_all(
            self.attributes, False
        )

    def equal_fold(self, other: "RelativeDN") -> bool:
        """Like :meth:`equal`, but values are compared ignoring case."""
        if len(self.attributes) != len(other.attributes):
            return False
        return self._has_all(other.attributes, True) and other._has_all(
            self.attributes, True
        )


@dataclass
class DN:
    """A distinguished name: a sequence of relative DNs."""

    rdns: list = field(default_factory=list)

    def __str__(self) -> str:
        return ",".join(str(rdn) for rdn in self.rdns)

    def equal(self, other: "DN") -> bool:
        """Same number of RDNs and every RDN matches by position."""
        return len(self.rdns) == len(other.rdns) and all(
            mine.equal(theirs) for mine, theirs in zip(self.rdns, other.rdns)
        )

    def equal_fold(self, other: "DN") -> bool:
        """Like :meth:`equal`, but values are compared ignoring case."""
        return len(self.rdns) == len(other.rdns) and all(
            mine.equal_fold(theirs) for mine, theirs in zip(self.rdns, other.rdns)
        )

    def _tail_of(self, other: "DN") -> list:
        return other.rdns[len(other.rdns) - len(self.rdns) :]

    def ancestor_of(self, other: "DN") -> bool:
        """True when ``other`` is this DN preceded by at least one more RDN."""
        if len(self.rdns) >= len(other.rdns):
            return False
        return all(
            mine.equal(theirs) for mine, theirs in zip(self.rdns, self._tail_of(other))
        )

    def ancestor_of_fold(self, other: "DN") -> bool:
        """Like :meth:`ancestor_of`, but values are compared ignoring case."""
        if len(self.rdns) >= len(other.rdns):
            return False
        return all(
            mine.equal_fold(theirs)
            for mine, theirs in zip(self.rdns, self._tail_of(other))
        )


def parse_dn(text: str) -> DN:
    """Parse a string representation of a distinguished name."""
    raw = text.encode("utf-8", "surrogateescape")
    length = len(raw)
    rdns: list = []
    attributes: list = []
    buffer = bytearray()
    attr_type = ""
    escaping = False
    trailing_spaces = 0

    def take() -> str:
        nonlocal trailing_spaces
        content = bytes(buffer[: len(buffer) - trailing_spaces])
        buffer.clear()
        trailing_spaces = 0
        return decode_string(content)

    pos = 0
    while pos < length:
        char = raw[pos]
        if escaping:
            trailing_spaces = 0
            escaping = False
            if char in _ESCAPABLE:
                buffer.append(char)
            else:
                if pos + 1 == length:
                    raise DNError("got corrupted escaped character")
                try:
                    decoded = _hex_decode(raw[pos : pos + 2])
                except ValueError as exc:
                    raise DNError(f"failed to decode escaped character: {exc}") from exc
                buffer.extend(decoded)
                pos += 1
        elif char == _BACKSLASH:
            trailing_spaces = 0
            escaping = True
        elif char == _EQUALS:
            attr_type = take()
            if pos + 1 < length and raw[pos + 1] == _HASH:
                pos += 2
                rest = raw[pos:]
                stops = [index for index in (rest.find(b","), rest.find(b"+")) if index >= 0]
                index = min(stops) if stops else -1
                data = rest[:index] if index > 0 else rest
                try:
                    encoded = _hex_decode(data)
                except ValueError as exc:
                    raise DNError(f"failed to decode BER encoding: {exc}") from exc
                try:
                    packet = decode_packet(encoded)
                except (ValueError, IndexError) as exc:
                    raise DNError(f"failed to decode BER packet: {exc}") from exc
                buffer.extend(packet.data)
                pos += len(data) - 1
        elif char in (_COMMA, _PLUS, _SEMICOLON):
            if not attr_type:
                raise DNError("incomplete type, value pair")
            attributes.append(AttributeTypeAndValue(attr_type, take()))
            attr_type = ""
            if char != _PLUS:
                rdns.append(RelativeDN(attributes))
                attributes = []
        elif char == _SPACE and not buffer:
            pass
        else:
            trailing_spaces = trailing_spaces + 1 if char == _SPACE else 0
            buffer.append(char)
        pos += 1

    if buffer:
        if not attr_type:
            raise DNError("DN ended with incomplete type, value pair")
        attributes.append(AttributeTypeAndValue(attr_type, take()))
        rdns.append(RelativeDN(attributes))
    return DN(rdns)