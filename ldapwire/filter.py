"""Search filters: compiling the string form to BER packets and back."""

from __future__ import annotations

from enum import IntEnum
from typing import Union

from .ber import (
    BerClass,
    BerType,
    Packet,
    Tag,
    decode_string,
    encode,
    new_boolean,
    new_string,
)
from .errors import ERROR_FILTER_COMPILE, ERROR_FILTER_DECOMPILE, LDAPError, new_error


class FilterType(IntEnum):
    """The choices of an LDAP Filter."""

    AND = 0
    OR = 1
    NOT = 2
    EQUALITY_MATCH = 3
    SUBSTRINGS = 4
    GREATER_OR_EQUAL = 5
    LESS_OR_EQUAL = 6
    PRESENT = 7
    APPROX_MATCH = 8
    EXTENSIBLE_MATCH = 9

    @property
    def description(self) -> str:
        return FILTER_DESCRIPTIONS[self]


FILTER_DESCRIPTIONS = {
    FilterType.AND: "And",
    FilterType.OR: "Or",
    FilterType.NOT: "Not",
    FilterType.EQUALITY_MATCH: "Equality Match",
    FilterType.SUBSTRINGS: "Substrings",
    FilterType.GREATER_OR_EQUAL: "Greater Or Equal",
    FilterType.LESS_OR_EQUAL: "Less Or Equal",
    FilterType.PRESENT: "Present",
    FilterType.APPROX_MATCH: "Approx Match",
    FilterType.EXTENSIBLE_MATCH: "Extensible Match",
}


class SubstringType(IntEnum):
    """The choices of a SubstringFilter element."""

    INITIAL = 0
    ANY = 1
    FINAL = 2

    @property
    def description(self) -> str:
        return SUBSTRING_DESCRIPTIONS[self]


SUBSTRING_DESCRIPTIONS = {
    SubstringType.INITIAL: "Substrings Initial",
    SubstringType.ANY: "Substrings Any",
    SubstringType.FINAL: "Substrings Final",
}


class MatchingRuleAssertion(IntEnum):
    """The fields of a MatchingRuleAssertion."""

    MATCHING_RULE = 1
    TYPE = 2
    MATCH_VALUE = 3
    DN_ATTRIBUTES = 4

    @property
    def description(self) -> str:
        return MATCHING_RULE_DESCRIPTIONS[self]


MATCHING_RULE_DESCRIPTIONS = {
    MatchingRuleAssertion.MATCHING_RULE: "Matching Rule Assertion Matching Rule",
    MatchingRuleAssertion.TYPE: "Matching Rule Assertion Type",
    MatchingRuleAssertion.MATCH_VALUE: "Matching Rule Assertion Match Value",
    MatchingRuleAssertion.DN_ATTRIBUTES: "Matching Rule Assertion DN Attributes",
}

_RUNE_ERROR = "\ufffd"
_ANY = b"*"
_OPEN = ord("(")
_HEX_DIGITS = b"0123456789abcdefABCDEF"
_MUST_ESCAPE = frozenset(b"\x00()*\\")

_READING_ATTR = 0
_READING_RULE = 1
_READING_CONDITION = 2


def _compile_error(message: str) -> LDAPError:
    return new_error(ERROR_FILTER_COMPILE, message)


def _as_bytes(text: Union[str, bytes]) -> bytes:
    if isinstance(text, str):
        return text.encode("utf-8", "surrogateescape")
    return bytes(text)


def _decode_rune(data: bytes, pos: int) -> tuple[str, int]:
    """Decode one UTF-8 character; invalid input yields U+FFFD of width 1."""
    if pos >= len(data):
        return _RUNE_ERROR, 0
    lead = data[pos]
    if lead < 0x80:
        return chr(lead), 1
    if 0xC2 <= lead <= 0xDF:
        size = 2
    elif 0xE0 <= lead <= 0xEF:
        size = 3
    elif 0xF0 <= lead <= 0xF4:
        size = 4
    else:
        return _RUNE_ERROR, 1
    try:
        return data[pos : pos + size].decode("utf-8"), size
    except UnicodeDecodeError:
        return _RUNE_ERROR, 1


def _describe_byte(octet: int) -> str:
    char = chr(octet)
    if char.isprintable():
        return f"U+{octet:04X} '{char}'"
    return f"U+{octet:04X}"


def _unhex_pair(digits: bytes) -> int:
    for octet in digits:
        if octet not in _HEX_DIGITS:
            raise ValueError(f"encoding/hex: invalid byte: {_describe_byte(octet)}")
    return int(digits.decode("ascii"), 16)


def escape_filter(text: Union[str, bytes]) -> str:
    """Escape NUL, parentheses, ``*``, ``\\`` and non-ASCII bytes as ``\\xx``."""
    return "".join(
        f"\\{octet:02x}" if octet > 0x7F or octet in _MUST_ESCAPE else chr(octet)
        for octet in _as_bytes(text)
    )


def decode_escaped_symbols(src: Union[str, bytes]) -> bytes:
    """Turn ``ABC\\xx\\xx`` filter text into the literal octets it stands for."""
    data = _as_bytes(src)
    out = bytearray()
    pos = 0
    offset = 0
    while pos < len(data):
        char, size = _decode_rune(data, pos)
        if char == _RUNE_ERROR:
            raise _compile_error(f"ldap: error reading rune at position {offset}")
        pos += size
        if char == "\\":
            digits = data[pos : pos + 2]
            if not digits:
                raise _compile_error("ldap: invalid characters for escape in filter: EOF")
            if len(digits) == 1:
                raise _compile_error("ldap: missing characters for escape in filter")
            pos += 2
            try:
                out.append(_unhex_pair(digits))
            except ValueError as exc:
                raise _compile_error(
                    f"ldap: invalid characters for escape in filter: {exc}"
                ) from exc
        else:
            out += char.encode("utf-8")
        offset += size
    return bytes(out)


def _constructed(filter_type: FilterType) -> Packet:
    return encode(
        BerClass.CONTEXT, BerType.CONSTRUCTED, filter_type, None, filter_type.description
    )


def _compile_set(data: bytes, pos: int, parent: Packet) -> int:
    while pos < len(data) and data[pos] == _OPEN:
        child, pos = _compile(data, pos + 1)
        parent.append_child(child)
    if pos == len(data):
        raise _compile_error("ldap: unexpected end of filter")
    return pos + 1


def _compile(data: bytes, pos: int) -> tuple[Packet, int]:
    char, width = _decode_rune(data, pos)
    if char == _RUNE_ERROR:
        raise _compile_error(f"ldap: error reading rune at position {pos}")
    if char == "(":
        packet, new_pos = _compile(data, pos + width)
        return packet, new_pos + 1
    if char in ("&", "|"):
        packet = _constructed(FilterType.AND if char == "&" else FilterType.OR)
        return packet, _compile_set(data, pos + width, packet)
    if char == "!":
        packet = _constructed(FilterType.NOT)
        child, new_pos = _compile(data, pos + width)
        packet.append_child(child)
        return packet, new_pos
    return _compile_item(data, pos)


def _compile_item(data: bytes, pos: int) -> tuple[Packet, int]:
    end = len(data)
    state = _READING_ATTR
    attribute = bytearray()
    rule = bytearray()
    condition = bytearray()
    dn_attributes = False
    filter_type = None
    new_pos = pos
    width = 0

    while new_pos < end:
        char, width = _decode_rune(data, new_pos)
        if char == ")":
            break
        if char == _RUNE_ERROR:
            raise _compile_error(f"ldap: error reading rune at position {new_pos}")

        if state == _READING_ATTR:
            if char == ":" and data.startswith(b":dn:=", new_pos):
                filter_type = FilterType.EXTENSIBLE_MATCH
                dn_attributes = True
                state = _READING_CONDITION
                new_pos += 5
            elif char == ":" and data.startswith(b":dn:", new_pos):
                filter_type = FilterType.EXTENSIBLE_MATCH
                dn_attributes = True
                state = _READING_RULE
                new_pos += 4
            elif char == ":" and data.startswith(b":=", new_pos):
                filter_type = FilterType.EXTENSIBLE_MATCH
                state = _READING_CONDITION
                new_pos += 2
            elif char == ":":
                filter_type = FilterType.EXTENSIBLE_MATCH
                state = _READING_RULE
                new_pos += 1
            elif char == "=":
                filter_type = FilterType.EQUALITY_MATCH
                state = _READING_CONDITION
                new_pos += 1
            elif char == ">" and data.startswith(b">=", new_pos):
                filter_type = FilterType.GREATER_OR_EQUAL
                state = _READING_CONDITION
                new_pos += 2
            elif char == "<" and data.startswith(b"<=", new_pos):
                filter_type = FilterType.LESS_OR_EQUAL
                state = _READING_CONDITION
                new_pos += 2
            elif char == "~" and data.startswith(b"~=", new_pos):
                filter_type = FilterType.APPROX_MATCH
                state = _READING_CONDITION
                new_pos += 2
            else:
                attribute += data[new_pos : new_pos + width]
                new_pos += width
        elif state == _READING_RULE:
            if char == ":" and data.startswith(b":=", new_pos):
                state = _READING_CONDITION
                new_pos += 2
            else:
                rule += data[new_pos : new_pos + width]
                new_pos += width
        else:
            condition += data[new_pos : new_pos + width]
            new_pos += width

    if new_pos == end:
        raise _compile_error("ldap: unexpected end of filter")
    if filter_type is None:
        raise _compile_error("ldap: error parsing filter")

    attr = bytes(attribute)
    cond = bytes(condition)

    if filter_type == FilterType.EXTENSIBLE_MATCH:
        packet = _constructed(filter_type)
        if rule:
            packet.append_child(
                new_string(
                    BerClass.CONTEXT,
                    BerType.PRIMITIVE,
                    MatchingRuleAssertion.MATCHING_RULE,
                    bytes(rule),
                    MatchingRuleAssertion.MATCHING_RULE.description,
                )
            )
        if attr:
            packet.append_child(
                new_string(
                    BerClass.CONTEXT,
                    BerType.PRIMITIVE,
                    MatchingRuleAssertion.TYPE,
                    attr,
                    MatchingRuleAssertion.TYPE.description,
                )
            )
        packet.append_child(
            new_string(
                BerClass.CONTEXT,
                BerType.PRIMITIVE,
                MatchingRuleAssertion.MATCH_VALUE,
                decode_escaped_symbols(cond),
                MatchingRuleAssertion.MATCH_VALUE.description,
            )
        )
        if dn_attributes:
            packet.append_child(
                new_boolean(
                    BerClass.CONTEXT,
                    BerType.PRIMITIVE,
                    MatchingRuleAssertion.DN_ATTRIBUTES,
                    True,
                    MatchingRuleAssertion.DN_ATTRIBUTES.description,
                )
            )
    elif filter_type == FilterType.EQUALITY_MATCH and cond == _ANY:
        packet = new_string(
            BerClass.CONTEXT,
            BerType.PRIMITIVE,
            FilterType.PRESENT,
            attr,
            FilterType.PRESENT.description,
        )
    elif filter_type == FilterType.EQUALITY_MATCH and _ANY in cond:
        packet = _constructed(FilterType.SUBSTRINGS)
        packet.append_child(
            new_string(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.OCTET_STRING, attr, "Attribute")
        )
        seq = encode(BerClass.UNIVERSAL, BerType.CONSTRUCTED, Tag.SEQUENCE, None, "Substrings")
        parts = cond.split(_ANY)
        last = len(parts) - 1
        for index, part in enumerate(parts):
            if not part:
                continue
            if index == 0:
                kind = SubstringType.INITIAL
            elif index == last:
                kind = SubstringType.FINAL
            else:
                kind = SubstringType.ANY
            seq.append_child(
                new_string(
                    BerClass.CONTEXT,
                    BerType.PRIMITIVE,
                    kind,
                    decode_escaped_symbols(part),
                    kind.description,
                )
            )
        packet.append_child(seq)
    else:
        value = decode_escaped_symbols(cond)
        packet = _constructed(filter_type)
        packet.append_child(
            new_string(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.OCTET_STRING, attr, "Attribute")
        )
        packet.append_child(
            new_string(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.OCTET_STRING, value, "Condition")
        )

    return packet, new_pos + width


def compile_filter(text: Union[str, bytes]) -> Packet:
    """Compile the string representation of a filter into a BER packet."""
    data = _as_bytes(text)
    if not data or data[0] != _OPEN:
        raise _compile_error("ldap: filter does not start with an '('")
    packet, pos = _compile(data, 1)
    if pos > len(data):
        raise _compile_error("ldap: unexpected end of filter")
    if pos < len(data):
        raise _compile_error(
            "ldap: finished compiling filter with extra at end: "
            + decode_string(data[pos:])
        )
    return packet


def _text(packet: Packet) -> str:
    return decode_string(packet.data)


def _decompile(packet: Packet) -> str:
    tag = packet.tag
    if tag == FilterType.AND:
        body = "&" + "".join(_decompile(child) for child in packet.children)
    elif tag == FilterType.OR:
        body = "|" + "".join(_decompile(child) for child in packet.children)
    elif tag == FilterType.NOT:
        body = "!" + _decompile(packet.children[0])
    elif tag == FilterType.SUBSTRINGS:
        parts = [_text(packet.children[0]), "="]
        for index, child in enumerate(packet.children[1].children):
            if index == 0 and child.tag != SubstringType.INITIAL:
                parts.append("*")
            parts.append(escape_filter(_text(child)))
            if child.tag != SubstringType.FINAL:
                parts.append("*")
        body = "".join(parts)
    elif tag == FilterType.EQUALITY_MATCH:
        body = _text(packet.children[0]) + "=" + escape_filter(_text(packet.children[1]))
    elif tag == FilterType.GREATER_OR_EQUAL:
        body = _text(packet.children[0]) + ">=" + escape_filter(_text(packet.children[1]))
    elif tag == FilterType.LESS_OR_EQUAL:
        body = _text(packet.children[0]) + "<=" + escape_filter(_text(packet.children[1]))
    elif tag == FilterType.PRESENT:
        body = _text(packet) + "=*"
    elif tag == FilterType.APPROX_MATCH:
        body = _text(packet.children[0]) + "~=" + escape_filter(_text(packet.children[1]))
    elif tag == FilterType.EXTENSIBLE_MATCH:
        attr = rule = value = ""
        dn_attributes = False
        for child in packet.children:
            if child.tag == MatchingRuleAssertion.MATCHING_RULE:
                rule = _text(child)
            elif child.tag == MatchingRuleAssertion.TYPE:
                attr = _text(child)
            elif child.tag == MatchingRuleAssertion.MATCH_VALUE:
                value = _text(child)
            elif child.tag == MatchingRuleAssertion.DN_ATTRIBUTES:
                flag = child.value
                dn_attributes = flag if isinstance(flag, bool) else any(child.data)
        parts = [attr]
        if dn_attributes:
            parts.append(":dn")
        if rule:
            parts.append(":" + rule)
        parts.append(":=" + escape_filter(value))
        body = "".join(parts)
    else:
        body = ""
    return "(" + body + ")"


def decompile_filter(packet: Packet) -> str:
    """Turn a filter packet back into its string representation."""
    try:
        return _decompile(packet)
    except LDAPError:
        raise
    except (IndexError, AttributeError, TypeError, ValueError, KeyError) as exc:
        raise new_error(ERROR_FILTER_DECOMPILE, "ldap: error decompiling filter") from exc