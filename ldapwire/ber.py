"""Minimal BER (Basic Encoding Rules) packets as used by the LDAP wire protocol."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Optional, Union


class BerClass(IntEnum):
    """The class bits of a BER identifier octet."""

    UNIVERSAL = 0x00
    APPLICATION = 0x40
    CONTEXT = 0x80
    PRIVATE = 0xC0


class BerType(IntEnum):
    """The primitive/constructed bit of a BER identifier octet."""

    PRIMITIVE = 0x00
    CONSTRUCTED = 0x20


class Tag(IntEnum):
    """Universal tag numbers."""

    EOC = 0
    BOOLEAN = 1
    INTEGER = 2
    BIT_STRING = 3
    OCTET_STRING = 4
    NULL = 5
    OBJECT_IDENTIFIER = 6
    OBJECT_DESCRIPTOR = 7
    EXTERNAL = 8
    REAL_FLOAT = 9
    ENUMERATED = 10
    EMBEDDED_PDV = 11
    UTF8_STRING = 12
    RELATIVE_OID = 13
    SEQUENCE = 16
    SET = 17
    NUMERIC_STRING = 18
    PRINTABLE_STRING = 19
    T61_STRING = 20
    VIDEOTEX_STRING = 21
    IA5_STRING = 22
    UTC_TIME = 23
    GENERALIZED_TIME = 24
    GRAPHIC_STRING = 25
    VISIBLE_STRING = 26
    GENERAL_STRING = 27
    UNIVERSAL_STRING = 28
    CHARACTER_STRING = 29
    BMP_STRING = 30


_STRING_TAGS = frozenset(
    {
        Tag.OCTET_STRING,
        Tag.OBJECT_DESCRIPTOR,
        Tag.UTF8_STRING,
        Tag.NUMERIC_STRING,
        Tag.PRINTABLE_STRING,
        Tag.T61_STRING,
        Tag.VIDEOTEX_STRING,
        Tag.IA5_STRING,
        Tag.UTC_TIME,
        Tag.GENERALIZED_TIME,
        Tag.GRAPHIC_STRING,
        Tag.VISIBLE_STRING,
        Tag.GENERAL_STRING,
    }
)


@dataclass
class Packet:
    """A BER element: primitive packets carry ``data``, constructed ones ``children``."""

    class_type: BerClass = BerClass.UNIVERSAL
    tag_type: BerType = BerType.PRIMITIVE
    tag: int = 0
    value: Any = None
    description: str = field(default="", compare=False)
    data: bytes = b""
    children: list = field(default_factory=list)

    def append_child(self, child: "Packet") -> None:
        """Add ``child`` as the last element of this packet."""
        self.children.append(child)

    def to_bytes(self) -> bytes:
        """Serialise the packet, children included, to BER octets."""
        if self.tag_type == BerType.CONSTRUCTED:
            content = b"".join(child.to_bytes() for child in self.children)
        else:
            content = self.data
        return (
            _encode_identifier(self.class_type, self.tag_type, self.tag)
            + _encode_length(len(content))
            + content
        )


def _encode_identifier(class_type: int, tag_type: int, tag: int) -> bytes:
    if tag < 0:
        raise ValueError(f"negative tag number {tag}")
    if tag < 0x1F:
        return bytes([class_type | tag_type | tag])
    groups = []
    while True:
        groups.append(tag & 0x7F)
        tag >>= 7
        if not tag:
            break
    groups.reverse()
    encoded = [g | 0x80 for g in groups[:-1]] + [groups[-1]]
    return bytes([class_type | tag_type | 0x1F, *encoded])


def _encode_length(length: int) -> bytes:
    if length < 0x80:
        return bytes([length])
    body = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def _encode_integer(number: int) -> bytes:
    magnitude = number if number >= 0 else ~number
    return number.to_bytes(magnitude.bit_length() // 8 + 1, "big", signed=True)


def _content_for(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, bool):
        return b"\xff" if value else b"\x00"
    if isinstance(value, int):
        return _encode_integer(value)
    if isinstance(value, str):
        return value.encode("utf-8", "surrogateescape")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"cannot BER-encode a value of type {type(value).__name__}")


def decode_string(data: bytes) -> str:
    """Return octets as text; bytes that are not UTF-8 survive a round trip."""
    return bytes(data).decode("utf-8", "surrogateescape")


def encode(
    class_type: int, tag_type: int, tag: int, value: Any, description: str
) -> Packet:
    """Build a packet; a primitive packet's content is derived from ``value``."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = decode_string(bytes(value))
    data = _content_for(value) if tag_type == BerType.PRIMITIVE else b""
    return Packet(
        class_type=BerClass(class_type),
        tag_type=BerType(tag_type),
        tag=int(tag),
        value=value,
        description=description,
        data=data,
    )


def new_string(
    class_type: int,
    tag_type: int,
    tag: int,
    value: Union[str, bytes],
    description: str,
) -> Packet:
    """Build a packet holding a string; bytes are taken as raw octets."""
    if not isinstance(value, (str, bytes, bytearray, memoryview)):
        raise TypeError("string packets need str or bytes")
    return encode(class_type, tag_type, tag, value, description)


def new_integer(
    class_type: int, tag_type: int, tag: int, value: int, description: str
) -> Packet:
    """Build a packet holding a two's-complement integer."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError("integer packets need an int")
    return encode(class_type, tag_type, tag, value, description)


def new_boolean(
    class_type: int, tag_type: int, tag: int, value: bool, description: str
) -> Packet:
    """Build a packet holding a boolean."""
    return encode(class_type, tag_type, tag, bool(value), description)


def new_sequence(description: str) -> Packet:
    """Build an empty universal SEQUENCE."""
    return encode(BerClass.UNIVERSAL, BerType.CONSTRUCTED, Tag.SEQUENCE, None, description)


def _read_packet(data: bytes, offset: int) -> tuple[Packet, int]:
    end = len(data)
    if offset >= end:
        raise ValueError("unexpected end of BER data reading identifier")
    first = data[offset]
    offset += 1
    class_type = BerClass(first & 0xC0)
    tag_type = BerType(first & 0x20)
    tag = first & 0x1F
    if tag == 0x1F:
        tag = 0
        while True:
            if offset >= end:
                raise ValueError("unexpected end of BER data reading tag")
            octet = data[offset]
            offset += 1
            tag = (tag << 7) | (octet & 0x7F)
            if not octet & 0x80:
                break

    if offset >= end:
        raise ValueError("unexpected end of BER data reading length")
    length = data[offset]
    offset += 1
    if length == 0x80:
        raise ValueError("indefinite length BER encoding is not supported")
    if length > 0x80:
        count = length & 0x7F
        if offset + count > end:
            raise ValueError("unexpected end of BER data reading length")
        length = int.from_bytes(data[offset : offset + count], "big")
        offset += count

    content_end = offset + length
    if content_end > end:
        raise ValueError(
            f"BER content of {length} octets exceeds the {end - offset} available"
        )

    packet = Packet(class_type=class_type, tag_type=tag_type, tag=tag)
    if tag_type == BerType.CONSTRUCTED:
        while offset < content_end:
            child, offset = _read_packet(data[:content_end], offset)
            packet.children.append(child)
        return packet, content_end

    content = bytes(data[offset:content_end])
    packet.data = content
    if class_type == BerClass.UNIVERSAL:
        if tag == Tag.BOOLEAN:
            packet.value = any(content)
        elif tag in (Tag.INTEGER, Tag.ENUMERATED):
            packet.value = int.from_bytes(content, "big", signed=True) if content else 0
        elif tag in _STRING_TAGS:
            packet.value = decode_string(content)
    return packet, content_end


def decode_packet(data: bytes) -> Packet:
    """Decode the first BER element found in ``data``; trailing octets are ignored."""
    packet, _ = _read_packet(bytes(data), 0)
    return packet