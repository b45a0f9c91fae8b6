"""Search requests, result entries and the decoding of search responses."""

from __future__ import annotations

import dataclasses
import re
import typing
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterable, Mapping, Optional

from .ber import (
    BerClass,
    BerType,
    Packet,
    Tag,
    encode,
    new_boolean,
    new_integer,
    new_sequence,
    new_string,
)
from .errors import get_ldap_error
from .filter import compile_filter
from .requests import Application


class Scope(IntEnum):
    """How deep below the base object a search reaches."""

    BASE_OBJECT = 0
    SINGLE_LEVEL = 1
    WHOLE_SUBTREE = 2

    @property
    def description(self) -> str:
        return SCOPE_DESCRIPTIONS[self]


SCOPE_DESCRIPTIONS = {
    Scope.BASE_OBJECT: "Base Object",
    Scope.SINGLE_LEVEL: "Single Level",
    Scope.WHOLE_SUBTREE: "Whole Subtree",
}


class DerefAliases(IntEnum):
    """When the server dereferences aliases during a search."""

    NEVER = 0
    IN_SEARCHING = 1
    FINDING_BASE_OBJ = 2
    ALWAYS = 3

    @property
    def description(self) -> str:
        return DEREF_DESCRIPTIONS[self]


DEREF_DESCRIPTIONS = {
    DerefAliases.NEVER: "NeverDerefAliases",
    DerefAliases.IN_SEARCHING: "DerefInSearching",
    DerefAliases.FINDING_BASE_OBJ: "DerefFindingBaseObj",
    DerefAliases.ALWAYS: "DerefAlways",
}

_TAG_KEY = "ldap"
_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

_STRING_HINTS = {
    "str": str,
    "int": int,
    "bytes": bytes,
    "list[str]": list[str],
    "List[str]": list[str],
    "typing.List[str]": list[str],
}


def _equal_fold(left: str, right: str) -> bool:
    if len(left) != len(right):
        return False
    return all(
        a == b or a.lower() == b.lower() or a.upper() == b.upper()
        for a, b in zip(left, right)
    )


def _format_values(values: Iterable[str]) -> str:
    return "[" + " ".join(values) + "]"


@dataclass
class EntryAttribute:
    """One attribute of an entry, with its values as text and as raw octets."""

    name: str
    values: list = field(default_factory=list)
    byte_values: list = field(default_factory=list)

    def print(self) -> None:
        """Write ``name: [values]`` to standard output."""
        print(f"{self.name}: {_format_values(self.values)}")

    def pretty_print(self, indent: int) -> None:
        """Like :meth:`print`, indented by ``indent`` spaces."""
        print(f"{' ' * indent}{self.name}: {_format_values(self.values)}")


def new_entry_attribute(name: str, values: Iterable[str]) -> EntryAttribute:
    """Build an attribute whose raw values are the UTF-8 form of ``values``."""
    values = list(values)
    return EntryAttribute(
        name=name,
        values=values,
        byte_values=[value.encode("utf-8", "surrogateescape") for value in values],
    )


def _read_tag(dc_field: dataclasses.Field) -> tuple[str, bool]:
    """Return the attribute name a field maps to and whether it is ``omitempty``."""
    tag = dc_field.metadata.get(_TAG_KEY)
    if tag is None:
        return dc_field.name, False
    options = tag.split(",")
    omit = len(options) == 2 and options[1] == "omitempty"
    return options[0], omit


def _resolve_hint(hint: Any) -> Any:
    """Map a field's annotation, possibly written as text, to a type."""
    if isinstance(hint, str):
        return _STRING_HINTS.get(hint.replace(" ", ""), hint)
    return hint


def _is_string_list(hint: Any) -> bool:
    return typing.get_origin(hint) is list and typing.get_args(hint) == (str,)


def _parse_int(text: str) -> int:
    if not _INT_PATTERN.fullmatch(text):
        raise ValueError(f"ldap: could not parse value '{text}' into int field")
    number = int(text)
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise ValueError(f"ldap: could not parse value '{text}' into int field")
    return number


@dataclass
class Entry:
    """A single search result entry."""

    dn: str = ""
    attributes: list = field(default_factory=list)

    def _find(self, attribute: str, fold: bool) -> Optional[EntryAttribute]:
        for attr in self.attributes:
            if (_equal_fold(attr.name, attribute) if fold else attr.name == attribute):
                return attr
        return None

    def get_attribute_values(self, attribute: str) -> list:
        """Values of the named attribute, or an empty list."""
        attr = self._find(attribute, False)
        return attr.values if attr is not None else []

    def get_equal_fold_attribute_values(self, attribute: str) -> list:
        """Values of the attribute, matching its name ignoring case."""
        attr = self._find(attribute, True)
        return attr.values if attr is not None else []

    def get_raw_attribute_values(self, attribute: str) -> list:
        """Raw values of the named attribute, or an empty list."""
        attr = self._find(attribute, False)
        return attr.byte_values if attr is not None else []

    def get_equal_fold_raw_attribute_values(self, attribute: str) -> list:
        """Raw values of the attribute, matching its name ignoring case."""
        attr = self._find(attribute, True)
        return attr.byte_values if attr is not None else []

    def get_attribute_value(self, attribute: str) -> str:
        """First value of the named attribute, or ''."""
        values = self.get_attribute_values(attribute)
        return values[0] if values else ""

    def get_equal_fold_attribute_value(self, attribute: str) -> str:
        """First value of the attribute matched ignoring case, or ''."""
        values = self.get_equal_fold_attribute_values(attribute)
        return values[0] if values else ""

    def get_raw_attribute_value(self, attribute: str) -> bytes:
        """First raw value of the named attribute, or b''."""
        values = self.get_raw_attribute_values(attribute)
        return values[0] if values else b""

    def get_equal_fold_raw_attribute_value(self, attribute: str) -> bytes:
        """First raw value of the attribute matched ignoring case, or b''."""
        values = self.get_equal_fold_raw_attribute_values(attribute)
        return values[0] if values else b""

    def print(self) -> None:
        """Write the DN and every attribute to standard output."""
        print(f"DN: {self.dn}")
        for attr in self.attributes:
            attr.print()

    def pretty_print(self, indent: int) -> None:
        """Like :meth:`print`, indented; attributes two spaces deeper."""
        print(f"{' ' * indent}DN: {self.dn}")
        for attr in self.attributes:
            attr.pretty_print(indent + 2)

    def unmarshal(self, target: Any) -> None:
        """Fill the fields of a dataclass instance from this entry.

        A field maps to the attribute named by its ``ldap`` metadata, or by its
        own name. The name ``dn`` receives the entry's DN. Supported field types
        are ``str``, ``list[str]``, ``int`` and ``bytes``; a single-valued field
        takes the first value. Fields starting with ``_`` are left alone and
        attributes that are missing leave their fields untouched.
        """
        if isinstance(target, type) or not dataclasses.is_dataclass(target):
            raise TypeError(
                f"ldap: expected a dataclass instance, got {type(target).__name__}"
            )

        for dc_field in dataclasses.fields(target):
            if dc_field.name.startswith("_"):
                continue
            tag, _ = _read_tag(dc_field)
            if tag == "dn":
                setattr(target, dc_field.name, self.dn)
                continue

            values = self.get_attribute_values(tag)
            if not values:
                continue

            hint = _resolve_hint(dc_field.type)
            if _is_string_list(hint):
                current = getattr(target, dc_field.name, None)
                if isinstance(current, list):
                    current.extend(values)
                else:
                    setattr(target, dc_field.name, list(values))
            elif hint is str:
                setattr(target, dc_field.name, values[0])
            elif hint is bytes:
                setattr(target, dc_field.name, values[0].encode("utf-8", "surrogateescape"))
            elif hint is int:
                setattr(target, dc_field.name, _parse_int(values[0]))
            else:
                raise TypeError(
                    "ldap: expected field to be of type str, list[str], int or bytes, "
                    f"got {hint!r}"
                )


def new_entry(dn: str, attributes: Mapping[str, Iterable[str]]) -> Entry:
    """Build an entry whose attributes follow the alphabetical order of their names."""
    return Entry(
        dn=dn,
        attributes=[new_entry_attribute(name, attributes[name]) for name in sorted(attributes)],
    )


def unpack_attributes(children: Iterable[Packet]) -> list:
    """Turn PartialAttributeList packets into entry attributes."""
    attributes = []
    for child in children:
        value_packets = child.children[1].children
        attributes.append(
            EntryAttribute(
                name=child.children[0].value,
                values=[value.value for value in value_packets],
                byte_values=[value.data for value in value_packets],
            )
        )
    return attributes


@dataclass
class SearchResult:
    """Entries, referrals and controls collected from a search."""

    entries: list = field(default_factory=list)
    referrals: list = field(default_factory=list)
    controls: list = field(default_factory=list)

    def print(self) -> None:
        """Print every entry."""
        for entry in self.entries:
            entry.print()

    def pretty_print(self, indent: int) -> None:
        """Print every entry, indented."""
        for entry in self.entries:
            entry.pretty_print(indent)

    def add_response(self, packet: Packet) -> bool:
        """Take in one response message of a search.

        Returns True once the search is done. A failed result is raised as an
        LDAPError; what was collected before stays in this result.
        """
        response = packet.children[1]
        if response.tag == Application.SEARCH_RESULT_ENTRY:
            self.entries.append(
                Entry(
                    dn=response.children[0].value,
                    attributes=unpack_attributes(response.children[1].children),
                )
            )
        elif response.tag == Application.SEARCH_RESULT_DONE:
            error = get_ldap_error(packet)
            if error is not None:
                raise error
            if len(packet.children) == 3:
                self.controls.extend(packet.children[2].children)
            return True
        elif response.tag == Application.SEARCH_RESULT_REFERENCE:
            self.referrals.append(response.children[0].value)
        return False


def _encode_controls(controls: Iterable[Any]) -> Packet:
    packet = encode(BerClass.CONTEXT, BerType.CONSTRUCTED, 0, None, "Controls")
    for control in controls:
        packet.append_child(control if isinstance(control, Packet) else control.encode())
    return packet


@dataclass
class SearchRequest:
    """A search to send to the server."""

    base_dn: str
    scope: int
    deref_aliases: int
    size_limit: int
    time_limit: int
    types_only: bool
    filter: str
    attributes: list = field(default_factory=list)
    controls: list = field(default_factory=list)

    def append_to(self, envelope: Packet) -> None:
        """Add the encoded request, and any controls, to an LDAPMessage.

        Raises LDAPError when the filter does not compile.
        """
        pkt = encode(
            BerClass.APPLICATION,
            BerType.CONSTRUCTED,
            Application.SEARCH_REQUEST,
            None,
            "Search Request",
        )
        pkt.append_child(
            new_string(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.OCTET_STRING, self.base_dn, "Base DN")
        )
        pkt.append_child(
            new_integer(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.ENUMERATED, int(self.scope), "Scope")
        )
        pkt.append_child(
            new_integer(
                BerClass.UNIVERSAL,
                BerType.PRIMITIVE,
                Tag.ENUMERATED,
                int(self.deref_aliases),
                "Deref Aliases",
            )
        )
        pkt.append_child(
            new_integer(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.INTEGER, int(self.size_limit), "Size Limit")
        )
        pkt.append_child(
            new_integer(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.INTEGER, int(self.time_limit), "Time Limit")
        )
        pkt.append_child(
            new_boolean(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.BOOLEAN, self.types_only, "Types Only")
        )
        pkt.append_child(compile_filter(self.filter))
        attributes = new_sequence("Attributes")
        for attribute in self.attributes:
            attributes.append_child(
                new_string(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.OCTET_STRING, attribute, "Attribute")
            )
        pkt.append_child(attributes)
        envelope.append_child(pkt)
        if self.controls:
            envelope.append_child(_encode_controls(self.controls))