from dataclasses import dataclass, field

import pytest

from ldapwire.ber import (
    BerClass,
    BerType,
    Tag,
    decode_packet,
    encode,
    new_integer,
    new_sequence,
    new_string,
)
from ldapwire.errors import LDAPError
from ldapwire.filter import decompile_filter
from ldapwire.search import (
    DerefAliases,
    Entry,
    EntryAttribute,
    Scope,
    SearchRequest,
    SearchResult,
    new_entry,
    new_entry_attribute,
    unpack_attributes,
)


def _octets(value, description=""):
    return new_string(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.OCTET_STRING, value, description)


def _message(op):
    packet = new_sequence("LDAPMessage")
    packet.append_child(new_integer(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.INTEGER, 1, "messageID"))
    packet.append_child(op)
    return decode_packet(packet.to_bytes())


def _attribute_packet(name, values):
    seq = new_sequence("attribute")
    seq.append_child(_octets(name))
    vals = encode(BerClass.UNIVERSAL, BerType.CONSTRUCTED, Tag.SET, None, "vals")
    for value in values:
        vals.append_child(_octets(value))
    seq.append_child(vals)
    return seq


def _entry_message(dn, attributes):
    op = encode(BerClass.APPLICATION, BerType.CONSTRUCTED, 4, None, "entry")
    op.append_child(_octets(dn))
    attrs = new_sequence("attributes")
    for name, values in attributes:
        attrs.append_child(_attribute_packet(name, values))
    op.append_child(attrs)
    return _message(op)


def _done_message(code, message=""):
    op = encode(BerClass.APPLICATION, BerType.CONSTRUCTED, 5, None, "done")
    op.append_child(new_integer(BerClass.UNIVERSAL, BerType.PRIMITIVE, Tag.ENUMERATED, code, "resultCode"))
    op.append_child(_octets(""))
    op.append_child(_octets(message))
    return _message(op)


def test_new_entry_is_repeatable():
    attributes = {
        "alpha": ["value"],
        "beta": ["value"],
        "gamma": ["value"],
        "delta": ["value"],
        "epsilon": ["value"],
    }
    first = new_entry("testDN", attributes)
    for _ in range(100):
        assert new_entry("testDN", attributes) == first
    assert [a.name for a in first.attributes] == ["alpha", "beta", "delta", "epsilon", "gamma"]


def test_get_attribute_value():
    attributes = {
        "Alpha": ["value"],
        "bEta": ["value"],
        "gaMma": ["value"],
        "delTa": ["value"],
        "epsiLon": ["value"],
    }
    entry = new_entry("testDN", attributes)
    assert entry.get_attribute_value("Alpha") == "value"
    assert entry.get_equal_fold_attribute_value("alpha") == "value"
    assert entry.get_attribute_value("alpha") == ""


def test_raw_values_and_missing():
    entry = new_entry("dn", {"cn": ["a", "b"]})
    assert entry.get_raw_attribute_values("cn") == [b"a", b"b"]
    assert entry.get_raw_attribute_value("cn") == b"a"
    assert entry.get_equal_fold_raw_attribute_value("CN") == b"a"
    assert entry.get_equal_fold_raw_attribute_values("CN") == [b"a", b"b"]
    assert entry.get_raw_attribute_value("missing") == b""
    assert entry.get_attribute_values("missing") == []
    assert entry.get_equal_fold_attribute_values("CN") == ["a", "b"]


def test_new_entry_attribute_bytes():
    attr = new_entry_attribute("cn", ["Lučić"])
    assert attr.byte_values == ["Lučić".encode("utf-8")]


def test_print_output(capsys):
    entry = new_entry("cn=x", {"cn": ["a", "b"]})
    SearchResult(entries=[entry]).print()
    assert capsys.readouterr().out == "DN: cn=x\ncn: [a b]\n"
    SearchResult(entries=[entry]).pretty_print(2)
    assert capsys.readouterr().out == "  DN: cn=x\n    cn: [a b]\n"


@dataclass
class User:
    dn: str = field(default="", metadata={"ldap": "dn"})
    cn: str = field(default="", metadata={"ldap": "cn"})
    mail: str = field(default="", metadata={"ldap": "mail"})
    id: int = field(default=0, metadata={"ldap": "id"})
    long_id: int = field(default=0, metadata={"ldap": "longId"})
    data: bytes = field(default=b"", metadata={"ldap": "data"})


@dataclass
class Group:
    dn: str = field(default="", metadata={"ldap": "dn"})
    cn: str = field(default="", metadata={"ldap": "cn"})
    members: list[str] = field(default_factory=list, metadata={"ldap": "member"})


@dataclass
class BadField:
    ratio: float = field(default=0.0, metadata={"ldap": "ratio"})


def test_unmarshal_rejects_class_and_non_dataclass():
    entry = Entry()
    with pytest.raises(TypeError):
        entry.unmarshal(User)
    with pytest.raises(TypeError):
        entry.unmarshal("foo")


def test_unmarshal_user():
    entry = Entry(
        dn="cn=mario,ou=Users,dc=example,dc=com",
        attributes=[
            EntryAttribute("cn", ["mario"]),
            EntryAttribute("mail", ["mario@example.com"]),
            EntryAttribute("id", ["2147483647"]),
            EntryAttribute("longId", ["9223372036854775807"]),
            EntryAttribute("data", ["data"], [b"data"]),
        ],
    )
    result = User()
    entry.unmarshal(result)
    assert result == User(
        dn="cn=mario,ou=Users,dc=example,dc=com",
        cn="mario",
        mail="mario@example.com",
        id=2147483647,
        long_id=9223372036854775807,
        data=b"data",
    )


def test_unmarshal_group():
    entry = Entry(
        dn="cn=DREAM_TEAM,ou=Groups,dc=example,dc=com",
        attributes=[
            EntryAttribute("cn", ["DREAM_TEAM"]),
            EntryAttribute("member", ["mario", "luigi", "browser"]),
        ],
    )
    result = Group()
    entry.unmarshal(result)
    assert result == Group(
        dn="cn=DREAM_TEAM,ou=Groups,dc=example,dc=com",
        cn="DREAM_TEAM",
        members=["mario", "luigi", "browser"],
    )


def test_unmarshal_bad_int():
    entry = Entry(attributes=[EntryAttribute("id", ["abc"])])
    with pytest.raises(ValueError, match="could not parse value 'abc'"):
        entry.unmarshal(User())
    overflow = Entry(attributes=[EntryAttribute("id", ["9223372036854775808"])])
    with pytest.raises(ValueError):
        overflow.unmarshal(User())


def test_unmarshal_unsupported_type():
    entry = Entry(attributes=[EntryAttribute("ratio", ["1.5"])])
    with pytest.raises(TypeError):
        entry.unmarshal(BadField())
    target = BadField()
    Entry().unmarshal(target)
    assert target.ratio == 0.0


def test_search_request_encoding():
    request = SearchRequest(
        "dc=example,dc=com",
        Scope.WHOLE_SUBTREE,
        DerefAliases.ALWAYS,
        10,
        5,
        False,
        "(objectClass=*)",
        ["cn", "description"],
    )
    envelope = new_sequence("LDAP Request")
    request.append_to(envelope)
    assert len(envelope.children) == 1
    decoded = decode_packet(envelope.children[0].to_bytes())
    assert decoded.class_type == BerClass.APPLICATION
    assert decoded.tag == 3
    children = decoded.children
    assert children[0].value == "dc=example,dc=com"
    assert [c.value for c in children[1:5]] == [2, 3, 10, 5]
    assert children[5].value is False
    assert decompile_filter(children[6]) == "(objectClass=*)"
    assert [c.value for c in children[7].children] == ["cn", "description"]


def test_search_request_with_controls_and_bad_filter():
    control = _octets("ctl")
    request = SearchRequest("dc=x", 0, 0, 0, 0, True, "(cn=a)", controls=[control])
    envelope = new_sequence("msg")
    request.append_to(envelope)
    assert len(envelope.children) == 2
    assert envelope.children[1].class_type == BerClass.CONTEXT
    assert envelope.children[1].children == [control]

    bad = SearchRequest("dc=x", 0, 0, 0, 0, False, "cn=a")
    with pytest.raises(LDAPError) as info:
        bad.append_to(new_sequence("msg"))
    assert info.value.result_code == 201


def test_add_response_collects_entries_and_referrals():
    result = SearchResult()
    entry_msg = _entry_message("cn=a,dc=x", [("cn", ["a"]), ("mail", ["a@example.com", "b@example.com"])])
    assert result.add_response(entry_msg) is False

    ref = encode(BerClass.APPLICATION, BerType.CONSTRUCTED, 19, None, "ref")
    ref.append_child(_octets("ldap://localhost/dc=y"))
    assert result.add_response(_message(ref)) is False

    assert result.add_response(_done_message(0)) is True
    assert len(result.entries) == 1
    entry = result.entries[0]
    assert entry.dn == "cn=a,dc=x"
    assert entry.get_attribute_values("mail") == ["a@example.com", "b@example.com"]
    assert entry.get_raw_attribute_value("cn") == b"a"
    assert result.referrals == ["ldap://localhost/dc=y"]


def test_add_response_raises_on_failure():
    result = SearchResult()
    with pytest.raises(LDAPError) as info:
        result.add_response(_done_message(32, "no such object"))
    assert info.value.result_code == 32
    assert info.value.message == "no such object"


def test_unpack_attributes():
    seq = new_sequence("attrs")
    seq.append_child(_attribute_packet("cn", ["x", "y"]))
    decoded = decode_packet(seq.to_bytes())
    attrs = unpack_attributes(decoded.children)
    assert attrs == [EntryAttribute("cn", ["x", "y"], [b"x", b"y"])]


def test_enum_descriptions():
    assert Scope(1).description == "Single Level"
    assert DerefAliases(2).description == "DerefFindingBaseObj"