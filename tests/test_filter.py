import pytest

from ldapwire.ber import BerClass, BerType, Packet, decode_packet
from ldapwire.errors import ERROR_FILTER_COMPILE, ERROR_FILTER_DECOMPILE, LDAPError
from ldapwire.filter import (
    FilterType,
    MatchingRuleAssertion,
    SubstringType,
    compile_filter,
    decode_escaped_symbols,
    decompile_filter,
    escape_filter,
)

COMPILE_CASES = [
    ("(&(sn=Miller)(givenName=Bob))", "(&(sn=Miller)(givenName=Bob))", FilterType.AND),
    ("(|(sn=Miller)(givenName=Bob))", "(|(sn=Miller)(givenName=Bob))", FilterType.OR),
    ("(!(sn=Miller))", "(!(sn=Miller))", FilterType.NOT),
    ("(sn=Miller)", "(sn=Miller)", FilterType.EQUALITY_MATCH),
    ("(sn=Mill*)", "(sn=Mill*)", FilterType.SUBSTRINGS),
    ("(sn=*Mill)", "(sn=*Mill)", FilterType.SUBSTRINGS),
    ("(sn=*Mill*)", "(sn=*Mill*)", FilterType.SUBSTRINGS),
    ("(sn=*i*le*)", "(sn=*i*le*)", FilterType.SUBSTRINGS),
    ("(sn=Mi*l*r)", "(sn=Mi*l*r)", FilterType.SUBSTRINGS),
    ("(sn=Mi*함*r)", r"(sn=Mi*\ed\95\a8*r)", FilterType.SUBSTRINGS),
    (r"(sn=Mi*\ed\95\a8*r)", r"(sn=Mi*\ed\95\a8*r)", FilterType.SUBSTRINGS),
    ("(sn=Mi*le*)", "(sn=Mi*le*)", FilterType.SUBSTRINGS),
    ("(sn=*i*ler)", "(sn=*i*ler)", FilterType.SUBSTRINGS),
    ("(sn>=Miller)", "(sn>=Miller)", FilterType.GREATER_OR_EQUAL),
    ("(sn<=Miller)", "(sn<=Miller)", FilterType.LESS_OR_EQUAL),
    ("(sn=*)", "(sn=*)", FilterType.PRESENT),
    ("(sn~=Miller)", "(sn~=Miller)", FilterType.APPROX_MATCH),
    (
        r"(objectGUID='\fc\fe\a3\ab\f9\90N\aaGm\d5I~\d12)",
        r"(objectGUID='\fc\fe\a3\ab\f9\90N\aaGm\d5I~\d12)",
        FilterType.EQUALITY_MATCH,
    ),
    (
        "(objectGUID=абвгдеёжзийклмнопрстуфхцчшщъыьэюя)",
        r"(objectGUID=\d0\b0\d0\b1\d0\b2\d0\b3\d0\b4\d0\b5\d1\91\d0\b6\d0\b7\d0\b8"
        r"\d0\b9\d0\ba\d0\bb\d0\bc\d0\bd\d0\be\d0\bf\d1\80\d1\81\d1\82\d1\83\d1\84"
        r"\d1\85\d1\86\d1\87\d1\88\d1\89\d1\8a\d1\8b\d1\8c\d1\8d\d1\8e\d1\8f)",
        FilterType.EQUALITY_MATCH,
    ),
    (
        "(objectGUID=함수목록)",
        r"(objectGUID=\ed\95\a8\ec\88\98\eb\aa\a9\eb\a1\9d)",
        FilterType.EQUALITY_MATCH,
    ),
    (
        "(&(objectclass=inetorgperson)(cn=中文))",
        r"(&(objectclass=inetorgperson)(cn=\e4\b8\ad\e6\96\87))",
        FilterType.AND,
    ),
    ("(memberOf:=foo)", "(memberOf:=foo)", FilterType.EXTENSIBLE_MATCH),
    ("(memberOf:test:=foo)", "(memberOf:test:=foo)", FilterType.EXTENSIBLE_MATCH),
    ("(cn:1.2.3.4.5:=Fred Flintstone)", "(cn:1.2.3.4.5:=Fred Flintstone)", FilterType.EXTENSIBLE_MATCH),
    (
        "(sn:dn:2.4.6.8.10:=Barney Rubble)",
        "(sn:dn:2.4.6.8.10:=Barney Rubble)",
        FilterType.EXTENSIBLE_MATCH,
    ),
    ("(o:dn:=Ace Industry)", "(o:dn:=Ace Industry)", FilterType.EXTENSIBLE_MATCH),
    ("(:dn:2.4.6.8.10:=Dino)", "(:dn:2.4.6.8.10:=Dino)", FilterType.EXTENSIBLE_MATCH),
    (
        "(memberOf:1.2.840.113556.1.4.1941:=CN=User1,OU=blah,DC=mydomain,DC=net)",
        "(memberOf:1.2.840.113556.1.4.1941:=CN=User1,OU=blah,DC=mydomain,DC=net)",
        FilterType.EXTENSIBLE_MATCH,
    ),
]


@pytest.mark.parametrize("text, expected, filter_type", COMPILE_CASES)
def test_compile_and_decompile(text, expected, filter_type):
    packet = compile_filter(text)
    assert packet.tag == filter_type
    assert decompile_filter(packet) == expected


@pytest.mark.parametrize("text, expected, filter_type", COMPILE_CASES)
def test_round_trip_through_wire_bytes(text, expected, filter_type):
    decoded = decode_packet(compile_filter(text).to_bytes())
    assert decoded.tag == filter_type
    assert decompile_filter(decoded) == expected


@pytest.mark.parametrize(
    "text",
    ["(objectGUID=", "(objectGUID=함수목록", "((cn=)"],
)
def test_unexpected_end_of_filter(text):
    with pytest.raises(LDAPError) as info:
        compile_filter(text)
    assert info.value.result_code == ERROR_FILTER_COMPILE
    assert "unexpected end of filter" in str(info.value)


@pytest.mark.parametrize("text", [r"(objectGUID=\zz)", r"(objectGUID=\a)"])
def test_invalid_filters(text):
    with pytest.raises(LDAPError) as info:
        compile_filter(text)
    assert info.value.result_code == ERROR_FILTER_COMPILE


@pytest.mark.parametrize("text", ["", "sn=Miller"])
def test_filter_must_start_with_parenthesis(text):
    with pytest.raises(LDAPError) as info:
        compile_filter(text)
    assert str(info.value).endswith("ldap: filter does not start with an '('")


def test_extra_text_after_filter():
    with pytest.raises(LDAPError) as info:
        compile_filter("(sn=Miller)tail")
    assert "finished compiling filter with extra at end: tail" in str(info.value)


def test_filter_without_operator_is_rejected():
    with pytest.raises(LDAPError) as info:
        compile_filter("(snMiller)")
    assert "ldap: error parsing filter" in str(info.value)


@pytest.mark.parametrize(
    "src, message",
    [
        (
            b"a\xc4\x80\x80",
            'LDAP Result Code 201 "Filter Compile Error": ldap: error reading rune at position 3',
        ),
        (
            b"start\\d",
            'LDAP Result Code 201 "Filter Compile Error": ldap: missing characters for escape in filter',
        ),
        (
            b"\\",
            'LDAP Result Code 201 "Filter Compile Error": ldap: invalid characters for escape in filter: EOF',
        ),
        (
            b"start\\--end",
            'LDAP Result Code 201 "Filter Compile Error": ldap: invalid characters for escape '
            "in filter: encoding/hex: invalid byte: U+002D '-'",
        ),
        (
            b"start\\d0\\hh",
            'LDAP Result Code 201 "Filter Compile Error": ldap: invalid characters for escape '
            "in filter: encoding/hex: invalid byte: U+0068 'h'",
        ),
    ],
)
def test_decode_escaped_symbols_errors(src, message):
    with pytest.raises(LDAPError) as info:
        decode_escaped_symbols(src)
    assert str(info.value) == message


def test_decode_escaped_symbols_values():
    assert decode_escaped_symbols(r"a\28b\29") == b"a(b)"
    assert decode_escaped_symbols("Lu\\c4\\8di") == "Luči".encode("utf-8")
    assert decode_escaped_symbols("함") == "함".encode("utf-8")


def test_escape_filter():
    assert escape_filter("a\x00b(c)d*e\\f") == r"a\00b\28c\29d\2ae\5cf"
    assert escape_filter("Lučić") == r"Lu\c4\8di\c4\87"


def test_escape_then_decode_round_trip():
    original = "x(*)\\y\x00ž"
    assert decode_escaped_symbols(escape_filter(original)) == original.encode("utf-8")


def test_substring_packet_structure():
    packet = compile_filter("(sn=Mi*l*r)")
    assert packet.description == "Substrings"
    assert packet.children[0].value == "sn"
    elements = packet.children[1].children
    assert [child.tag for child in elements] == [
        SubstringType.INITIAL,
        SubstringType.ANY,
        SubstringType.FINAL,
    ]
    assert [child.data for child in elements] == [b"Mi", b"l", b"r"]


def test_present_packet_structure():
    packet = compile_filter("(sn=*)")
    assert packet.tag == FilterType.PRESENT
    assert packet.class_type == BerClass.CONTEXT
    assert packet.data == b"sn"


def test_extensible_packet_structure():
    packet = compile_filter("(sn:dn:2.4.6.8.10:=Barney Rubble)")
    assert [child.tag for child in packet.children] == [
        MatchingRuleAssertion.MATCHING_RULE,
        MatchingRuleAssertion.TYPE,
        MatchingRuleAssertion.MATCH_VALUE,
        MatchingRuleAssertion.DN_ATTRIBUTES,
    ]
    assert packet.children[2].data == b"Barney Rubble"
    assert packet.children[3].value is True


def test_escaped_value_is_stored_as_raw_octets():
    packet = compile_filter(r"(cn=\00\ff)")
    assert packet.children[1].data == b"\x00\xff"


def test_decompile_malformed_packet():
    broken = Packet(class_type=BerClass.CONTEXT, tag_type=BerType.CONSTRUCTED, tag=FilterType.NOT)
    with pytest.raises(LDAPError) as info:
        decompile_filter(broken)
    assert info.value.result_code == ERROR_FILTER_DECOMPILE
    assert "ldap: error decompiling filter" in str(info.value)


def test_decompile_unknown_tag_gives_empty_filter():
    packet = Packet(class_type=BerClass.CONTEXT, tag_type=BerType.CONSTRUCTED, tag=15)
    assert decompile_filter(packet) == "()"