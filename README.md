# ldapwire

The pieces needed to build and read LDAP v3 messages, in pure Python with no
dependencies outside the standard library:

- `ldapwire.ber`: BER packets (`Packet`, `encode`, `new_string`, `new_integer`,
  `new_boolean`, `new_sequence`, `decode_packet`, `decode_string`) and the
  `BerClass`, `BerType` and `Tag` enums.
- `ldapwire.errors`: LDAP result codes and the `LDAPError` exception
  (`get_ldap_error`, `new_error`, `is_error_with_code`, `is_error_any_of`,
  `result_description`).
- `ldapwire.dn`: distinguished names as described in RFC 4514 (`parse_dn`, `DN`,
  `RelativeDN`, `AttributeTypeAndValue`, `DNError`).
- `ldapwire.filter`: search filters as described in RFC 4515 (`compile_filter`,
  `decompile_filter`, `escape_filter`, `decode_escaped_symbols`).
- `ldapwire.requests`: modify, modify-DN, unbind and "Who Am I?" requests
  (`ModifyRequest`, `ModifyDNRequest`, `UnbindRequest`, `build_request`,
  `whoami_request`) and the reading of their responses
  (`parse_modify_response`, `check_modify_dn_response`,
  `parse_whoami_response`, `get_referral`).
- `ldapwire.search`: search requests (`SearchRequest`, `Scope`,
  `DerefAliases`), result entries (`Entry`, `EntryAttribute`, `new_entry`,
  `SearchResult`) and unmarshalling entries into dataclasses.

## Install

```
pip install ldapwire
```

## Distinguished names

```python
from ldapwire.dn import parse_dn

a = parse_dn("OU=Sales+CN=J. Smith,DC=example,DC=net")
b = parse_dn("cn=J. Smith+ou=Sales,dc=example,dc=net")
assert a.equal(b)                       # attribute types compare ignoring case
assert parse_dn("DC=example,DC=net").ancestor_of(a)
print(a)  # cn=J. Smith+ou=Sales,dc=example,dc=net
```

`equal_fold` and `ancestor_of_fold` also ignore the case of values. A malformed
DN raises `DNError`.

## Filters

```python
from ldapwire.filter import compile_filter, decompile_filter, escape_filter

packet = compile_filter("(&(sn=Miller)(givenName=Bob))")
assert decompile_filter(packet) == "(&(sn=Miller)(givenName=Bob))"
assert escape_filter("a*b") == r"a\2ab"
```

An invalid filter raises `LDAPError` with result code 201 ("Filter Compile
Error").

## Building requests

```python
from ldapwire.requests import ModifyDNRequest, ModifyRequest, build_request, whoami_request

req = ModifyRequest("uid=someone,dc=example,dc=org")
req.replace("mail", ["someone@example.com"])
wire = build_request(1, req).to_bytes()

rename = ModifyDNRequest("uid=user,ou=people,dc=example,dc=org", "uid=new", True)
wire = build_request(2, rename).to_bytes()

wire = whoami_request(3).to_bytes()
```

Controls given to a request may be ready `Packet`s or objects with an
`encode()` method returning one.

## Searching

```python
from ldapwire.ber import decode_packet
from ldapwire.requests import build_request
from ldapwire.search import DerefAliases, Scope, SearchRequest, SearchResult

request = SearchRequest(
    base_dn="dc=example,dc=org",
    scope=Scope.WHOLE_SUBTREE,
    deref_aliases=DerefAliases.ALWAYS,
    size_limit=0,
    time_limit=0,
    types_only=False,
    filter="(objectClass=person)",
    attributes=["cn", "mail"],
)
wire = build_request(4, request).to_bytes()

result = SearchResult()
# For each response message received for this search:
#     if result.add_response(decode_packet(data)):
#         break
```

`add_response` collects entries and referrals and returns True on the final
message; a failed result is raised as `LDAPError`.

Entries can fill a dataclass. A field takes the attribute named in its `ldap`
metadata, or its own name; `dn` receives the entry's DN. Supported field types
are `str`, `list[str]`, `int` and `bytes`.

```python
from dataclasses import dataclass, field

@dataclass
class Group:
    dn: str = ""
    cn: str = ""
    members: list[str] = field(default_factory=list, metadata={"ldap": "member"})

group = Group()
entry.unmarshal(group)
```

## What it does not do

ldapwire does no network I/O: it opens no connections and performs no bind,
TLS or paging itself. You send the bytes over your own transport and decode the
replies. Bind, add, delete and compare requests are not provided, and response
controls are handed back as raw `Packet`s rather than decoded.

## Tests

```
pip install -e ".[test]"
pytest
```