# =============================================================================
# principals/identity.py - Principal classification and SID utilities
# =============================================================================

import re
import struct
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from principals.models import AccountType

logger = logging.getLogger(__name__)

SID_PATTERN = re.compile(r"^s-\d+-\d+(-\d+)+$", re.IGNORECASE)

# i:0#.w|domain\user, i:0#.f|membership|user@contoso.com, c:0+.w|s-1-5-21-...
CLAIMS_PATTERN = re.compile(
    r"^(?P<prefix>[ic]:0[^|]{1,5})\|(?:(?P<provider>[^|]+)\|)?(?P<value>[^|]+)$",
    re.IGNORECASE,
)

MEMBERSHIP_USER_CLAIM = "i:0#.f|membership|"

MULTI_VALUE_SEPARATOR = ";"

# Principals that have no directory object and must never be rewritten
WELL_KNOWN_PRINCIPALS = {
    "c:0!.s|windows",
    "c:0(.s|true",
    "sharepoint\\system",
    "everyone",
}
WELL_KNOWN_DOMAINS = {"nt authority", "builtin", "sharepoint"}


def is_sid(value: Optional[str]) -> bool:
    """Return True when value is a textual SID such as S-1-5-21-..."""
    if not value:
        return False
    return bool(SID_PATTERN.match(value.strip()))


def sid_bytes_to_string(sid_bytes: bytes) -> str:
    """Convert a binary objectSid/securityIdentifier to its S-1-... form"""
    if len(sid_bytes) < 8:
        raise ValueError("SID is too short")
    revision = sid_bytes[0]
    sub_authority_count = sid_bytes[1]
    identifier_authority = int.from_bytes(sid_bytes[2:8], byteorder='big')
    if len(sid_bytes) < 8 + sub_authority_count * 4:
        raise ValueError("SID is truncated")

    sid = f"S-{revision}-{identifier_authority}"
    for i in range(sub_authority_count):
        offset = 8 + (i * 4)
        sub_authority = struct.unpack('<I', sid_bytes[offset:offset + 4])[0]
        sid += f"-{sub_authority}"
    return sid


def domain_sid_of(sid: str) -> Optional[str]:
    """Strip the RID from a domain account SID (S-1-5-21-a-b-c-RID -> S-1-5-21-a-b-c)"""
    parts = sid.strip().upper().split('-')
    # S, revision, authority, 21, a, b, c, rid
    if len(parts) < 8 or parts[3] != '21':
        return None
    return '-'.join(parts[:-1])


def domain_to_dn(domain: str) -> str:
    """contoso.com -> DC=contoso,DC=com"""
    return ','.join(f'DC={part}' for part in domain.split('.') if part)


def dn_to_domain(distinguished_name: str) -> str:
    """DC=contoso,DC=com -> contoso.com (non-DC components are ignored)"""
    labels = []
    for component in distinguished_name.split(','):
        key, _, value = component.strip().partition('=')
        if key.strip().upper() == 'DC' and value:
            labels.append(value.strip())
    return '.'.join(labels).lower()


def split_account(name: str) -> Tuple[Optional[str], str]:
    """Split 'DOMAIN\\account' into (DOMAIN, account); bare names have no domain"""
    if '\\' in name:
        domain, _, account = name.partition('\\')
        return (domain.strip() or None), account.strip()
    return None, name.strip()


def is_well_known(raw: str) -> bool:
    """Built-in principals such as 'Everyone' or 'NT AUTHORITY\\...' are not remapped"""
    normalized = raw.strip().lower()
    if normalized in WELL_KNOWN_PRINCIPALS:
        return True
    domain, _ = split_account(normalized)
    return domain in WELL_KNOWN_DOMAINS


@dataclass(frozen=True)
class PrincipalIdentity:
    """A single classified principal reference"""
    raw: str
    account_type: AccountType
    identifier: str
    domain: Optional[str] = None
    is_sid: bool = False
    claim_prefix: Optional[str] = None
    claim_provider: Optional[str] = None
    well_known: bool = False

    @property
    def is_claims(self) -> bool:
        return self.claim_prefix is not None

    @property
    def qualified_name(self) -> str:
        """domain\\account, the SID, or the bare account"""
        if self.domain and not self.is_sid:
            return f"{self.domain}\\{self.identifier}"
        return self.identifier

    def lookup_keys(self) -> List[str]:
        """Mapping-table keys to try, most specific first"""
        keys = []
        for key in (self.raw, self.qualified_name, self.identifier):
            if key and key not in keys:
                keys.append(key)
        return keys

    def render(self, target: str) -> str:
        """Re-encode a resolved target in the shape the target environment expects"""
        if not self.is_claims or CLAIMS_PATTERN.match(target):
            return target
        is_windows_user = (
            self.account_type is AccountType.USER
            and self.claim_prefix.lower().endswith('.w')
        )
        if is_windows_user and '@' in target:
            return f"{MEMBERSHIP_USER_CLAIM}{target}"
        parts = [self.claim_prefix]
        if self.claim_provider:
            parts.append(self.claim_provider)
        parts.append(target)
        return '|'.join(parts)


def classify(raw: str, account_type: Optional[AccountType] = None) -> PrincipalIdentity:
    """Classify one principal reference.

    Claims prefixes decide the account type ('i:' user, 'c:' group) unless an
    explicit account_type is given; plain SIDs default to groups, since
    cross-domain groups usually surface as SIDs, and plain names to users.
    Anything that cannot be decomposed is returned as a bare identifier so the
    caller can treat it as already target-shaped.
    """
    value = raw.strip()

    if is_well_known(value):
        return PrincipalIdentity(
            raw=value, account_type=account_type or AccountType.GROUP,
            identifier=value, well_known=True,
        )

    claim_prefix = claim_provider = None
    inner = value
    match = CLAIMS_PATTERN.match(value)
    if match:
        claim_prefix = match.group('prefix')
        claim_provider = match.group('provider')
        inner = match.group('value').strip()
        claim_type = AccountType.USER if claim_prefix.lower().startswith('i:') else AccountType.GROUP
        account_type = account_type or claim_type
        if is_well_known(inner):
            return PrincipalIdentity(
                raw=value, account_type=account_type, identifier=inner,
                claim_prefix=claim_prefix, claim_provider=claim_provider, well_known=True,
            )
    elif '|' in value:
        logger.debug(f"Unrecognised claims encoding '{value}', treating as plain identity")

    if is_sid(inner):
        return PrincipalIdentity(
            raw=value, account_type=account_type or AccountType.GROUP,
            identifier=inner.upper(), is_sid=True,
            claim_prefix=claim_prefix, claim_provider=claim_provider,
        )

    domain, account = split_account(inner)
    return PrincipalIdentity(
        raw=value, account_type=account_type or AccountType.USER,
        identifier=account or inner, domain=domain,
        claim_prefix=claim_prefix, claim_provider=claim_provider,
    )


def parse_principal(raw: str, account_type: Optional[AccountType] = None) -> List[PrincipalIdentity]:
    """Split a (possibly multi-valued) principal string into classified identities"""
    if not raw or not raw.strip():
        return []
    segments = [segment for segment in raw.split(MULTI_VALUE_SEPARATOR) if segment.strip()]
    return [classify(segment, account_type) for segment in segments]
