# =============================================================================
# principals/domain_resolver.py - Joined/friendly domain resolution
# =============================================================================

import logging
import re
from typing import List, Optional

from principals.directory_service import DirectoryService, LDAP_PREFIX
from principals.errors import DirectoryUnavailableError, InvalidDomainError
from principals.identity import domain_sid_of
from principals.lookup_cache import LookupCache
from principals.models import DomainContext, TrustedDomain

FQDN_PATTERN = re.compile(
    r"^(?=.{1,253}$)[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)*$",
    re.IGNORECASE,
)
FRIENDLY_NAME_PATTERN = re.compile(r"^[^\\/:*?\"<>|,=+\s]{1,15}$")

_JOINED_DOMAIN_KEY = ("joined",)
_TRUSTS_KEY = ("trusts",)


class DomainResolver:
    """Resolves the joined domain and friendly (NetBIOS) names to LDAP domains.

    Results are cached for the lifetime of the resolver; the directory
    topology is assumed stable for one migration pass.
    """

    def __init__(self, directory: DirectoryService, cache: Optional[LookupCache] = None):
        self.directory = directory
        self.cache = cache if cache is not None else LookupCache("domain")
        self.logger = logging.getLogger(self.__class__.__name__)

    def get_current_computer_domain(self) -> str:
        """Return the FQDN of the domain this host is joined to"""
        return self.cache.get_or_load(_JOINED_DOMAIN_KEY, self._load_joined_domain)

    def _load_joined_domain(self) -> str:
        domain = self.directory.get_joined_domain()
        if not domain or not domain.strip():
            raise DirectoryUnavailableError("Host is not joined to a domain")
        domain = domain.strip().lower()
        self.logger.info(f"Current computer domain is {domain}")
        return domain

    def get_trusted_domains(self) -> List[TrustedDomain]:
        return self.cache.get_or_load(_TRUSTS_KEY, self.directory.get_trusted_domains)

    def resolve_friendly_domain_to_ldap(self, friendly_name: str) -> str:
        """Translate a friendly domain name (e.g. ALPHADELTA) into its FQDN"""
        if friendly_name is None or not friendly_name.strip():
            raise InvalidDomainError(friendly_name or "", "domain name is empty")
        name = friendly_name.strip()

        if '.' in name:
            if not FQDN_PATTERN.match(name):
                raise InvalidDomainError(name)
            return name.lower()
        if not FRIENDLY_NAME_PATTERN.match(name):
            raise InvalidDomainError(name, "not a valid NetBIOS domain name")

        return self.cache.get_or_load(
            ("friendly", name.casefold()),
            lambda: self._lookup_friendly_domain(name),
        )

    def _lookup_friendly_domain(self, name: str) -> str:
        key = name.casefold()
        for domain in self.get_trusted_domains():
            first_label = domain.fqdn.split('.', 1)[0]
            if domain.friendly_name.casefold() == key or first_label.casefold() == key:
                self.logger.debug(f"Resolved friendly domain {name} to {domain.fqdn}")
                return domain.fqdn.lower()

        self.logger.warning(f"Domain {name} is not known to the directory, using it as-is")
        return name.lower()

    def resolve_domain_context(self, friendly_name: str) -> DomainContext:
        return DomainContext(
            friendly_name=friendly_name.strip(),
            ldap_fqdn=self.resolve_friendly_domain_to_ldap(friendly_name),
        )

    def build_ldap_connection_string(self, domain_fqdn: str) -> str:
        """Compose LDAP://<fqdn>"""
        if domain_fqdn is None or not domain_fqdn.strip():
            raise InvalidDomainError(domain_fqdn or "", "domain name is empty")
        fqdn = domain_fqdn.strip()
        if not FQDN_PATTERN.match(fqdn):
            raise InvalidDomainError(fqdn)
        return f"{LDAP_PREFIX}{fqdn.lower()}"

    def get_ldap_connection_string(self) -> str:
        """LDAP connection string for the joined domain"""
        return self.build_ldap_connection_string(self.get_current_computer_domain())

    def domain_for_sid(self, sid: str) -> str:
        """Domain that owns a SID; built-in and unknown SIDs belong to the joined domain"""
        domain_sid = domain_sid_of(sid)
        if domain_sid:
            for domain in self.get_trusted_domains():
                if domain.domain_sid and domain.domain_sid.upper() == domain_sid:
                    return domain.fqdn.lower()
        return self.get_current_computer_domain()
