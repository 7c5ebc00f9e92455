# =============================================================================
# principals/directory_service.py - Directory access contract and LDAP client
# =============================================================================

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ldap3 import Server, Connection, ALL, BASE, SUBTREE
from ldap3.core.exceptions import LDAPException, LDAPBindError, LDAPSocketOpenError

from principals.errors import DirectoryQueryError, DirectoryUnavailableError, InvalidDomainError
from principals.identity import domain_to_dn, dn_to_domain, sid_bytes_to_string
from principals.models import DirectoryObject, TrustedDomain

LDAP_PREFIX = "LDAP://"

# LDAP result codes that mean "nothing there" rather than a failure
RESULT_SUCCESS = 0
RESULT_NO_SUCH_OBJECT = 32


def scope_to_domain(scope: str) -> str:
    """LDAP://contoso.com -> contoso.com"""
    value = scope.strip()
    if value.upper().startswith(LDAP_PREFIX):
        value = value[len(LDAP_PREFIX):]
    value = value.split('/', 1)[0]
    if not value:
        raise InvalidDomainError(scope, "scope does not name a domain")
    return value.lower()


class DirectoryService(ABC):
    """Narrow, read-only view of the on-premises directory"""

    @abstractmethod
    def query(self, search_filter: str, scope: str,
              attributes: Optional[List[str]] = None) -> List[DirectoryObject]:
        """Run a subtree search below the domain named by scope (LDAP://fqdn)"""

    @abstractmethod
    def get_trusted_domains(self) -> List[TrustedDomain]:
        """Return the joined domain and its trust partners"""

    @abstractmethod
    def get_joined_domain(self) -> str:
        """Return the FQDN of the domain the host is joined to"""


class LdapDirectoryService(DirectoryService):
    """Active Directory access over LDAP using ldap3"""

    def __init__(self, server_url: str, username: str, password: str,
                 base_dn: Optional[str] = None, timeout: float = 30.0):
        self.server_url = server_url
        self.username = username
        self.password = password
        self.base_dn = base_dn
        self.timeout = timeout
        self.connection: Optional[Connection] = None
        self._domain_connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()
        self._connection_locks: Dict[str, threading.Lock] = {}
        self.logger = logging.getLogger(__name__)

    def __enter__(self):
        """Context manager entry"""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.disconnect()

    def _open(self, host: str) -> Connection:
        server = Server(host, get_info=ALL, connect_timeout=self.timeout)
        return Connection(
            server,
            user=self.username,
            password=self.password,
            auto_bind=True,
            receive_timeout=self.timeout,
        )

    def connect(self) -> None:
        """Establish connection to Active Directory"""
        try:
            self.connection = self._open(self.server_url)
        except (LDAPBindError, LDAPSocketOpenError) as e:
            self.logger.error(f"Failed to connect to AD at {self.server_url}: {e}")
            raise DirectoryUnavailableError(f"Cannot bind to {self.server_url}: {e}") from e
        except LDAPException as e:
            self.logger.error(f"Failed to connect to AD at {self.server_url}: {e}")
            raise DirectoryUnavailableError(f"Cannot connect to {self.server_url}: {e}") from e
        self.logger.info("Successfully connected to Active Directory")

    def disconnect(self) -> None:
        """Close all Active Directory connections"""
        with self._lock:
            for domain, connection in self._domain_connections.items():
                connection.unbind()
                self.logger.debug(f"Disconnected from {domain}")
            self._domain_connections.clear()
            if self.connection:
                self.connection.unbind()
                self.connection = None
                self.logger.info("Disconnected from Active Directory")

    def _require_connection(self) -> Connection:
        if not self.connection:
            raise DirectoryUnavailableError("Not connected to Active Directory")
        return self.connection

    def _root_dse_value(self, name: str) -> Optional[str]:
        info = self._require_connection().server.info
        if info is None or not info.other:
            return None
        values = info.other.get(name)
        if not values:
            return None
        return values[0] if isinstance(values, (list, tuple)) else values

    def get_joined_domain(self) -> str:
        naming_context = self.base_dn or self._root_dse_value('defaultNamingContext')
        if not naming_context:
            raise DirectoryUnavailableError("Directory did not report a default naming context")
        domain = dn_to_domain(naming_context)
        if not domain:
            raise DirectoryUnavailableError(f"Naming context '{naming_context}' has no domain components")
        return domain

    def _lock_for(self, domain: str) -> threading.Lock:
        """One lock per domain connection; ldap3 connections are not shared between searches"""
        with self._lock:
            return self._connection_locks.setdefault(domain, threading.Lock())

    def _connection_for(self, domain: str) -> Connection:
        # caller holds _lock_for(domain)
        if domain == self.get_joined_domain():
            return self._require_connection()
        with self._lock:
            connection = self._domain_connections.get(domain)
        if connection is None:
            self.logger.info(f"Opening connection to trusted domain {domain}")
            connection = self._open(domain)
            with self._lock:
                self._domain_connections[domain] = connection
        return connection

    def _search_base_for(self, domain: str) -> str:
        if self.base_dn and domain == self.get_joined_domain():
            return self.base_dn
        return domain_to_dn(domain)

    def _search(self, connection: Connection, search_base: str, search_filter: str,
                attributes: List[str], search_scope=SUBTREE) -> List[DirectoryObject]:
        connection.search(
            search_base=search_base,
            search_filter=search_filter,
            search_scope=search_scope,
            attributes=attributes,
        )
        result_code = connection.result.get('result', RESULT_SUCCESS) if connection.result else RESULT_SUCCESS
        if result_code not in (RESULT_SUCCESS, RESULT_NO_SUCH_OBJECT):
            raise DirectoryQueryError(
                f"Search below {search_base} failed: {connection.result.get('description')}",
                search_filter, search_base,
            )

        objects = []
        for entry in connection.entries:
            attrs = dict(entry.entry_attributes_as_dict)
            # binary SIDs are converted so callers only see the S-1-... form
            for sid_attribute in ('objectSid', 'securityIdentifier'):
                raw = entry.entry_raw_attributes.get(sid_attribute)
                if raw and isinstance(raw[0], (bytes, bytearray)):
                    attrs[sid_attribute] = [sid_bytes_to_string(bytes(raw[0]))]
            objects.append(DirectoryObject(distinguished_name=entry.entry_dn, attributes=attrs))
        return objects

    def query(self, search_filter: str, scope: str,
              attributes: Optional[List[str]] = None) -> List[DirectoryObject]:
        domain = scope_to_domain(scope)
        try:
            with self._lock_for(domain):
                connection = self._connection_for(domain)
                objects = self._search(
                    connection, self._search_base_for(domain), search_filter,
                    attributes or ['distinguishedName'],
                )
        except LDAPException as e:
            self.logger.error(f"Error querying {scope} with {search_filter}: {e}")
            raise DirectoryQueryError(f"Query against {scope} failed: {e}", search_filter, scope) from e

        self.logger.debug(f"Query {search_filter} on {scope} returned {len(objects)} objects")
        return objects

    def get_trusted_domains(self) -> List[TrustedDomain]:
        joined = self.get_joined_domain()
        # the domain head, never base_dn: trusts live under CN=System of the domain itself
        head_dn = domain_to_dn(joined)
        configuration = self._root_dse_value('configurationNamingContext') or f"CN=Configuration,{head_dn}"

        domains: List[TrustedDomain] = []
        try:
            with self._lock_for(joined):
                connection = self._require_connection()
                head = self._search(connection, head_dn, '(objectClass=*)', ['objectSid'], search_scope=BASE)
                joined_sid = head[0].get('objectSid') if head else None

                cross_refs = self._search(
                    connection, f"CN=Partitions,{configuration}",
                    '(&(objectClass=crossRef)(nETBIOSName=*))',
                    ['nETBIOSName', 'dnsRoot', 'nCName'],
                )
                for ref in cross_refs:
                    fqdn = str(ref.get('dnsRoot', '')).lower()
                    domains.append(TrustedDomain(
                        friendly_name=str(ref.get('nETBIOSName')),
                        fqdn=fqdn,
                        domain_sid=joined_sid if fqdn == joined else None,
                    ))

                trusts = self._search(
                    connection, f"CN=System,{head_dn}", '(objectClass=trustedDomain)',
                    ['flatName', 'trustPartner', 'securityIdentifier'],
                )
                for trust in trusts:
                    domains.append(TrustedDomain(
                        friendly_name=str(trust.get('flatName', '')),
                        fqdn=str(trust.get('trustPartner', '')).lower(),
                        domain_sid=trust.get('securityIdentifier'),
                    ))
        except LDAPException as e:
            self.logger.error(f"Error reading domain trusts: {e}")
            raise DirectoryQueryError(f"Reading domain trusts failed: {e}") from e

        self.logger.info(f"Directory reports {len(domains)} domains: {[d.friendly_name for d in domains]}")
        return domains
