# =============================================================================
# principals/principal_search.py - Directory search for user/group principals
# =============================================================================

import logging
import threading
from typing import List, Optional

from ldap3.utils.conv import escape_filter_chars

from principals.directory_service import DirectoryService
from principals.domain_resolver import DomainResolver
from principals.errors import DirectoryQueryError, OperationCancelledError
from principals.identity import is_sid, split_account
from principals.models import AccountType, DirectoryObject

USER_FILTER = "(&(objectCategory=person)(objectClass=user){criteria})"
GROUP_FILTER = "(&(objectCategory=group){criteria})"

USER_ATTRIBUTES = ['userPrincipalName', 'sAMAccountName', 'mail', 'displayName']
GROUP_ATTRIBUTES = ['sAMAccountName', 'mail', 'cn']


class PrincipalSearchService:
    """Finds the cloud-facing identity of an on-premises user or group"""

    def __init__(self, directory: DirectoryService, resolver: DomainResolver,
                 cancel_event: Optional[threading.Event] = None):
        self.directory = directory
        self.resolver = resolver
        self.cancel_event = cancel_event
        self.logger = logging.getLogger(self.__class__.__name__)

    def search_for_upn(self, account_type: AccountType, identifier: str) -> Optional[str]:
        """Search the directory for an account name, DOMAIN\\account or SID.

        Returns the UPN for users and the mail address (or
        sAMAccountName@domain) for groups, or None when nothing matches.

        Raises:
            DirectoryQueryError: the directory could not be queried
            InvalidDomainError: the identifier names a malformed domain
        """
        if not identifier or not identifier.strip():
            return None
        value = identifier.strip()

        if is_sid(value):
            sid = value.upper()
            domain = self.resolver.domain_for_sid(sid)
            criteria = f"(objectSid={escape_filter_chars(sid)})"
        else:
            friendly_domain, account = split_account(value)
            if not account:
                return None
            if friendly_domain:
                domain = self.resolver.resolve_friendly_domain_to_ldap(friendly_domain)
            else:
                domain = self.resolver.get_current_computer_domain()

            if account_type is AccountType.USER and '@' in account and not friendly_domain:
                criteria = f"(userPrincipalName={escape_filter_chars(account)})"
            else:
                criteria = f"(sAMAccountName={escape_filter_chars(account)})"

        if account_type is AccountType.USER:
            search_filter = USER_FILTER.format(criteria=criteria)
            attributes = USER_ATTRIBUTES
        else:
            search_filter = GROUP_FILTER.format(criteria=criteria)
            attributes = GROUP_ATTRIBUTES

        scope = self.resolver.build_ldap_connection_string(domain)
        objects = self._query(search_filter, scope, attributes)

        if not objects:
            self.logger.debug(f"{account_type.value} {value} not found in {domain}")
            return None
        if len(objects) > 1:
            self.logger.warning(f"Multiple objects found for {value} in {domain}, using first match")

        return self._extract_identity(account_type, objects[0], domain)

    def _query(self, search_filter: str, scope: str, attributes: List[str]) -> List[DirectoryObject]:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise OperationCancelledError(f"Run cancelled before querying {scope}")
        try:
            return self.directory.query(search_filter, scope, attributes)
        except DirectoryQueryError:
            raise
        except OSError as e:
            # TimeoutError is an OSError
            self.logger.error(f"Directory query {search_filter} on {scope} failed: {e}")
            raise DirectoryQueryError(f"Query against {scope} failed: {e}", search_filter, scope) from e

    def _extract_identity(self, account_type: AccountType, obj: DirectoryObject,
                          domain: str) -> Optional[str]:
        if account_type is AccountType.USER:
            upn = obj.get('userPrincipalName')
            if not upn:
                self.logger.warning(f"User {obj.distinguished_name} has no userPrincipalName")
                return None
            return str(upn)

        mail = obj.get('mail')
        if mail:
            return str(mail)
        sam_account_name = obj.get('sAMAccountName') or obj.get('cn')
        if not sam_account_name:
            self.logger.warning(f"Group {obj.distinguished_name} has no account name")
            return None
        return f"{sam_account_name}@{domain}"
