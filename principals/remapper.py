# =============================================================================
# principals/remapper.py - Source principal -> target principal remapping
# =============================================================================

import logging
from typing import List, Optional

from principals.errors import PrincipalResolutionError
from principals.identity import PrincipalIdentity, parse_principal, MULTI_VALUE_SEPARATOR
from principals.mapping_table import MappingTable
from principals.models import (
    AccountType, ResolutionResult, ResolutionSource, SOURCE_STRENGTH, TransformationConfig,
)
from principals.principal_search import PrincipalSearchService


class TransformationObserver:
    """Receives warnings and errors raised while remapping principals"""

    def log_warning(self, message: str, principal: Optional[str] = None) -> None:
        pass

    def log_error(self, message: str, principal: Optional[str] = None,
                  error: Optional[Exception] = None) -> None:
        pass


class LoggingObserver(TransformationObserver):
    """Forwards observer events to the standard logger"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("principals.observer")

    def log_warning(self, message: str, principal: Optional[str] = None) -> None:
        self.logger.warning(message)

    def log_error(self, message: str, principal: Optional[str] = None,
                  error: Optional[Exception] = None) -> None:
        self.logger.error(message)


class PrincipalRemapper:
    """Maps principals from the source farm to principals valid in the target tenant.

    Resolution order per embedded identity:
        1. user mapping file (case-insensitive)
        2. live directory search, when the configuration allows it
        3. the original value, unchanged
    """

    def __init__(self, config: TransformationConfig,
                 search_service: Optional[PrincipalSearchService] = None,
                 mapping_table: Optional[MappingTable] = None,
                 observers: Optional[List[TransformationObserver]] = None):
        self.config = config
        self.search_service = search_service
        if mapping_table is None and config.user_mapping_file:
            mapping_table = MappingTable.load(config.user_mapping_file)
        self.mapping_table = mapping_table if mapping_table is not None else MappingTable()
        self.observers = observers if observers is not None else [LoggingObserver()]
        self.logger = logging.getLogger(self.__class__.__name__)

    def use_mapping_only(self) -> None:
        """Stop consulting the directory, e.g. after it became unavailable"""
        if self.search_service is not None:
            self._notify_warning("Directory lookups disabled, continuing with the user mapping file only", None)
        self.search_service = None

    def remap(self, raw_principal: str, account_type: Optional[AccountType] = None) -> str:
        """Return the target principal for raw_principal (or raw_principal itself)"""
        return self.remap_principal(raw_principal, account_type).resolved_upn

    def remap_principal(self, raw_principal: str,
                        account_type: Optional[AccountType] = None) -> ResolutionResult:
        if raw_principal is None or not raw_principal.strip():
            return ResolutionResult(raw_principal or "", raw_principal or "", False, ResolutionSource.UNRESOLVED)

        # the whole value may be mapped, including multi-valued strings
        entry = self.mapping_table.lookup(raw_principal)
        if entry:
            self.logger.debug(f"Mapping override for {raw_principal} -> {entry.target}")
            return ResolutionResult(raw_principal, entry.target, True, ResolutionSource.MAPPING_OVERRIDE)

        identities = parse_principal(raw_principal, account_type)
        parts = [self._remap_identity(identity) for identity in identities]

        if len(parts) == 1:
            part = parts[0]
            resolved = raw_principal if part.source is ResolutionSource.UNRESOLVED else part.resolved_upn
            return ResolutionResult(raw_principal, resolved, part.found, part.source)

        # built-in parts pass through and do not weaken the aggregate source
        ranked = [part for identity, part in zip(identities, parts)
                  if not (identity.well_known and part.source is ResolutionSource.UNRESOLVED)]
        weakest = min(ranked or parts, key=lambda p: SOURCE_STRENGTH[p.source])
        if all(p.source is ResolutionSource.UNRESOLVED for p in parts):
            resolved = raw_principal
        else:
            resolved = MULTI_VALUE_SEPARATOR.join(p.resolved_upn for p in parts)
        return ResolutionResult(raw_principal, resolved, all(p.found for p in parts), weakest.source)

    def _remap_identity(self, identity: PrincipalIdentity) -> ResolutionResult:
        for key in identity.lookup_keys():
            entry = self.mapping_table.lookup(key)
            if entry:
                self.logger.debug(f"Mapping override for {key} -> {entry.target}")
                return ResolutionResult(
                    identity.raw, identity.render(entry.target), True, ResolutionSource.MAPPING_OVERRIDE
                )

        if identity.well_known:
            # built-in principals exist on both sides and are kept as they are
            return ResolutionResult(identity.raw, identity.raw, True, ResolutionSource.UNRESOLVED)

        if self.search_service is not None and self.config.allows_directory_lookup:
            try:
                upn = self.search_service.search_for_upn(identity.account_type, identity.qualified_name)
            except PrincipalResolutionError as e:
                self._notify_error(f"Directory lookup for {identity.raw} failed: {e}", identity.raw, e)
                raise
            if upn:
                self.logger.debug(f"Directory resolved {identity.raw} -> {upn}")
                return ResolutionResult(
                    identity.raw, identity.render(upn), True, ResolutionSource.DIRECTORY_LOOKUP
                )

        self._notify_warning(f"Principal {identity.raw} could not be resolved, keeping it unchanged",
                             identity.raw)
        return ResolutionResult(identity.raw, identity.raw, False, ResolutionSource.UNRESOLVED)

    def _notify_warning(self, message: str, principal: Optional[str]) -> None:
        for observer in self.observers:
            observer.log_warning(message, principal)

    def _notify_error(self, message: str, principal: str, error: Exception) -> None:
        for observer in self.observers:
            observer.log_error(message, principal, error)
