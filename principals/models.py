# =============================================================================
# principals/models.py - Principal resolution data models
# =============================================================================

from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List
from enum import Enum


class AccountType(Enum):
    """Kind of directory principal being resolved"""
    USER = "user"
    GROUP = "group"


class ResolutionSource(Enum):
    """Where a remapped principal came from"""
    MAPPING_OVERRIDE = "mapping_override"
    DIRECTORY_LOOKUP = "directory_lookup"
    UNRESOLVED = "unresolved"


# Weakest first; used to summarise multi-valued principals
SOURCE_STRENGTH = {
    ResolutionSource.UNRESOLVED: 0,
    ResolutionSource.DIRECTORY_LOOKUP: 1,
    ResolutionSource.MAPPING_OVERRIDE: 2,
}


class SPVersion(Enum):
    """SharePoint version of the migration source"""
    SP2010 = "sp2010"
    SP2013 = "sp2013"
    SP2016 = "sp2016"
    SP2019 = "sp2019"
    SPO = "spo"
    UNKNOWN = "unknown"

    @property
    def is_on_premises(self) -> bool:
        return self is not SPVersion.SPO

    @classmethod
    def parse(cls, value: Optional[str]) -> "SPVersion":
        """Parse a version name such as 'SP2013' or '2016', defaulting to UNKNOWN"""
        if not value:
            return cls.UNKNOWN
        normalized = value.strip().lower()
        if normalized.isdigit():
            normalized = f"sp{normalized}"
        for member in cls:
            if member.value == normalized:
                return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class MappingEntry:
    """Source principal -> target principal override"""
    source: str
    target: str


@dataclass(frozen=True)
class DomainContext:
    """Friendly (NetBIOS) domain name and its fully qualified LDAP domain"""
    friendly_name: str
    ldap_fqdn: str


@dataclass(frozen=True)
class TrustedDomain:
    """Domain known to the directory, either the joined domain or a trust partner"""
    friendly_name: str
    fqdn: str
    domain_sid: Optional[str] = None


@dataclass
class DirectoryObject:
    """Single entry returned by a directory query"""
    distinguished_name: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        """Case-insensitive attribute access; multi-valued attributes yield their first value"""
        for key, value in self.attributes.items():
            if key.lower() == name.lower():
                if isinstance(value, (list, tuple)):
                    value = value[0] if value else None
                return value if value not in (None, "") else default
        return default


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of remapping one raw principal"""
    original: str
    resolved_upn: str
    found: bool
    source: ResolutionSource


@dataclass(frozen=True)
class TransformationConfig:
    """Options of a transformation run that parametrise principal remapping"""
    overwrite: bool = False
    skip_telemetry: bool = False
    keep_page_specific_permissions: bool = False
    user_mapping_file: Optional[str] = None
    source_version: SPVersion = SPVersion.UNKNOWN
    resolve_with_directory: bool = True
    directory_timeout: float = 30.0
    fail_on_unresolved: bool = False

    @property
    def allows_directory_lookup(self) -> bool:
        """Live directory resolution only makes sense against an on-premises source"""
        return self.resolve_with_directory and self.source_version.is_on_premises


@dataclass
class ProcessingStats:
    """Statistics for a batch remapping run"""
    total_records: int = 0
    mapped_overrides: int = 0
    directory_lookups: int = 0
    builtin_principals: int = 0
    unresolved: int = 0
    errors: int = 0
    source_counts: Dict[ResolutionSource, int] = field(default_factory=dict)
    failed_principals: List[str] = field(default_factory=list)

    @property
    def resolved(self) -> int:
        return self.mapped_overrides + self.directory_lookups + self.builtin_principals

    @property
    def success_rate(self) -> float:
        """Calculate success rate percentage"""
        if self.total_records == 0:
            return 0.0
        return (self.resolved / self.total_records) * 100
