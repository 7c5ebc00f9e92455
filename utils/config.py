# =============================================================================
# utils/config.py - Configuration management
# =============================================================================

import os
from typing import Optional, List
from dotenv import load_dotenv

from principals.models import SPVersion, TransformationConfig

TRUE_VALUES = {"1", "true", "yes", "on"}


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in TRUE_VALUES


class Config:
    """Configuration management"""

    def __init__(self):
        load_dotenv()

    @property
    def ad_server(self) -> Optional[str]:
        return os.getenv("AD_SERVER")

    @property
    def ad_username(self) -> Optional[str]:
        return os.getenv("AD_USERNAME")

    @property
    def ad_password(self) -> Optional[str]:
        return os.getenv("AD_PASSWORD")

    @property
    def base_dn(self) -> Optional[str]:
        return os.getenv("BASE_DN")

    @property
    def user_mapping_file(self) -> Optional[str]:
        return os.getenv("USER_MAPPING_FILE") or None

    @property
    def source_version(self) -> SPVersion:
        return SPVersion.parse(os.getenv("SOURCE_VERSION"))

    @property
    def directory_timeout(self) -> float:
        value = os.getenv("DIRECTORY_TIMEOUT")
        try:
            return float(value) if value else 30.0
        except ValueError:
            raise ValueError(f"DIRECTORY_TIMEOUT must be a number of seconds, got '{value}'")

    @property
    def resolve_with_directory(self) -> bool:
        return _as_bool(os.getenv("RESOLVE_WITH_DIRECTORY"), default=True)

    @property
    def keep_page_specific_permissions(self) -> bool:
        return _as_bool(os.getenv("KEEP_PAGE_SPECIFIC_PERMISSIONS"))

    @property
    def fail_on_unresolved(self) -> bool:
        return _as_bool(os.getenv("FAIL_ON_UNRESOLVED"))

    def validate_ad_config(self) -> bool:
        """Validate that the AD connection settings are present (BASE_DN is optional)"""
        required = [self.ad_server, self.ad_username, self.ad_password]
        return all(required)

    def get_missing_ad_vars(self) -> List[str]:
        """Get list of missing AD configuration variables"""
        vars_and_names = [
            (self.ad_server, "AD_SERVER"),
            (self.ad_username, "AD_USERNAME"),
            (self.ad_password, "AD_PASSWORD"),
        ]
        return [name for var, name in vars_and_names if not var]

    def to_transformation_config(self, **overrides) -> TransformationConfig:
        """Build the run configuration; keyword arguments win over the environment"""
        values = {
            "keep_page_specific_permissions": self.keep_page_specific_permissions,
            "user_mapping_file": self.user_mapping_file,
            "source_version": self.source_version,
            "resolve_with_directory": self.resolve_with_directory,
            "directory_timeout": self.directory_timeout,
            "fail_on_unresolved": self.fail_on_unresolved,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return TransformationConfig(**values)
