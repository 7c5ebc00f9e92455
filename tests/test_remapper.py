"""
Tests for PrincipalRemapper: override first, directory second, never invent.
"""
import pytest

from principals.errors import DirectoryQueryError, DirectoryUnavailableError
from principals.mapping_table import MappingTable
from principals.models import (
    AccountType, MappingEntry, ResolutionSource, SPVersion, TransformationConfig,
)
from principals.remapper import PrincipalRemapper, TransformationObserver

from fakes import FABRIKAM_SID


class RecordingObserver(TransformationObserver):
    def __init__(self):
        self.warnings = []
        self.errors = []

    def log_warning(self, message, principal=None):
        self.warnings.append(principal)

    def log_error(self, message, principal=None, error=None):
        self.errors.append((principal, error))


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def remapper(on_prem_config, search_service, mapping_file, observer):
    return PrincipalRemapper(
        on_prem_config, search_service=search_service,
        mapping_table=MappingTable.load(mapping_file), observers=[observer],
    )


class TestMappingOverride:
    """Mapping file entries win over everything else"""

    def test_mapped_user(self, remapper):
        result = remapper.remap_principal("old.user")

        assert result.resolved_upn == "new.user@tenant.onmicrosoft.com"
        assert result.source is ResolutionSource.MAPPING_OVERRIDE
        assert result.found is True

    def test_override_is_case_insensitive(self, remapper):
        assert remapper.remap("TEST.USER3") == "test.user3@tenant.onmicrosoft.com"

    def test_override_wins_without_directory(self, remapper, directory):
        """Directory availability is irrelevant for mapped principals"""
        directory.query_error = DirectoryQueryError("server down")

        assert remapper.remap("test.user3") == "test.user3@tenant.onmicrosoft.com"
        assert directory.queries == []

    def test_override_matches_embedded_claims_identity(self, remapper):
        """The domain-qualified account inside a claim is looked up too"""
        result = remapper.remap_principal("c:0+.w|CONTOSO\\SharePoint-Editors")

        assert result.resolved_upn == "c:0+.w|editors@tenant.onmicrosoft.com"
        assert result.source is ResolutionSource.MAPPING_OVERRIDE

    def test_windows_user_claim_becomes_membership_claim(self, remapper):
        assert remapper.remap("i:0#.w|CONTOSO\\old.user") == "i:0#.f|membership|new.user@tenant.onmicrosoft.com"

    def test_mapping_file_loaded_from_config(self, mapping_file):
        config = TransformationConfig(user_mapping_file=mapping_file, source_version=SPVersion.SP2010)

        remapper = PrincipalRemapper(config)

        assert len(remapper.mapping_table) == 3
        assert remapper.remap("old.user") == "new.user@tenant.onmicrosoft.com"

    def test_missing_mapping_file_propagates(self, tmp_path):
        config = TransformationConfig(user_mapping_file=str(tmp_path / "missing.csv"))

        with pytest.raises(FileNotFoundError):
            PrincipalRemapper(config)


class TestDirectoryFallback:
    """Unmapped principals are resolved through the directory"""

    def test_directory_lookup_without_mapping_file(self, on_prem_config, search_service, directory):
        directory.add("contoso.com", "sAMAccountName=test.user3", userPrincipalName="t.user3@contoso.com")
        remapper = PrincipalRemapper(on_prem_config, search_service=search_service)

        result = remapper.remap_principal("test.user3")

        assert result.resolved_upn == "t.user3@contoso.com"
        assert result.source is ResolutionSource.DIRECTORY_LOOKUP

    def test_group_sid_claim(self, remapper, directory):
        sid = f"{FABRIKAM_SID}-1129"
        directory.add("alphadelta.fabrikam.local", f"objectSid={sid}",
                      sAMAccountName="SharePoint-Readers", mail="readers@fabrikam.com")

        result = remapper.remap_principal(f"c:0+.w|{sid.lower()}")

        assert result.resolved_upn == "c:0+.w|readers@fabrikam.com"
        assert result.source is ResolutionSource.DIRECTORY_LOOKUP

    def test_spo_source_skips_directory(self, search_service, directory):
        config = TransformationConfig(source_version=SPVersion.SPO)
        remapper = PrincipalRemapper(config, search_service=search_service)

        assert remapper.remap("test.user3") == "test.user3"
        assert directory.queries == []

    def test_directory_disabled_by_config(self, search_service, directory):
        config = TransformationConfig(source_version=SPVersion.SP2016, resolve_with_directory=False)
        remapper = PrincipalRemapper(config, search_service=search_service)

        remapper.remap("test.user3")

        assert directory.queries == []

    def test_use_mapping_only(self, remapper, directory, observer):
        remapper.use_mapping_only()

        assert remapper.remap("someone.else") == "someone.else"
        assert directory.queries == []


class TestUnresolved:
    """Unresolvable principals come back unchanged"""

    def test_returns_original_input(self, remapper, observer):
        result = remapper.remap_principal("i:0#.w|CONTOSO\\ghost")

        assert result.resolved_upn == "i:0#.w|CONTOSO\\ghost"
        assert result.found is False
        assert result.source is ResolutionSource.UNRESOLVED
        assert observer.warnings == ["i:0#.w|CONTOSO\\ghost"]

    def test_empty_input(self, remapper):
        result = remapper.remap_principal("")

        assert result.resolved_upn == ""
        assert result.source is ResolutionSource.UNRESOLVED

    def test_well_known_principal_kept(self, remapper, directory):
        result = remapper.remap_principal("c:0!.s|windows")

        assert result.resolved_upn == "c:0!.s|windows"
        assert result.found is True
        assert directory.queries == []

    def test_idempotent(self, remapper, directory):
        directory.add("contoso.com", "sAMAccountName=test.user9", userPrincipalName="t.user9@contoso.com")

        assert remapper.remap("test.user9") == remapper.remap("test.user9")
        assert directory.trusted_domain_calls == 0
        assert directory.joined_domain_calls == 1


class TestMultiValued:
    """Multi-valued claims are resolved part by part"""

    def test_parts_resolved_independently(self, remapper, directory):
        directory.add("contoso.com", "sAMAccountName=test.user9", userPrincipalName="t.user9@contoso.com")

        result = remapper.remap_principal("old.user;test.user9;ghost")

        assert result.resolved_upn == "new.user@tenant.onmicrosoft.com;t.user9@contoso.com;ghost"
        assert result.source is ResolutionSource.UNRESOLVED
        assert result.found is False

    def test_all_resolved_reports_weakest_source(self, remapper, directory):
        directory.add("contoso.com", "sAMAccountName=test.user9", userPrincipalName="t.user9@contoso.com")

        result = remapper.remap_principal("old.user;test.user9")

        assert result.found is True
        assert result.source is ResolutionSource.DIRECTORY_LOOKUP

    def test_built_in_part_does_not_weaken_source(self, remapper, directory):
        directory.add("contoso.com", "sAMAccountName=test.user9", userPrincipalName="t.user9@contoso.com")

        result = remapper.remap_principal("c:0(.s|true;test.user9")

        assert result.resolved_upn == "c:0(.s|true;t.user9@contoso.com"
        assert result.found is True
        assert result.source is ResolutionSource.DIRECTORY_LOOKUP

    def test_nothing_resolved_returns_input(self, remapper):
        assert remapper.remap("ghost1; ghost2") == "ghost1; ghost2"


class TestErrors:
    """Directory failures are surfaced, never downgraded to unresolved"""

    def test_query_error_propagates_and_is_observed(self, remapper, directory, observer):
        directory.query_error = DirectoryQueryError("server down")

        with pytest.raises(DirectoryQueryError):
            remapper.remap("someone.else")
        assert observer.errors[0][0] == "someone.else"

    def test_unavailable_directory_propagates(self, on_prem_config, search_service, directory):
        directory.joined_domain = None
        remapper = PrincipalRemapper(on_prem_config, search_service=search_service)

        with pytest.raises(DirectoryUnavailableError):
            remapper.remap("someone.else")

    def test_explicit_account_type(self, remapper, directory):
        remapper.remap("Site-Owners", AccountType.GROUP)

        assert "(objectCategory=group)" in directory.queries[0][0]


def test_injected_table_is_not_reloaded(tmp_path):
    """An injected table takes precedence over the configured file"""
    config = TransformationConfig(user_mapping_file=str(tmp_path / "missing.csv"))
    table = MappingTable([MappingEntry("a", "b@tenant.com")])

    assert PrincipalRemapper(config, mapping_table=table).remap("A") == "b@tenant.com"
