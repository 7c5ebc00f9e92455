"""
Shared fixtures for the principal resolution tests.
"""
import pytest

from principals.domain_resolver import DomainResolver
from principals.models import SPVersion, TransformationConfig
from principals.principal_search import PrincipalSearchService

from fakes import FakeDirectoryService


@pytest.fixture
def directory():
    return FakeDirectoryService()


@pytest.fixture
def resolver(directory):
    return DomainResolver(directory)


@pytest.fixture
def search_service(directory, resolver):
    return PrincipalSearchService(directory, resolver)


@pytest.fixture
def on_prem_config():
    return TransformationConfig(
        overwrite=True,
        skip_telemetry=True,
        keep_page_specific_permissions=True,
        source_version=SPVersion.SP2013,
    )


@pytest.fixture
def mapping_file(tmp_path):
    path = tmp_path / "usermapping_sample.csv"
    path.write_text(
        "old.user,new.user@tenant.onmicrosoft.com\n"
        "Test.User3,test.user3@tenant.onmicrosoft.com\n"
        "CONTOSO\\SharePoint-Editors,editors@tenant.onmicrosoft.com\n",
        encoding="utf-8",
    )
    return str(path)
