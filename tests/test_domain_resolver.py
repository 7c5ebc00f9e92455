"""
Tests for the domain resolver and its load-once cache.
"""
import threading
import time

import pytest

from principals.domain_resolver import DomainResolver
from principals.errors import DirectoryQueryError, DirectoryUnavailableError, InvalidDomainError
from principals.lookup_cache import LookupCache
from principals.models import DomainContext

from fakes import FABRIKAM_SID, FakeDirectoryService


class TestLookupCache:
    """Tests for LookupCache"""

    def test_loads_once_per_key(self):
        cache = LookupCache()
        calls = []

        def loader():
            calls.append(1)
            return "value"

        assert cache.get_or_load("a", loader) == "value"
        assert cache.get_or_load("a", loader) == "value"
        assert len(calls) == 1
        assert "a" in cache

    def test_failed_load_is_retried(self):
        """A loader that raises is not cached"""
        cache = LookupCache()
        outcomes = [DirectoryQueryError("boom"), "ok"]

        def loader():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        with pytest.raises(DirectoryQueryError):
            cache.get_or_load("a", loader)
        assert "a" not in cache
        assert cache.get_or_load("a", loader) == "ok"

    def test_concurrent_misses_load_once(self):
        """Threads missing the same key wait for the first loader"""
        cache = LookupCache()
        gate = threading.Event()
        calls = []
        results = []

        def loader():
            calls.append(1)
            gate.wait(timeout=5)
            return "fqdn"

        def worker():
            results.append(cache.get_or_load("ALPHADELTA", loader, timeout=5))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        time.sleep(0.05)
        gate.set()
        for thread in threads:
            thread.join(timeout=5)

        assert len(calls) == 1
        assert results == ["fqdn"] * 8

    def test_slow_key_does_not_block_other_keys(self):
        """The lock is not held while a loader runs"""
        cache = LookupCache()
        gate = threading.Event()
        slow = threading.Thread(target=lambda: cache.get_or_load("slow", lambda: gate.wait(timeout=5)))
        slow.start()
        time.sleep(0.05)

        try:
            assert cache.get_or_load("fast", lambda: "done") == "done"
        finally:
            gate.set()
            slow.join(timeout=5)


class TestCurrentComputerDomain:
    """Tests for get_current_computer_domain"""

    def test_returns_joined_domain(self, resolver, directory):
        assert resolver.get_current_computer_domain() == "contoso.com"
        assert resolver.get_current_computer_domain() == "contoso.com"
        assert directory.joined_domain_calls == 1

    def test_not_domain_joined_raises(self):
        resolver = DomainResolver(FakeDirectoryService(joined_domain=None))

        with pytest.raises(DirectoryUnavailableError):
            resolver.get_current_computer_domain()

    def test_ldap_connection_string_for_joined_domain(self, resolver):
        assert resolver.get_ldap_connection_string() == "LDAP://contoso.com"


class TestResolveFriendlyDomain:
    """Tests for resolve_friendly_domain_to_ldap"""

    def test_resolves_trusted_domain(self, resolver):
        assert resolver.resolve_friendly_domain_to_ldap("ALPHADELTA") == "alphadelta.fabrikam.local"

    def test_cached_after_first_lookup(self, resolver, directory):
        """Two calls issue at most one directory query"""
        resolver.resolve_friendly_domain_to_ldap("ALPHADELTA")
        resolver.resolve_friendly_domain_to_ldap("alphadelta")

        assert directory.trusted_domain_calls == 1

    def test_concurrent_first_lookups_query_once(self, directory):
        gate = threading.Event()
        original = directory.get_trusted_domains

        def slow_trusts():
            gate.wait(timeout=5)
            return original()

        directory.get_trusted_domains = slow_trusts
        resolver = DomainResolver(directory)
        results = []
        threads = [
            threading.Thread(target=lambda: results.append(resolver.resolve_friendly_domain_to_ldap("ALPHADELTA")))
            for _ in range(6)
        ]
        for thread in threads:
            thread.start()
        time.sleep(0.05)
        gate.set()
        for thread in threads:
            thread.join(timeout=5)

        assert directory.trusted_domain_calls == 1
        assert results == ["alphadelta.fabrikam.local"] * 6

    def test_matches_first_fqdn_label(self, resolver):
        assert resolver.resolve_friendly_domain_to_ldap("contoso") == "contoso.com"

    def test_fqdn_passes_through(self, resolver, directory):
        assert resolver.resolve_friendly_domain_to_ldap("Corp.Contoso.com") == "corp.contoso.com"
        assert directory.trusted_domain_calls == 0

    def test_unknown_domain_falls_back_to_name(self, resolver):
        assert resolver.resolve_friendly_domain_to_ldap("LEGACY") == "legacy"

    @pytest.mark.parametrize("value", ["", "   ", "BAD DOMAIN", "bad..domain.com", "a/b"])
    def test_invalid_names_raise(self, resolver, value):
        with pytest.raises(InvalidDomainError):
            resolver.resolve_friendly_domain_to_ldap(value)

    def test_directory_failure_is_not_cached(self, directory):
        directory.trusted_domains = []
        resolver = DomainResolver(directory)
        original = directory.get_trusted_domains

        def failing():
            raise DirectoryQueryError("timeout")

        directory.get_trusted_domains = failing
        with pytest.raises(DirectoryQueryError):
            resolver.resolve_friendly_domain_to_ldap("ALPHADELTA")

        directory.get_trusted_domains = original
        assert resolver.resolve_friendly_domain_to_ldap("ALPHADELTA") == "alphadelta"

    def test_domain_context(self, resolver):
        assert resolver.resolve_domain_context(" ALPHADELTA ") == DomainContext(
            "ALPHADELTA", "alphadelta.fabrikam.local"
        )

    def test_independent_resolvers_have_independent_caches(self, directory):
        DomainResolver(directory).resolve_friendly_domain_to_ldap("ALPHADELTA")
        DomainResolver(directory).resolve_friendly_domain_to_ldap("ALPHADELTA")

        assert directory.trusted_domain_calls == 2


class TestBuildLdapConnectionString:
    """Tests for build_ldap_connection_string"""

    def test_composes_ldap_url(self, resolver):
        assert resolver.build_ldap_connection_string("contoso.com") == "LDAP://contoso.com"

    @pytest.mark.parametrize("value", ["", None, "contoso com", "contoso.com;drop", "-bad.com", "a..b"])
    def test_rejects_malformed(self, resolver, value):
        with pytest.raises(InvalidDomainError):
            resolver.build_ldap_connection_string(value)


class TestDomainForSid:
    """Tests for domain_for_sid"""

    def test_trusted_domain_sid(self, resolver):
        assert resolver.domain_for_sid(f"{FABRIKAM_SID}-1129") == "alphadelta.fabrikam.local"

    def test_unknown_domain_sid_uses_joined_domain(self, resolver):
        assert resolver.domain_for_sid("S-1-5-21-9-9-9-1000") == "contoso.com"

    def test_builtin_sid_uses_joined_domain(self, resolver):
        assert resolver.domain_for_sid("S-1-5-32-544") == "contoso.com"
