"""Unit tests for the provider exception hierarchy."""

import pytest

from integrations.exceptions import ProviderDataError, ProviderError


class TestExceptionHierarchy:
    def test_provider_data_error_is_provider_error(self):
        exc = ProviderDataError("bad record", provider_name="plaid", record_id="x1")
        assert isinstance(exc, ProviderError)

    def test_attributes(self):
        exc = ProviderDataError("external_id is required", provider_name="plaid", record_id="x1")

        assert str(exc) == "external_id is required"
        assert exc.provider_name == "plaid"
        assert exc.record_id == "x1"

    def test_defaults(self):
        exc = ProviderError("boom")
        assert exc.provider_name == ""

    def test_catch_as_provider_error(self):
        with pytest.raises(ProviderError) as exc_info:
            raise ProviderDataError("data", provider_name="simplefin")
        assert exc_info.value.provider_name == "simplefin"
        assert exc_info.value.record_id is None
