"""
Unit tests for target URL extraction from request bodies.
"""

import json

import pytest

from core.proxy.errors import MissingTargetError
from core.proxy.target_extractor import ProxyRequestDescriptor, extract_target_from_body


class TestJsonBody:
    """JSON bodies carry url, target or destination."""

    @pytest.mark.parametrize('field', ['url', 'target', 'destination'])
    def test_each_field(self, field):
        body = json.dumps({field: 'https://example.com/a'}).encode()
        assert extract_target_from_body('POST', 'application/json', body) == 'https://example.com/a'

    def test_field_priority(self):
        body = json.dumps({
            'destination': 'https://d.test/',
            'target': 'https://t.test/',
            'url': 'https://u.test/',
        }).encode()
        assert extract_target_from_body('PUT', 'application/json; charset=utf-8', body) == 'https://u.test/'

    def test_empty_url_falls_through(self):
        body = json.dumps({'url': '', 'target': 'https://t.test/'}).encode()
        assert extract_target_from_body('POST', 'application/json', body) == 'https://t.test/'

    def test_malformed_json_returns_none(self):
        assert extract_target_from_body('POST', 'application/json', b'{not json') is None

    def test_non_object_json_returns_none(self):
        assert extract_target_from_body('POST', 'application/json', b'["https://example.com"]') is None


class TestFormBody:
    def test_url_field(self):
        body = b'url=https%3A%2F%2Fexample.com%2Fform&x=1'
        result = extract_target_from_body('POST', 'application/x-www-form-urlencoded', body)
        assert result == 'https://example.com/form'

    def test_target_field(self):
        body = b'target=https%3A%2F%2Fexample.com%2Ft'
        result = extract_target_from_body('POST', 'application/x-www-form-urlencoded', body)
        assert result == 'https://example.com/t'

    def test_destination_not_used_for_forms(self):
        body = b'destination=https%3A%2F%2Fexample.com'
        assert extract_target_from_body('POST', 'application/x-www-form-urlencoded', body) is None


class TestIgnoredRequests:
    @pytest.mark.parametrize('method', ['GET', 'HEAD', 'DELETE', 'PATCH'])
    def test_only_post_and_put(self, method):
        body = json.dumps({'url': 'https://example.com'}).encode()
        assert extract_target_from_body(method, 'application/json', body) is None

    def test_empty_body(self):
        assert extract_target_from_body('POST', 'application/json', b'') is None

    def test_unknown_content_type(self):
        assert extract_target_from_body('POST', 'text/plain', b'url=https://example.com') is None


class TestProxyRequestDescriptor:
    def test_absolute_target_accepted(self):
        descriptor = ProxyRequestDescriptor(method='GET', target_url='https://example.com/')
        assert descriptor.body is None
        assert len(descriptor.headers) == 0

    @pytest.mark.parametrize('target', ['/relative/path', 'example.com', ''])
    def test_relative_target_rejected(self, target):
        with pytest.raises(MissingTargetError):
            ProxyRequestDescriptor(method='GET', target_url=target)
