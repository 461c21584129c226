"""
Tests for the command line entry point.
"""

import json

from core.code_lookup import CodeLookup, LookupUnavailable
from core.config_manager import ProxySettings
from main import lookup_code, parse_args


class TestParseArgs:
    def test_overrides(self):
        args = parse_args(['--host', '0.0.0.0', '--port', '9000', '--origin', 'http://origin.test'])

        assert args.host == '0.0.0.0'
        assert args.port == 9000
        assert args.origin == 'http://origin.test'
        assert args.code is None

    def test_code(self):
        assert parse_args(['--code', 'ABC']).code == 'ABC'


class TestLookupCode:
    def test_valid_code_exit_status(self, monkeypatch, capsys):
        async def fetch_table(self):
            return {'ABC': 'https://a.test/|true'}

        monkeypatch.setattr(CodeLookup, 'fetch_table', fetch_table)

        assert lookup_code(ProxySettings(), 'ABC') == 0
        assert json.loads(capsys.readouterr().out) == {
            'valid': True, 'url': 'https://a.test/', 'embeddable': True
        }

    def test_invalid_code_exit_status(self, monkeypatch, capsys):
        async def fetch_table(self):
            return {}

        monkeypatch.setattr(CodeLookup, 'fetch_table', fetch_table)

        assert lookup_code(ProxySettings(), 'ABC') == 2
        assert json.loads(capsys.readouterr().out)['valid'] is False

    def test_unavailable_table(self, monkeypatch, capsys):
        async def fetch_table(self):
            raise LookupUnavailable('offline')

        monkeypatch.setattr(CodeLookup, 'fetch_table', fetch_table)

        assert lookup_code(ProxySettings(), 'ABC') == 1
        assert 'Error fetching codes' in json.loads(capsys.readouterr().out)['error']
