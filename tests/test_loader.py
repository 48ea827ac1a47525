"""
Tests for Stubtap Mock Loader

Tests loading mock definition files including:
- JSON and YAML files
- Directories and glob patterns
- Error aggregation
"""

import json
import logging
from pathlib import Path

import pytest

from stubtap.mock.loader import MockLoader, MockLoadError, decode_mock, load_mocks


GET_USER_YAML = """\
request:
  method: GET
  path: /users/{id}
  path_params:
    id: 123
response:
  status: 200
  body:
    id: 123
    name: John Doe
assertion: true
expected_hits: 1
"""

CREATE_ORDER = {
    'name': 'create_order',
    'request': {
        'method': 'POST',
        'path': '/orders',
        'headers': {'Api-Key': 'secret'},
        'body': {'item': 'book', 'qty': 1}
    },
    'response': {
        'status': 201,
        'headers': {'Location': '/orders/1'}
    }
}


@pytest.fixture
def mock_dir(tmp_path):
    """Directory with one YAML mock, one JSON mock and an unrelated file."""
    (tmp_path / 'get_user.yaml').write_text(GET_USER_YAML, encoding='utf-8')
    (tmp_path / 'create_order.json').write_text(json.dumps(CREATE_ORDER), encoding='utf-8')
    (tmp_path / 'README.md').write_text('# not a mock', encoding='utf-8')
    (tmp_path / 'nested').mkdir()
    (tmp_path / 'nested' / 'skipped.json').write_text(json.dumps(CREATE_ORDER), encoding='utf-8')
    return tmp_path


class TestDecodeMock:
    """Test decoding mock file content."""

    def test_json(self):
        """Test content starting with '{' is JSON."""
        assert decode_mock('{"name": "x"}') == {'name': 'x'}

    def test_yaml(self):
        """Test other content is YAML."""
        assert decode_mock('name: x\nrequest:\n  method: GET\n') == {'name': 'x', 'request': {'method': 'GET'}}

    def test_empty(self):
        """Test empty content is rejected."""
        with pytest.raises(ValueError, match='empty mock data'):
            decode_mock('  \n')

    def test_invalid_json(self):
        """Test broken JSON raises ValueError."""
        with pytest.raises(ValueError):
            decode_mock('{"name": ')


class TestMockLoader:
    """Test MockLoader."""

    def test_load_directory(self, mock_dir):
        """Test a directory loads JSON and YAML files only, non-recursively."""
        mocks = MockLoader(str(mock_dir)).load()

        assert [m.name for m in mocks] == ['create_order', 'get_user']

    def test_name_defaults_to_file_stem(self, mock_dir):
        """Test unnamed mocks take the file name."""
        mock = MockLoader.load_file(mock_dir / 'get_user.yaml')

        assert mock.name == 'get_user'
        assert mock.source == str(mock_dir / 'get_user.yaml')
        assert mock.request.path_params == {'id': '123'}
        assert mock.assertion_enabled is True
        assert mock.validate() == []

    def test_decoded_fields(self, mock_dir):
        """Test JSON mocks decode criteria and response."""
        mock = MockLoader.load_file(mock_dir / 'create_order.json')

        assert mock.request.headers == {'Api-Key': 'secret'}
        assert mock.request.body.is_structured
        assert mock.response.status == 201
        assert mock.response.headers == {'Location': '/orders/1'}

    def test_glob(self, mock_dir):
        """Test glob patterns select matching files."""
        mocks = load_mocks(str(mock_dir / '*.yaml'))

        assert [m.name for m in mocks] == ['get_user']

    def test_missing_path_skipped(self, mock_dir, caplog):
        """Test paths matching nothing are skipped with a warning."""
        with caplog.at_level(logging.WARNING, logger='stubtap.mock'):
            mocks = MockLoader(str(mock_dir / 'missing'), str(mock_dir / 'get_user.yaml')).load()

        assert len(mocks) == 1
        assert 'No mock files found' in caplog.text

    def test_errors_aggregated(self, tmp_path):
        """Test every broken file is reported at once."""
        (tmp_path / 'empty.yaml').write_text('', encoding='utf-8')
        (tmp_path / 'broken.json').write_text('{"request": ', encoding='utf-8')
        (tmp_path / 'list.yaml').write_text('- GET\n- /health\n', encoding='utf-8')

        with pytest.raises(MockLoadError) as exc_info:
            MockLoader(str(tmp_path)).load()

        errors = exc_info.value.errors
        assert len(errors) == 3
        assert any('empty mock data' in e for e in errors)
        assert any('must be a mapping' in e for e in errors)

    def test_malformed_sections_aggregated(self, tmp_path):
        """Test sections with the wrong shape are reported for every file."""
        (tmp_path / 'bad_headers.yaml').write_text(
            'request:\n  method: GET\n  path: /a\n  headers: [x]\nresponse:\n  status: 200\n',
            encoding='utf-8'
        )
        (tmp_path / 'bad_request.yaml').write_text('request: [1]\nresponse:\n  status: 200\n', encoding='utf-8')
        (tmp_path / 'bad_status.yaml').write_text(
            'request:\n  method: GET\n  path: /c\nresponse:\n  status: [200]\n',
            encoding='utf-8'
        )

        with pytest.raises(MockLoadError) as exc_info:
            MockLoader(str(tmp_path)).load()

        errors = exc_info.value.errors
        assert len(errors) == 3
        assert any('request.headers must be a mapping, got list' in e for e in errors)
        assert any('request must be a mapping, got list' in e for e in errors)
        assert any('response.status must be an integer' in e for e in errors)

    def test_path_objects_accepted(self, mock_dir):
        """Test Path arguments work like strings."""
        mocks = MockLoader(Path(mock_dir) / 'create_order.json').load()

        assert mocks[0].name == 'create_order'
