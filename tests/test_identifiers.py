"""Tests for project id encoding."""

import pytest

from domain import encode_project_id, decode_project_id
from monitoring import InvalidProjectIdError, ValidationError


class TestProjectIds:
    """Test the path <-> id mapping."""

    @pytest.mark.parametrize('path', [
        '/home/dev/web',
        '/home/dev/my project',
        '/home/dev/ünïcødé',
        '/home/dev/a?b#c&d=e',
    ])
    def test_round_trip(self, path):
        assert decode_project_id(encode_project_id(path)) == path

    def test_url_safe(self):
        project_id = encode_project_id('/home/dev/~~~???>>>')
        assert not set(project_id) & set('+/=')

    def test_deterministic_and_distinct(self):
        assert encode_project_id('/a/b') == encode_project_id('/a/b')
        assert encode_project_id('/a/b') != encode_project_id('/a/c')

    @pytest.mark.parametrize('project_id', ['', '***', 'a', 'L2hvbWU=extra', '/home/dev'])
    def test_invalid_ids_rejected(self, project_id):
        with pytest.raises(InvalidProjectIdError):
            decode_project_id(project_id)

    def test_invalid_id_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            decode_project_id('***')
