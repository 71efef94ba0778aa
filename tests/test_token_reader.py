"""Tests for reading tokens from auth.json"""

from codex_switcher.token_reader import read_auth_tokens, INCOMPLETE_MESSAGE, MISSING_MESSAGE
from codex_switcher.usage_types import TokenState
from tests.conftest import ACCESS_TOKEN, ACCOUNT_ID, write_auth_file


class TestReadAuthTokens:
    def test_reads_token_and_account(self, tmp_path):
        path = write_auth_file(tmp_path / "auth.json")
        result = read_auth_tokens(path)
        assert result.ok
        assert result.access_token == ACCESS_TOKEN
        assert result.account_id == ACCOUNT_ID

    def test_missing_file(self, tmp_path):
        result = read_auth_tokens(tmp_path / "nope.json")
        assert result.state == TokenState.MISSING
        assert result.message == MISSING_MESSAGE

    def test_empty_path_is_missing(self):
        assert read_auth_tokens("").state == TokenState.MISSING
        assert read_auth_tokens(None).state == TokenState.MISSING

    def test_invalid_json_is_parse_error(self, tmp_path):
        path = tmp_path / "auth.json"
        path.write_text("{not json")
        result = read_auth_tokens(path)
        assert result.state == TokenState.PARSE_ERROR
        assert result.message

    def test_directory_is_parse_error(self, tmp_path):
        path = tmp_path / "auth.json"
        path.mkdir()
        result = read_auth_tokens(path)
        assert result.state == TokenState.PARSE_ERROR
        assert result.message

    def test_empty_tokens_is_incomplete(self, tmp_path):
        path = write_auth_file(tmp_path / "auth.json", tokens={})
        result = read_auth_tokens(path)
        assert result.state == TokenState.INCOMPLETE
        assert result.message == INCOMPLETE_MESSAGE

    def test_missing_account_id_is_incomplete(self, tmp_path):
        path = write_auth_file(tmp_path / "auth.json", tokens={"access_token": "tok"})
        assert read_auth_tokens(path).state == TokenState.INCOMPLETE

    def test_no_tokens_object_is_incomplete(self, tmp_path):
        path = tmp_path / "auth.json"
        path.write_text('{"OPENAI_API_KEY": null}')
        assert read_auth_tokens(path).state == TokenState.INCOMPLETE
