"""
Token reader for Codex auth.json files

Extracts the access token and account id that the usage endpoint needs.
Every failure is returned as a TokenResult so callers can show it next to
the profile instead of crashing.
"""

import json
from pathlib import Path
from typing import Optional, Union

from .usage_types import TokenResult, TokenState


MISSING_MESSAGE = "auth.json not found for this profile."
INCOMPLETE_MESSAGE = "auth.json is incomplete: missing access_token or account_id."
PARSE_ERROR_MESSAGE = "Failed to parse auth.json."


def read_auth_tokens(auth_file: Optional[Union[str, Path]]) -> TokenResult:
    """Read tokens.access_token and tokens.account_id from an auth.json file"""
    if not auth_file or not Path(auth_file).exists():
        return TokenResult(state=TokenState.MISSING, message=MISSING_MESSAGE)

    try:
        with open(auth_file, 'r', encoding='utf-8') as f:
            parsed = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        return TokenResult(state=TokenState.PARSE_ERROR, message=str(e) or PARSE_ERROR_MESSAGE)

    tokens = parsed.get('tokens') if isinstance(parsed, dict) else None
    if not isinstance(tokens, dict):
        tokens = {}

    access_token = tokens.get('access_token')
    account_id = tokens.get('account_id')

    if not access_token or not account_id or not isinstance(access_token, str) or not isinstance(account_id, str):
        return TokenResult(state=TokenState.INCOMPLETE, message=INCOMPLETE_MESSAGE)

    return TokenResult(state=TokenState.OK, access_token=access_token, account_id=account_id)
