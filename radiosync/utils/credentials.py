"""Credentials parser for reading Tidal accounts from credentials.md."""

import os
import re
from typing import List, NamedTuple


class CredentialsError(Exception):
    """Exception raised when credentials cannot be parsed."""
    pass


class TidalAccount(NamedTuple):
    username: str
    password: str

    def __repr__(self) -> str:
        return f"TidalAccount(username={self.username!r}, password='<redacted>')"


def parse_credentials(credentials_path: str = "credentials.md") -> List[TidalAccount]:
    """
    Parse Tidal accounts from credentials.md file.
    
    Each account is a line of the form:
    
        TIDAL_ACCOUNT=username:password
    
    The line can be repeated, playlists are created for every account listed.
    Lines with other keys are ignored.
    
    Args:
        credentials_path: Path to the credentials file (default: credentials.md)
    
    Returns:
        Accounts in file order
    
    Raises:
        CredentialsError: If file not found, an entry is malformed or no account is listed
    """
    if not os.path.exists(credentials_path):
        raise CredentialsError(f"Credentials file not found: {credentials_path}")
    
    with open(credentials_path, 'r', encoding='utf-8') as f:
        content = f.read()
    
    accounts = []
    
    pattern = r'^\s*TIDAL_ACCOUNT=(.+)$'
    for value in re.findall(pattern, content, flags=re.MULTILINE):
        # Passwords may contain ':', usernames may not
        username, sep, password = value.strip().partition(':')
        if not sep or not username.strip() or not password:
            raise CredentialsError(
                "Malformed TIDAL_ACCOUNT entry, expected TIDAL_ACCOUNT=username:password"
            )
        accounts.append(TidalAccount(username=username.strip(), password=password))
    
    if not accounts:
        raise CredentialsError(
            f"No Tidal account found in {credentials_path}, add a TIDAL_ACCOUNT=username:password line"
        )
    
    return accounts
