from dataclasses import replace

from hue_mirror.security import ANONYMOUS, authenticate


def test_open_without_configured_credentials(config):
    open_config = replace(config, auth_tokens=[], api_keys=[])
    assert authenticate(open_config, bearer_token=None, api_key=None) is ANONYMOUS


def test_bearer_token_and_api_key(config):
    auth = authenticate(config, bearer_token=" dev-token ", api_key=None)
    assert (auth.scheme, auth.credential) == ("bearer", "dev-token")
    auth = authenticate(config, bearer_token="wrong", api_key="dev-key")
    assert auth.scheme == "api_key"


def test_invalid_credentials_are_rejected(config):
    assert authenticate(config, bearer_token="wrong", api_key="wrong") is None
    assert authenticate(config, bearer_token=None, api_key=None) is None
