"""Unit tests for the OAuth credential provider."""
from unittest.mock import Mock, patch

import pytest
from google.auth.exceptions import TransportError

from processor.errors import AuthError
from storage.credentials import load_credentials


@pytest.fixture
def valid_creds():
    creds = Mock(valid=True, expired=False)
    creds.to_json.return_value = '{"token": "abc"}'
    return creds


@patch('storage.credentials.InstalledAppFlow')
@patch('storage.credentials.Credentials')
def test_cached_token_is_reused(mock_credentials, mock_flow, tmp_path, valid_creds):
    (tmp_path / 'token.json').write_text('{}', encoding='utf-8')
    mock_credentials.from_authorized_user_file.return_value = valid_creds

    assert load_credentials(tmp_path) is valid_creds
    mock_flow.from_client_secrets_file.assert_not_called()


@patch('storage.credentials.Request')
@patch('storage.credentials.Credentials')
def test_expired_token_is_refreshed(mock_credentials, mock_request, tmp_path, valid_creds):
    (tmp_path / 'token.json').write_text('{}', encoding='utf-8')
    valid_creds.expired = True
    valid_creds.refresh_token = 'refresh'
    mock_credentials.from_authorized_user_file.return_value = valid_creds

    load_credentials(tmp_path)

    valid_creds.refresh.assert_called_once()


@patch('storage.credentials.InstalledAppFlow')
@patch('storage.credentials.Request')
@patch('storage.credentials.Credentials')
def test_refresh_without_network(mock_credentials, mock_request, mock_flow, tmp_path,
                                 valid_creds):
    (tmp_path / 'token.json').write_text('{}', encoding='utf-8')
    valid_creds.expired = True
    valid_creds.refresh_token = 'refresh'
    valid_creds.refresh.side_effect = TransportError('Name or service not known')
    mock_credentials.from_authorized_user_file.return_value = valid_creds

    with pytest.raises(AuthError):
        load_credentials(tmp_path)
    mock_flow.from_client_secrets_file.assert_not_called()


@patch('storage.credentials.InstalledAppFlow')
def test_first_run_authorizes_and_saves(mock_flow, tmp_path, valid_creds):
    (tmp_path / 'client_secret.json').write_text('{}', encoding='utf-8')
    mock_flow.from_client_secrets_file.return_value.run_local_server.return_value = valid_creds

    assert load_credentials(tmp_path) is valid_creds
    assert (tmp_path / 'token.json').read_text(encoding='utf-8') == '{"token": "abc"}'


def test_missing_client_secret(tmp_path):
    with pytest.raises(AuthError):
        load_credentials(tmp_path / 'config')
