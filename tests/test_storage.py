"""
Tests for the object storage helpers (boto3 client mocked)
"""
from unittest.mock import patch, MagicMock

import pytest
from botocore.exceptions import ClientError

from utils import storage
from utils.errors import ActionError
from tests.conftest import make_upload


@pytest.fixture
def s3(ctx):
    client = MagicMock()
    with patch('utils.storage.boto3.client', return_value=client) as factory:
        client.factory = factory
        yield client


def client_error(operation):
    return ClientError({'Error': {'Code': '500', 'Message': 'boom'}}, operation)


class TestUpload:
    """upload_file"""

    def test_uploads_under_folder_with_uuid_name(self, s3):
        key = storage.upload_file(make_upload('Report.PDF'), 'students')

        assert key.startswith('students/')
        assert key.endswith('.pdf')
        args, kwargs = s3.upload_fileobj.call_args
        assert args[1] == 'test-bucket'
        assert args[2] == key
        assert kwargs['ExtraArgs']['ContentType'] == 'application/pdf'

    def test_client_uses_configured_endpoint(self, app, s3):
        app.config['S3_ENDPOINT_URL'] = 'https://r2.example'
        try:
            storage.upload_file(make_upload(), 'staff')
        finally:
            app.config['S3_ENDPOINT_URL'] = None
        assert s3.factory.call_args.kwargs['endpoint_url'] == 'https://r2.example'

    def test_size_limit(self, app, s3):
        app.config['MAX_UPLOAD_BYTES'] = 10
        try:
            with pytest.raises(ActionError, match="exceeds the limit"):
                storage.upload_file(make_upload(content=b'x' * 11), 'students')
        finally:
            app.config['MAX_UPLOAD_BYTES'] = 50 * 1024 * 1024
        s3.upload_fileobj.assert_not_called()

    def test_missing_file(self, s3):
        with pytest.raises(ActionError, match="No file provided"):
            storage.upload_file(None, 'students')

    def test_client_error_becomes_action_error(self, s3):
        s3.upload_fileobj.side_effect = client_error('PutObject')
        with pytest.raises(ActionError, match="Upload failed"):
            storage.upload_file(make_upload(), 'students')

    def test_file_without_extension(self):
        assert storage.build_key('materials', 'README').endswith('.bin')


class TestDelete:
    """delete_file never raises"""

    def test_deletes_by_key_from_full_url(self, s3):
        assert storage.delete_file('https://files.test/students/abc.pdf') is True
        s3.delete_object.assert_called_once_with(Bucket='test-bucket', Key='students/abc.pdf')

    def test_failure_returns_false(self, s3):
        s3.delete_object.side_effect = client_error('DeleteObject')
        assert storage.delete_file('students/abc.pdf') is False

    def test_nothing_to_delete(self, s3):
        assert storage.delete_file(None) is False
        s3.delete_object.assert_not_called()


class TestUrls:
    """Public and presigned links"""

    def test_public_url(self, ctx):
        assert storage.get_public_url('students/a.pdf') == 'https://files.test/students/a.pdf'
        assert storage.get_public_url('https://elsewhere/x.pdf') == 'https://elsewhere/x.pdf'
        assert storage.get_public_url(None) is None

    def test_presigned_url(self, s3):
        s3.generate_presigned_url.return_value = 'https://signed'
        assert storage.get_presigned_url('students/a.pdf') == 'https://signed'
        kwargs = s3.generate_presigned_url.call_args.kwargs
        assert kwargs['Params'] == {'Bucket': 'test-bucket', 'Key': 'students/a.pdf'}
        assert kwargs['ExpiresIn'] == 3600
