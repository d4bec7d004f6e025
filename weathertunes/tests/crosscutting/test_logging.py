import json
import logging
import sys

from weathertunes.crosscutting.logging import (
    SecretMasker, StructuredFormatter, CorrelationContext,
    setup_logging, log_with_fields,
    log_session_start, log_session_complete, log_error,
    session_id_var, stage_var
)


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _record(message, level=logging.INFO, exc_info=None):
    return logging.LogRecord('weathertunes.test', level, '/src/weathertunes/module.py', 42,
                             message, (), exc_info, func='do_work')


class TestSecretMasker:
    """Tests for secret masking functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.masker = SecretMasker()

    def test_mask_access_token(self):
        """Test masking access tokens."""
        text = "access_token: abcdefghij1234567890"
        masked = self.masker.mask_secrets(text)
        assert masked == "access_token: abcd************7890"

    def test_mask_refresh_token(self):
        """Test masking refresh tokens in key=value form."""
        masked = self.masker.mask_secrets("refresh_token=AQDxyz1234567890abcd")
        assert masked == "refresh_token: AQDx************abcd"

    def test_mask_client_secret(self):
        """Test masking client secrets."""
        text = "client_secret: my_super_secret_key_12345"
        masked = self.masker.mask_secrets(text)
        assert masked == "client_secret: my_s*****************2345"

    def test_mask_bearer_header(self):
        """Test masking bearer tokens."""
        token = "BQABC123DEF456GHI789JKL012"
        masked = self.masker.mask_secrets(f"Authorization: Bearer {token}")
        assert token not in masked
        assert "BQAB" in masked

    def test_no_secrets_in_text(self):
        """Test that non-secret text is not modified."""
        text = "Searching 30 hints concurrently..."
        assert self.masker.mask_secrets(text) == text

    def test_empty_text(self):
        """Test handling of empty text."""
        assert self.masker.mask_secrets("") == ""
        assert self.masker.mask_secrets(None) is None

    def test_short_secret(self):
        """Test that short values are left alone."""
        assert self.masker.mask_secrets("token: abc123") == "token: abc123"

    def test_mask_dict(self):
        """Test masking secrets in dictionary values by key."""
        data = {
            'access_token': 'secret_token_12345',
            'session': {'refresh_token': 'abc', 'stage': 'collecting'},
            'queries': ['lofi cozy song', {'client_secret': 'xyz'}],
            'count': 3
        }
        masked = self.masker.mask_dict(data)

        assert masked['access_token'] == '*' * len('secret_token_12345')
        assert masked['session'] == {'refresh_token': '***', 'stage': 'collecting'}
        assert masked['queries'] == ['lofi cozy song', {'client_secret': '***'}]
        assert masked['count'] == 3


class TestStructuredFormatter:
    """Tests for structured logging formatter."""

    def setup_method(self):
        """Set up test fixtures."""
        self.formatter = StructuredFormatter()

    def test_format_basic_log(self):
        """Test basic log formatting."""
        data = json.loads(self.formatter.format(_record('Test message')))

        assert data['level'] == 'INFO'
        assert data['logger'] == 'weathertunes.test'
        assert data['message'] == 'Test message'
        assert data['module'] == 'module'
        assert data['function'] == 'do_work'
        assert data['line'] == 42
        assert data['ts'].endswith('Z')
        assert 'sessionId' not in data
        assert 'stage' not in data

    def test_format_with_correlation(self):
        """Test formatting with correlation data."""
        with CorrelationContext(session_id='abc123', stage='ranking'):
            data = json.loads(self.formatter.format(_record('Test message')))

        assert data['sessionId'] == 'abc123'
        assert data['stage'] == 'ranking'

    def test_format_with_secrets(self):
        """Test formatting with secret masking."""
        data = json.loads(self.formatter.format(_record('API token: secret123456')))

        assert data['message'] == 'API token: secr****3456'

    def test_format_with_fields(self):
        """Test formatting with additional fields."""
        record = _record('Test message')
        record.fields = {'hint_count': 3, 'access_token': 'token_value_123'}

        data = json.loads(self.formatter.format(record))

        assert data['fields']['hint_count'] == 3
        assert data['fields']['access_token'] == '*' * len('token_value_123')

    def test_format_with_exception(self):
        """Test formatting with exception info."""
        try:
            raise ValueError("Test error")
        except ValueError:
            record = _record('Error occurred', logging.ERROR, sys.exc_info())

        data = json.loads(self.formatter.format(record))

        assert 'ValueError' in data['exception']
        assert 'Test error' in data['exception']


class TestCorrelationContext:
    """Tests for correlation context management."""

    def test_correlation_context_basic(self):
        """Test context values are restored on exit."""
        with CorrelationContext(session_id='s1', stage='collecting'):
            assert session_id_var.get() == 's1'
            assert stage_var.get() == 'collecting'

        assert session_id_var.get() is None
        assert stage_var.get() is None

    def test_correlation_context_nested(self):
        """Test nested stage keeps outer session id."""
        with CorrelationContext(session_id='s1'):
            with CorrelationContext(stage='ranking'):
                assert session_id_var.get() == 's1'
                assert stage_var.get() == 'ranking'
            assert stage_var.get() is None
            assert session_id_var.get() == 's1'


class TestLoggingHelpers:
    """Tests for logging setup and helper functions."""

    def setup_method(self):
        """Set up test fixtures."""
        self.logger = logging.getLogger('weathertunes.tests.helpers')
        self.logger.setLevel(logging.DEBUG)
        self.handler = _ListHandler()
        self.logger.addHandler(self.handler)

    def teardown_method(self):
        self.logger.removeHandler(self.handler)

    def test_setup_logging_structured(self, tmp_path):
        """Test structured setup with a log file."""
        log_file = tmp_path / 'weathertunes.log'
        logger = setup_logging('DEBUG', str(log_file))
        try:
            assert logger.name == 'weathertunes'
            assert logger.level == logging.DEBUG
            assert len(logger.handlers) == 2
            assert all(isinstance(h.formatter, StructuredFormatter) for h in logger.handlers)
        finally:
            for handler in list(logger.handlers):
                handler.close()
            logger.handlers.clear()

    def test_setup_logging_plain(self):
        """Test plain text setup."""
        logger = setup_logging('WARNING', structured=False)
        try:
            assert len(logger.handlers) == 1
            assert not isinstance(logger.handlers[0].formatter, StructuredFormatter)
        finally:
            logger.handlers.clear()

    def test_log_with_fields(self):
        """Test that fields and keyword fields are merged onto the record."""
        log_with_fields(self.logger, 'INFO', 'Playlist ranked', {'tracks': 30}, collected=12)

        record = self.handler.records[-1]
        assert record.getMessage() == 'Playlist ranked'
        assert record.fields == {'tracks': 30, 'collected': 12}

    def test_log_with_fields_respects_level(self):
        """Test that disabled levels produce no record."""
        self.logger.setLevel(logging.WARNING)

        log_with_fields(self.logger, 'INFO', 'Hidden', {'x': 1})

        assert self.handler.records == []

    def test_log_session_start_and_complete(self):
        """Test session lifecycle records."""
        log_session_start(self.logger, 's1', 12, mood='cozy')
        log_session_complete(self.logger, 's1', 'created', playlist_id='pl1')

        start, complete = self.handler.records
        assert start.fields == {'hint_count': 12, 'mood': 'cozy'}
        assert complete.fields == {'outcome': 'created', 'playlist_id': 'pl1'}

    def test_log_error(self):
        """Test error records carry exception details."""
        log_error(self.logger, 'Assembly session failed', RuntimeError('boom'), stage='ranking')

        record = self.handler.records[-1]
        assert record.levelno == logging.ERROR
        assert record.fields == {
            'error_type': 'RuntimeError', 'error_message': 'boom', 'stage': 'ranking'
        }
