"""
Tests for the request builder and the Tally connector (mocked HTTP session).
"""
import pytest
import requests
from datetime import date
from unittest.mock import Mock
from lxml import etree
from urllib3.exceptions import MaxRetryError, NewConnectionError

from tally_snapshot.client import TallyConnector, find_soft_error, is_connection_refused
from tally_snapshot.config import TallySnapshotConfig
from tally_snapshot.errors import ProtocolError, SourceUnreachableError, TransportError
from tally_snapshot.requests import RequestBuilder, tally_date


OK_BODY = "<ENVELOPE><BODY><DATA><COLLECTION></COLLECTION></DATA></BODY></ENVELOPE>"
ERROR_BODY = "<RESPONSE><LINEERROR>Could not set &apos;SVCurrentCompany&apos; to &apos;X&apos;</LINEERROR></RESPONSE>"


def make_config(**overrides):
    values = dict(
        tally_url="http://tally.local:9000",
        tally_company="ACME Traders",
        export_format="xml",
        request_timeout=300,
        retry_attempts=3,
        retry_delay=2.0,
        retry_max_delay=30.0,
        cooldown=1.0,
    )
    values.update(overrides)
    return TallySnapshotConfig(**values)


def response(body):
    r = Mock()
    r.text = body
    r.raise_for_status = Mock()
    return r


class TestRequestBuilder:
    """Tests for request payload rendering."""

    def test_payloads_are_well_formed_xml(self):
        builder = RequestBuilder(make_config())
        for payload in (
            builder.probe(),
            builder.masters(),
            builder.vouchers_for_range(date(2024, 4, 1), date(2024, 4, 30)),
            builder.vouchers_since(1520),
        ):
            etree.fromstring(payload.encode("utf-8"))

    def test_company_is_escaped(self):
        builder = RequestBuilder(make_config(tally_company="M&S <Traders>"))
        payload = builder.masters()
        assert "<SVCURRENTCOMPANY>M&amp;S &lt;Traders&gt;</SVCURRENTCOMPANY>" in payload

    def test_active_company_when_not_configured(self):
        builder = RequestBuilder(make_config(tally_company=""))
        assert "SVCURRENTCOMPANY" not in builder.masters()

    def test_range_dates(self):
        payload = RequestBuilder(make_config()).vouchers_for_range(date(2024, 4, 1), date(2024, 4, 30))
        assert "<SVFROMDATE>20240401</SVFROMDATE>" in payload
        assert "<SVTODATE>20240430</SVTODATE>" in payload
        assert "Voucher Register" in payload

    def test_range_rejects_reversed_dates(self):
        with pytest.raises(ValueError):
            RequestBuilder(make_config()).vouchers_for_range(date(2024, 5, 1), date(2024, 4, 1))

    def test_vouchers_since_filter(self):
        payload = RequestBuilder(make_config()).vouchers_since(1520)
        assert "$AlterId &gt; 1520" in payload
        with pytest.raises(ValueError):
            RequestBuilder(make_config()).vouchers_since(-1)

    def test_json_export_format(self):
        payload = RequestBuilder(make_config(export_format="json")).masters()
        assert "<SVEXPORTFORMAT>JSONEx</SVEXPORTFORMAT>" in payload

    def test_tally_date(self):
        assert tally_date(date(2024, 1, 5)) == "20240105"


class TestSoftErrors:

    def test_line_error(self):
        assert find_soft_error(ERROR_BODY) == "Could not set 'SVCurrentCompany' to 'X'"

    def test_status_zero(self):
        assert find_soft_error("<RESPONSE><STATUS>0</STATUS></RESPONSE>") == "Tally returned STATUS=0"

    def test_missing_report(self):
        msg = find_soft_error("<RESPONSE>Could not find Report 'Foo'</RESPONSE>")
        assert msg == "Could not find Report 'Foo'"

    def test_clean_body(self):
        assert find_soft_error(OK_BODY) is None


class TestTallyConnector:
    """Unit tests for TallyConnector with a mocked session."""

    def make_connector(self, session, **overrides):
        sleeps = []
        connector = TallyConnector(make_config(**overrides), session=session, sleep=sleeps.append)
        return connector, sleeps

    def test_send_returns_body_after_cooldown(self):
        session = Mock()
        session.post.return_value = response(OK_BODY)
        connector, sleeps = self.make_connector(session)

        assert connector.send("<ENVELOPE/>") == OK_BODY
        assert sleeps == [1.0]
        session.post.assert_called_once()
        _, kwargs = session.post.call_args
        assert kwargs["timeout"] == 300

    def test_keep_alive_disabled(self):
        connector, _ = self.make_connector(requests.Session())
        assert connector.session.headers["Connection"] == "close"

    def test_soft_error_is_retried(self):
        session = Mock()
        session.post.side_effect = [response(ERROR_BODY), response(OK_BODY)]
        connector, sleeps = self.make_connector(session)

        assert connector.send("<ENVELOPE/>") == OK_BODY
        assert session.post.call_count == 2
        # cooldown, then one backoff wait
        assert sleeps[0] == 1.0
        assert len(sleeps) == 2

    def test_soft_error_exhausts_retries(self):
        session = Mock()
        session.post.return_value = response(ERROR_BODY)
        connector, _ = self.make_connector(session)

        with pytest.raises(ProtocolError, match="SVCurrentCompany"):
            connector.send("<ENVELOPE/>")
        assert session.post.call_count == 3

    def test_backoff_is_capped(self):
        session = Mock()
        session.post.return_value = response(ERROR_BODY)
        connector, sleeps = self.make_connector(session, retry_attempts=6, cooldown=0)

        with pytest.raises(ProtocolError):
            connector.send("<ENVELOPE/>")
        assert len(sleeps) == 5
        assert all(2.0 <= s <= 30.0 for s in sleeps)
        assert sleeps == sorted(sleeps)

    def test_empty_body_is_protocol_error(self):
        session = Mock()
        session.post.return_value = response("   ")
        connector, _ = self.make_connector(session, retry_attempts=1)

        with pytest.raises(ProtocolError, match="Empty response"):
            connector.send("<ENVELOPE/>")

    def test_connection_refused(self):
        session = Mock()
        session.post.side_effect = requests.ConnectionError(ConnectionRefusedError(111, "Connection refused"))
        connector, _ = self.make_connector(session)

        with pytest.raises(SourceUnreachableError):
            connector.send("<ENVELOPE/>")
        assert session.post.call_count == 3

    def test_refused_inside_urllib3_chain(self):
        try:
            try:
                raise ConnectionRefusedError(111, "Connection refused")
            except ConnectionRefusedError as socket_error:
                raise NewConnectionError(None, "Failed to establish a new connection") from socket_error
        except NewConnectionError as new_connection:
            wrapped = requests.ConnectionError(MaxRetryError(None, "/", reason=new_connection))

        assert is_connection_refused(wrapped)
        assert not is_connection_refused(requests.ConnectionError("Connection aborted."))

    def test_dropped_connection_is_plain_transport_error(self):
        session = Mock()
        reset = requests.ConnectionError(ConnectionResetError(104, "Connection reset by peer"))
        session.post.side_effect = [reset, response(OK_BODY)]
        connector, _ = self.make_connector(session)
        assert connector.send("<ENVELOPE/>") == OK_BODY

        session.post.side_effect = reset
        with pytest.raises(TransportError) as excinfo:
            connector.send("<ENVELOPE/>")
        assert not isinstance(excinfo.value, SourceUnreachableError)

    def test_timeout_is_transport_error(self):
        session = Mock()
        session.post.side_effect = [requests.Timeout("slow"), response(OK_BODY)]
        connector, _ = self.make_connector(session)
        assert connector.send("<ENVELOPE/>") == OK_BODY

        session.post.side_effect = requests.Timeout("slow")
        with pytest.raises(TransportError):
            connector.send("<ENVELOPE/>")

    def test_probe_returns_company_name(self):
        session = Mock()
        session.post.return_value = response(
            "<ENVELOPE><BODY><DATA><COLLECTION>"
            "<COMPANY><NAME>ACME Traders</NAME></COMPANY>"
            "</COLLECTION></DATA></BODY></ENVELOPE>"
        )
        connector, _ = self.make_connector(session)
        assert connector.probe() == "ACME Traders"

    def test_probe_without_company(self):
        session = Mock()
        session.post.return_value = response(OK_BODY)
        connector, _ = self.make_connector(session)
        assert connector.probe() == "Unknown"


class TestTallyConnectorIntegration:
    """Integration tests (require running Tally)."""

    @pytest.mark.integration
    def test_probe_live(self):
        with TallyConnector() as connector:
            assert connector.probe()
