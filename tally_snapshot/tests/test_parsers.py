"""
Unit tests for Tally response parsers.
"""
import pytest
from datetime import date

from tally_snapshot.errors import ProtocolError
from tally_snapshot.parsers import (
    as_list,
    decode_response,
    extract_company_name,
    iter_records,
    parse_float,
    parse_int,
    parse_masters,
    parse_tally_date,
    parse_vouchers,
    max_alter_id,
    sanitize_xml,
)
from tally_snapshot.parsers.base import parse_quantity


VOUCHER_REGISTER_XML = """
<ENVELOPE>
  <HEADER><TALLYREQUEST>Import Data</TALLYREQUEST></HEADER>
  <BODY><IMPORTDATA><REQUESTDATA>
    <TALLYMESSAGE>
      <VOUCHER REMOTEID="r-1" VCHTYPE="Sales">
        <DATE>20240115</DATE>
        <GUID>g-1</GUID>
        <ALTERID> 1 234</ALTERID>
        <VOUCHERTYPENAME>Sales</VOUCHERTYPENAME>
        <VOUCHERNUMBER>S/1</VOUCHERNUMBER>
        <PARTYLEDGERNAME>ABC Traders</PARTYLEDGERNAME>
        <ALLLEDGERENTRIES.LIST>
          <LEDGERNAME>ABC Traders</LEDGERNAME>
          <AMOUNT>-1180.00</AMOUNT>
          <BILLALLOCATIONS.LIST>
            <NAME>S/1</NAME>
            <BILLTYPE>New Ref</BILLTYPE>
            <AMOUNT>-1180.00</AMOUNT>
          </BILLALLOCATIONS.LIST>
        </ALLLEDGERENTRIES.LIST>
        <ALLLEDGERENTRIES.LIST>
          <LEDGERNAME>Sales</LEDGERNAME>
          <AMOUNT>1000.00</AMOUNT>
        </ALLLEDGERENTRIES.LIST>
        <ALLLEDGERENTRIES.LIST>
          <LEDGERNAME>Output GST</LEDGERNAME>
          <AMOUNT>180.00</AMOUNT>
        </ALLLEDGERENTRIES.LIST>
        <ALLINVENTORYENTRIES.LIST>
          <STOCKITEMNAME>Widget</STOCKITEMNAME>
          <BILLEDQTY>10 Nos</BILLEDQTY>
          <AMOUNT>1000.00</AMOUNT>
        </ALLINVENTORYENTRIES.LIST>
      </VOUCHER>
    </TALLYMESSAGE>
    <TALLYMESSAGE>
      <VOUCHER VCHTYPE="Receipt">
        <DATE>20240116</DATE>
        <ALTERID>1240</ALTERID>
        <VOUCHERTYPENAME>Receipt</VOUCHERTYPENAME>
        <VOUCHERNUMBER>R/7</VOUCHERNUMBER>
        <ALLLEDGERENTRIES.LIST>
          <LEDGERNAME>ABC Traders</LEDGERNAME>
          <AMOUNT>500.00</AMOUNT>
          <BILLALLOCATIONS.LIST>
            <NAME>S/1</NAME>
            <BILLTYPE>Agst Ref</BILLTYPE>
            <AMOUNT>500.00</AMOUNT>
          </BILLALLOCATIONS.LIST>
        </ALLLEDGERENTRIES.LIST>
      </VOUCHER>
    </TALLYMESSAGE>
    <TALLYMESSAGE>
      <VOUCHER VCHTYPE="Journal">
        <GUID>g-no-date</GUID>
        <VOUCHERTYPENAME>Journal</VOUCHERTYPENAME>
      </VOUCHER>
    </TALLYMESSAGE>
  </REQUESTDATA></IMPORTDATA></BODY>
</ENVELOPE>
"""

MASTERS_XML = """
<ENVELOPE>
  <BODY><IMPORTDATA><REQUESTDATA>
    <TALLYMESSAGE>
      <GROUP NAME="Current Assets"><PARENT>&#4; Primary</PARENT></GROUP>
    </TALLYMESSAGE>
    <TALLYMESSAGE>
      <GROUP NAME="Sundry Debtors"><PARENT>&#4; Current Assets</PARENT></GROUP>
    </TALLYMESSAGE>
    <TALLYMESSAGE>
      <GROUP><PARENT>Sundry Debtors</PARENT></GROUP>
    </TALLYMESSAGE>
    <TALLYMESSAGE>
      <LEDGER NAME="ABC Traders">
        <PARENT>Sundry Debtors</PARENT>
        <OPENINGBALANCE>-5000.00</OPENINGBALANCE>
        <LEDGERBILLALLOCATIONS.LIST>
          <NAME>OB/1</NAME>
          <BILLDATE>20240301</BILLDATE>
          <OPENINGBALANCE>-5000.00</OPENINGBALANCE>
        </LEDGERBILLALLOCATIONS.LIST>
      </LEDGER>
    </TALLYMESSAGE>
    <TALLYMESSAGE>
      <LEDGER NAME="M&amp;S Suppliers">
        <PARENT>Sundry Creditors</PARENT>
        <OPENINGBALANCE>2500.00</OPENINGBALANCE>
      </LEDGER>
    </TALLYMESSAGE>
  </REQUESTDATA></IMPORTDATA></BODY>
</ENVELOPE>
"""


class TestBaseParsers:
    """Tests for base parsing utilities."""

    def test_sanitize_xml_removes_control_chars(self):
        assert sanitize_xml("<A>x\x01y\x1f</A>") == "<A>xy</A>"

    def test_sanitize_xml_strips_reserved_marker(self):
        assert sanitize_xml("<PARENT>&#4; Primary</PARENT>") == "<PARENT> Primary</PARENT>"

    def test_sanitize_xml_fixes_ampersands(self):
        assert sanitize_xml("<A>M&S</A>") == "<A>M&amp;S</A>"
        assert sanitize_xml("<A>M&amp;S</A>") == "<A>M&amp;S</A>"

    def test_parse_tally_date_formats(self):
        assert parse_tally_date("20240401") == date(2024, 4, 1)
        assert parse_tally_date("2024-04-01") == date(2024, 4, 1)
        assert parse_tally_date("01-Apr-2024") == date(2024, 4, 1)
        assert parse_tally_date("") is None
        assert parse_tally_date(None) is None

    def test_parse_float_tally_negatives(self):
        assert parse_float("1,234.50") == 1234.5
        assert parse_float("(-)1,234.50") == -1234.5
        assert parse_float("(500)") == -500.0
        assert parse_float("") == 0.0

    def test_parse_int_with_spaces(self):
        assert parse_int(" 1 234") == 1234
        assert parse_int("12.0") == 12

    def test_parse_quantity_with_unit(self):
        assert parse_quantity("10 Nos") == 10.0
        assert parse_quantity("(-)5 Nos") == -5.0
        assert parse_quantity("") == 0.0

    def test_as_list(self):
        assert as_list(None) == []
        assert as_list("") == []
        assert as_list({"a": 1}) == [{"a": 1}]
        assert as_list([1, 2]) == [1, 2]


class TestDecodeResponse:
    """Tests for the decode strategies."""

    def test_empty_body_is_empty_tree(self):
        assert decode_response("") == {}
        assert decode_response("   \n") == {}

    def test_json_and_xml_give_same_shape(self):
        xml_tree = decode_response("<ENVELOPE><VOUCHER><GUID>a</GUID></VOUCHER></ENVELOPE>")
        json_tree = decode_response('{"ENVELOPE": {"VOUCHER": {"GUID": "a"}}}')
        assert xml_tree == json_tree

    def test_single_and_repeated_records(self):
        one = decode_response("<E><VOUCHER><GUID>a</GUID></VOUCHER></E>")
        two = decode_response("<E><VOUCHER><GUID>a</GUID></VOUCHER><VOUCHER><GUID>b</GUID></VOUCHER></E>")
        assert [r["GUID"] for r in iter_records(one, "VOUCHER")] == ["a"]
        assert [r["GUID"] for r in iter_records(two, "VOUCHER")] == ["a", "b"]

    def test_truncated_xml_recovers(self):
        raw = "<ENVELOPE><VOUCHER><GUID>a</GUID></VOUCHER><VOUCHER><GUID>b"
        tree = decode_response(raw)
        guids = [r.get("GUID") for r in iter_records(tree, "VOUCHER")]
        assert guids[0] == "a"

    def test_unparseable_body_raises(self):
        with pytest.raises(ProtocolError):
            decode_response("Tally.ERP 9 Server is Running")

    def test_bom_is_ignored(self):
        tree = decode_response("\ufeff<E><VOUCHER><GUID>a</GUID></VOUCHER></E>")
        assert list(iter_records(tree, "VOUCHER")) == [{"GUID": "a"}]


class TestCompanyName:

    def test_structured_lookup(self):
        raw = (
            "<ENVELOPE><BODY><DATA><COLLECTION>"
            "<COMPANY><NAME>ACME Traders</NAME></COMPANY>"
            "</COLLECTION></DATA></BODY></ENVELOPE>"
        )
        assert extract_company_name(raw) == "ACME Traders"

    def test_regex_fallback(self):
        assert extract_company_name("junk <NAME>Foo Ltd</NAME>") == "Foo Ltd"

    def test_no_company(self):
        assert extract_company_name("<ENVELOPE></ENVELOPE>") is None


class TestVoucherParsers:
    """Tests for voucher parsing."""

    def test_parse_voucher_register(self):
        result = parse_vouchers(VOUCHER_REGISTER_XML)

        assert len(result.records) == 2
        assert result.skipped == 1

        sale = result.records[0]
        assert sale.guid == "g-1"
        assert sale.alter_id == 1234
        assert sale.date == date(2024, 1, 15)
        assert sale.voucher_type == "Sales"
        assert sale.party_name == "ABC Traders"

        # Debits come out positive
        party, sales, gst = sale.ledger_entries
        assert party.ledger_name == "ABC Traders"
        assert party.amount == 1180.0
        assert sales.amount == -1000.0
        assert gst.amount == -180.0

        bill = party.bill_allocations[0]
        assert bill.bill_name == "S/1"
        assert bill.amount == 1180.0
        assert bill.is_origin is True

        item = sale.inventory_entries[0]
        assert item.item_name == "Widget"
        assert item.qty == 10.0
        assert item.amount == -1000.0

    def test_voucher_without_guid_gets_stable_key(self):
        receipt = parse_vouchers(VOUCHER_REGISTER_XML).records[1]
        assert receipt.guid == "Receipt/R/7/20240116"
        assert receipt.ledger_entries[0].bill_allocations[0].is_origin is False

    def test_json_single_object_fields(self):
        raw = """
        {"ENVELOPE": {"BODY": {"DATA": {"COLLECTION": {"VOUCHER": {
            "GUID": "j-1", "ALTERID": "7", "DATE": "20240210",
            "VOUCHERTYPENAME": "Purchase",
            "ALLLEDGERENTRIES.LIST": {"LEDGERNAME": "Supplier", "AMOUNT": "400"},
            "ALLINVENTORYENTRIES.LIST": {"STOCKITEMNAME": "Widget", "BILLEDQTY": "10 Nos", "AMOUNT": "-400"}
        }}}}}}
        """
        result = parse_vouchers(raw)
        assert len(result.records) == 1
        voucher = result.records[0]
        assert voucher.alter_id == 7
        assert voucher.ledger_entries[0].amount == -400.0
        assert voucher.inventory_entries[0].amount == 400.0

    def test_empty_response(self):
        result = parse_vouchers("<ENVELOPE></ENVELOPE>")
        assert result.records == []
        assert result.skipped == 0

    def test_max_alter_id(self):
        records = parse_vouchers(VOUCHER_REGISTER_XML).records
        assert max_alter_id(records) == 1240
        assert max_alter_id(records, floor=5000) == 5000
        assert max_alter_id([], floor=3) == 3


class TestMasterParsers:
    """Tests for masters parsing."""

    def test_parse_groups_and_ledgers(self):
        masters, skipped = parse_masters(MASTERS_XML)

        assert skipped == 1
        groups = {g.name: g.parent for g in masters.groups}
        assert groups == {"Current Assets": None, "Sundry Debtors": "Current Assets"}

        ledgers = {l.name: l for l in masters.ledgers}
        abc = ledgers["ABC Traders"]
        assert abc.parent == "Sundry Debtors"
        assert abc.opening_balance == 5000.0
        assert abc.opening_bills[0].name == "OB/1"
        assert abc.opening_bills[0].bill_date == date(2024, 3, 1)
        assert abc.opening_bills[0].amount == 5000.0

        assert ledgers["M&S Suppliers"].opening_balance == -2500.0
