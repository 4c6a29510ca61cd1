"""
Unit tests for response writers and structured renderers.
"""

import json
import threading
from datetime import datetime
from decimal import Decimal

import pytest

from webserve.http import writer
from webserve.http.response import ResponseFinishedError
from webserve.http.writer import TypedValue, XsdType


PEOPLE = [
    {"name": "Ada", "age": 36, "admin": True},
    {"name": "Alan, Jr.", "age": 41, "admin": False},
]


class TestRenderers:
    """Tests for the pure rendering functions."""

    def test_csv(self):
        """Test CSV output with a header line and quoting."""
        assert writer.render_csv(PEOPLE) == (
            "name,age,admin\n"
            "Ada,36,true\n"
            '"Alan, Jr.",41,false\n'
        )

    def test_csv_drops_nested_fields(self):
        """Test that a field holding a non-primitive anywhere is dropped."""
        records = [{"a": 1, "tags": "x"}, {"a": 2, "tags": ["y", "z"]}]

        assert writer.csv_fields(records) == ["a"]
        assert writer.render_csv(records) == "a\n1\n2\n"

    def test_csv_missing_values_are_empty(self):
        """Test that records missing a field leave the column empty."""
        assert writer.render_csv([{"a": 1}, {"b": 2}]) == "a,b\n1,\n,2\n"

    def test_json_round_trip(self):
        """Test that JSON output parses back to the records."""
        assert json.loads(writer.render_json(PEOPLE)) == PEOPLE

    def test_json_layout(self):
        """Test the array layout with tab-indented elements."""
        assert writer.render_json([{"n": 1}]) == '[\n{\n\t"n": 1\n}\n]\n'
        assert writer.render_json([]) == "[\n\n]\n"

    def test_json_converts_special_values(self):
        """Test that dates, decimals and tagged values serialize."""
        records = [{
            "when": datetime(2026, 1, 2, 3, 4, 5),
            "price": Decimal("1.5"),
            "zip": TypedValue("02134", XsdType.STRING),
        }]
        parsed = json.loads(writer.render_json(records))

        assert parsed == [{"when": "2026-01-02T03:04:05", "price": 1.5, "zip": "02134"}]

    def test_html(self):
        """Test the list layout with data attributes and escaping."""
        document = writer.render_html([{"name": "<b>"}, {"n": 2}])

        assert '\t<li data-name="&lt;b&gt;">0</li>' in document
        assert '\t<li data-n="2">1</li>' in document
        assert document.startswith("<!DOCTYPE html>\n")

    def test_xml_document(self):
        """Test the XML document layout."""
        document, _ = writer.render_xml([{"n": 3}], "items", "item")
        assert document == '<items>\n\t<item n="3"/>\n</items>\n'

    def test_xml_escapes_attributes(self):
        """Test that quotes and markup in values are escaped."""
        document, _ = writer.render_xml([{"q": 'say "hi" & <go>'}])
        assert 'q="say &quot;hi&quot; &amp; &lt;go&gt;"' in document

    def test_xml_rejects_invalid_attribute_names(self):
        """Test that keys which are not XML names are refused."""
        for key in ("a b", "x>", "1st", "ns:tag", ""):
            with pytest.raises(ValueError):
                writer.render_xml([{key: 1}])

    def test_xml_rejects_invalid_element_names(self):
        """Test that root and child tags are validated."""
        with pytest.raises(ValueError):
            writer.render_xml([], "bad root")
        with pytest.raises(ValueError):
            writer.render_xml([{"n": 1}], "items", "<item>")

    def test_html_rejects_invalid_data_names(self):
        """Test that data-* attribute names are validated."""
        with pytest.raises(ValueError):
            writer.render_html([{'x" onclick="y': 1}])

    def test_xml_name(self):
        """Test names that are accepted as-is."""
        for name in ("item", "_x", "first-name", "v1.2", "caf\u00e9"):
            assert writer.xml_name(name) == name

    def test_xml_schema_types(self):
        """Test that the schema types come from the first value of each field."""
        records = [{
            "flag": True,
            "count": 3,
            "whole": 4.0,
            "ratio": 0.5,
            "when": datetime(2026, 1, 1),
            "name": "x",
            "zip": TypedValue("02134", XsdType.STRING),
            "price": TypedValue(3, XsdType.DECIMAL),
        }]

        assert writer.schema_types(records) == {
            "flag": XsdType.BOOLEAN,
            "count": XsdType.INTEGER,
            "whole": XsdType.INTEGER,
            "ratio": XsdType.DECIMAL,
            "when": XsdType.DATETIME,
            "name": XsdType.STRING,
            "zip": XsdType.STRING,
            "price": XsdType.DECIMAL,
        }

    def test_xml_schema_document(self):
        """Test that the schema declares the root, child and attributes."""
        _, schema = writer.render_xml([{"n": 3, "s": "a"}], "items", "item")

        assert '<xs:element name="items">' in schema
        assert '<xs:element name="item" minOccurs="0" maxOccurs="unbounded">' in schema
        assert '<xs:attribute name="n" type="xs:integer"/>' in schema
        assert '<xs:attribute name="s" type="xs:string"/>' in schema

    def test_typed_decimal(self):
        """Test integral and fractional Decimals."""
        assert writer.typed(Decimal("2")).type == XsdType.INTEGER
        assert writer.typed(Decimal("2.5")).type == XsdType.DECIMAL


class TestWriters:
    """Tests for writers producing complete responses."""

    def test_write_as_csv(self, make_message, transport):
        """Test the CSV response head and body."""
        message = writer.write_as_csv(make_message(), PEOPLE)

        assert transport.status == 200
        assert transport.header("Content-Type") == "text/csv"
        assert transport.header("Access-Control-Allow-Origin") == "*"
        assert transport.header("Content-Length") == str(len(transport.body))
        assert transport.body.decode() == writer.render_csv(PEOPLE)
        assert message.response.finished is True

    def test_write_as_json(self, make_message, transport):
        """Test the JSON response."""
        writer.write_as_json(make_message(), PEOPLE)

        assert transport.header("Content-Type") == "application/json"
        assert json.loads(transport.body) == PEOPLE

    def test_write_as_xml(self, make_message, transport):
        """Test the XML response with custom element names."""
        writer.write_as_xml(make_message(), [{"n": 3}], root="items", child="item")

        assert transport.header("Content-Type") == "application/xml"
        assert transport.body == b'<items>\n\t<item n="3"/>\n</items>\n'

    def test_write_as_html(self, make_message, transport):
        """Test the HTML response."""
        writer.write_as_html(make_message(), [{"n": 1}])

        assert transport.header("Content-Type") == "text/html"
        assert b'<li data-n="1">0</li>' in transport.body

    def test_empty_records(self, make_message, transport):
        """Test that None records render as an empty collection."""
        writer.write_as_csv(make_message())

        assert transport.body == b"\n"

    def test_write_as_file(self, make_message, transport):
        """Test raw file bytes with a type from the extension."""
        writer.write_as_file(make_message(), b"\x89PNG", "png")

        assert transport.header("Content-Type") == "image/png"
        assert transport.body == b"\x89PNG"

    def test_unknown_type_has_no_content_type(self, make_message, transport):
        """Test that an unknown type name omits Content-Type."""
        writer.write_as_file(make_message(), b"data", "xyz")

        assert transport.header("Content-Type") is None
        assert transport.header("Content-Length") == "4"

    def test_write_contents(self, make_message, transport):
        """Test verbatim contents default to text/plain."""
        writer.write_contents(make_message(), "plain text")

        assert transport.header("Content-Type") == "text/plain"
        assert transport.body == b"plain text"

    def test_write_empty_document(self, make_message, transport):
        """Test the empty 200 document."""
        message = writer.write_empty_document(make_message())

        assert transport.status == 200
        assert transport.header("Content-Length") == "0"
        assert transport.body == b""
        assert message.bytes_sent == 0

    def test_head_sends_no_body(self, make_message, transport):
        """Test that HEAD keeps the real Content-Length but sends no body."""
        message = writer.write_as_json(make_message(method="HEAD"), PEOPLE)

        assert transport.status == 200
        assert transport.header("Content-Length") == str(len(writer.render_json(PEOPLE).encode()))
        assert transport.body == b""
        assert message.bytes_sent == 0

    def test_write_not_authorized(self, make_message, transport):
        """Test the canned 403."""
        writer.write_not_authorized(make_message())

        assert transport.status == 403
        assert b"I am sorry" in transport.body

    def test_write_not_found(self, make_message, transport):
        """Test the canned 404."""
        writer.write_not_found(make_message())

        assert transport.status == 404
        assert transport.body == writer.NOT_FOUND_BODY.encode()

    def test_write_server_error_default(self, make_message, transport):
        """Test the generic 500 text."""
        writer.write_server_error(make_message())

        assert transport.status == 500
        assert transport.header("Content-Type") == "text/plain"
        assert transport.body == b"Ouch. A server error has occurred\n"

    def test_write_server_error_detail(self, make_message, transport):
        """Test the 500 text carries the error detail."""
        writer.write_server_error(make_message(), ValueError("disk on fire"))

        assert transport.body == b"disk on fire\n"

    def test_second_write_raises(self, make_message, transport):
        """Test that a finished response cannot be written again."""
        message = writer.write_not_found(make_message())
        sent = transport.data

        with pytest.raises(ResponseFinishedError):
            writer.write_not_found(message)
        with pytest.raises(ResponseFinishedError):
            writer.write_as_json(message, PEOPLE)

        assert transport.data == sent

    def test_write_after_head_raises(self, make_message):
        """Test that a writer refuses a response whose head already went out."""
        message = make_message()
        message.response.write_head(200)

        with pytest.raises(ResponseFinishedError):
            writer.write_contents(message, "late")


class TestSideFiles:
    """Tests for persisted copies of structured output."""

    def test_side_file_name(self):
        """Test extension substitution on the base name."""
        assert str(writer.side_file("data/out.json", "csv")).endswith("out.csv")
        assert str(writer.side_file("data/out", "xml")).endswith("out.xml")

    def test_structured_writers_persist(self, make_message, tmp_path):
        """Test that each structured writer saves its output."""
        base = str(tmp_path / "out")

        writer.write_as_csv(make_message(data_file=base), PEOPLE)
        writer.write_as_json(make_message(data_file=base), PEOPLE)
        writer.write_as_html(make_message(data_file=base), PEOPLE)

        assert (tmp_path / "out.csv").read_text() == writer.render_csv(PEOPLE)
        assert json.loads((tmp_path / "out.json").read_text()) == PEOPLE
        assert (tmp_path / "out.html").read_text() == writer.render_html(PEOPLE)

    def test_xml_persists_document_and_schema(self, make_message, tmp_path):
        """Test that XML output saves both the document and its schema."""
        base = str(tmp_path / "out")
        writer.write_as_xml(make_message(data_file=base), [{"n": 3}], "items", "item")

        document, schema = writer.render_xml([{"n": 3}], "items", "item")
        assert (tmp_path / "out.xml").read_text() == document
        assert (tmp_path / "out.xsd").read_text() == schema

    def test_no_data_file_no_side_files(self, make_message, tmp_path, monkeypatch):
        """Test that nothing is saved without a configured base name."""
        monkeypatch.chdir(tmp_path)
        writer.write_as_json(make_message(), PEOPLE)

        assert list(tmp_path.iterdir()) == []

    def test_save_failure_keeps_response(self, make_message, transport, tmp_path):
        """Test that a failed save is only a warning."""
        base = str(tmp_path / "missing-dir" / "out")
        message = writer.write_as_json(make_message(data_file=base), PEOPLE)

        assert message.response.finished is True
        assert json.loads(transport.body) == PEOPLE
        assert not (tmp_path / "missing-dir").exists()

    def test_write_to_file_system(self, tmp_path):
        """Test the return value of the save helper."""
        assert writer.write_to_file_system("x", tmp_path / "a.txt") is True
        assert writer.write_to_file_system("x", tmp_path / "no" / "a.txt") is False

    def test_concurrent_saves_do_not_interleave(self, tmp_path):
        """Test that simultaneous saves leave one complete payload."""
        target = tmp_path / "out.json"
        payloads = [str(i) * 200_000 for i in range(8)]
        start = threading.Barrier(len(payloads))

        def save(data):
            start.wait(5.0)
            writer.write_to_file_system(data, target)

        threads = [threading.Thread(target=save, args=(data,)) for data in payloads]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10.0)

        assert target.read_text() in payloads
