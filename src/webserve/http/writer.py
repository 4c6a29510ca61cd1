"""
=============================================================================
RESPONSE WRITERS
=============================================================================

Every function here takes a Message, writes exactly ONE complete response
(head + body, stream ended) and returns the same Message:

    return writer.write_as_json(message, records)

    ┌─────────────────────────────────────────────────────────────────────┐
    │  Writer                 Status  Content-Type         Side file       │
    ├─────────────────────────────────────────────────────────────────────┤
    │  write_as_csv           200     text/csv             <base>.csv      │
    │  write_as_json          200     application/json     <base>.json     │
    │  write_as_xml           200     application/xml      <base>.xml/.xsd │
    │  write_as_html          200     text/html            <base>.html     │
    │  write_as_file          200     from type name       -               │
    │  write_contents         200     from type name       -               │
    │  write_empty_document   200     text/html (empty)    -               │
    │  write_not_authorized   403     text/html            -               │
    │  write_not_found        404     text/html            -               │
    │  write_server_error     500     text/plain           -               │
    └─────────────────────────────────────────────────────────────────────┘

Calling any writer on a Message whose response already ended raises
ResponseFinishedError. Nothing is ever written twice.

=============================================================================
RECORDS
=============================================================================

Structured writers take a sequence of records: mappings from field name
to a primitive value (bool, int, float, Decimal, str, datetime).

For XML the schema type of each field comes from its first value. A value
can be tagged explicitly with TypedValue when the natural type is wrong:

    {"zip": TypedValue("02134", XsdType.STRING),
     "price": TypedValue(3, XsdType.DECIMAL)}

=============================================================================
"""

import csv
import html
import io
import json
import logging
import re
import threading
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from xml.sax.saxutils import escape

from .message import Message
from .mime_types import get_mime_type
from .response import ResponseFinishedError


logger = logging.getLogger(__name__)

Record = Mapping[str, Any]

_XML_NAME = re.compile(r"[^\W\d][\w.\-]*")
_save_lock = threading.Lock()

NOT_FOUND_BODY = (
    "<!DOCTYPE html>\n"
    "<html>\n"
    "<head><title>404 Not Found</title></head>\n"
    "<body>\n"
    "<h1>Not Found</h1>\n"
    "<p>I am sorry, the resource you requested does not exist.</p>\n"
    "</body>\n"
    "</html>\n"
)

NOT_AUTHORIZED_BODY = (
    "<!DOCTYPE html>\n"
    "<html>\n"
    "<head><title>403 Forbidden</title></head>\n"
    "<body>\n"
    "<h1>Forbidden</h1>\n"
    "<p>I am sorry, but the resource you requested is restricted to "
    "authorized requests only.</p>\n"
    "</body>\n"
    "</html>\n"
)

SERVER_ERROR_TEXT = "Ouch. A server error has occurred"


# =============================================================================
# TAGGED VALUES
# =============================================================================

class XsdType(str, Enum):
    """XML Schema types a field can be declared as."""

    BOOLEAN = "xs:boolean"
    INTEGER = "xs:integer"
    DECIMAL = "xs:decimal"
    DATETIME = "xs:dateTime"
    STRING = "xs:string"


@dataclass(frozen=True)
class TypedValue:
    """A field value with its schema type attached."""

    value: Any
    type: XsdType


def typed(value: Any) -> TypedValue:
    """
    Tag a plain value with its schema type.

    Integral floats count as integers (3.0 → xs:integer), the same rule
    JSON producers follow.
    """
    if isinstance(value, TypedValue):
        return value
    if isinstance(value, bool):
        return TypedValue(value, XsdType.BOOLEAN)
    if isinstance(value, int):
        return TypedValue(value, XsdType.INTEGER)
    if isinstance(value, float):
        kind = XsdType.INTEGER if value.is_integer() else XsdType.DECIMAL
        return TypedValue(value, kind)
    if isinstance(value, Decimal):
        integral = value.is_finite() and value == value.to_integral_value()
        return TypedValue(value, XsdType.INTEGER if integral else XsdType.DECIMAL)
    if isinstance(value, (datetime, date)):
        return TypedValue(value, XsdType.DATETIME)
    return TypedValue(value, XsdType.STRING)


def _is_primitive(value: Any) -> bool:
    if isinstance(value, TypedValue):
        value = value.value
    return isinstance(value, (str, int, float, Decimal, datetime, date))


def _text(value: Any) -> str:
    """Render a primitive the way JSON would print it."""
    if isinstance(value, TypedValue):
        value = value.value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _json_default(value: Any) -> Any:
    if isinstance(value, TypedValue):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def xml_name(name: Any) -> str:
    """
    Return name if it can be used as an XML element or attribute name.

    Raises:
        ValueError: for names with spaces, markup characters, colons or a
                    leading digit ("a b", "x>", "1st").
    """
    text = str(name)
    if not _XML_NAME.fullmatch(text):
        raise ValueError(f"Not a valid XML name: {text!r}")
    return text


# =============================================================================
# RENDERERS (pure functions, no I/O)
# =============================================================================

def csv_fields(records: Iterable[Record]) -> List[str]:
    """
    Union of field names across records, in first-seen order.

    A field is dropped if any record holds a non-primitive (dict, list,
    object) in it. Missing or None values do not drop a field.
    """
    order: List[str] = []
    dropped = set()
    for record in records:
        for name, value in record.items():
            if name not in order:
                order.append(name)
            if value is not None and not _is_primitive(value):
                dropped.add(name)
    return [name for name in order if name not in dropped]


def render_csv(records: Sequence[Record]) -> str:
    """
    Render records as CSV with a header line.

    Example:
        render_csv([{"a": 1, "b": "x"}, {"a": 2, "b": "y"}])
        # 'a,b\\n1,x\\n2,y\\n'
    """
    fields = csv_fields(records)
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(fields)
    for record in records:
        writer.writerow([_text(record.get(name)) for name in fields])
    return out.getvalue()


def render_json(records: Sequence[Record]) -> str:
    """Render records as a JSON array, each element tab-indented."""
    items = [json.dumps(r, indent="\t", default=_json_default) for r in records]
    return "[\n" + ",\n".join(items) + "\n]\n"


def render_html(records: Sequence[Record]) -> str:
    """
    Render records as an unordered list.

    Each field becomes a data-* attribute; the visible text is the
    record's position in the sequence.

    Raises:
        ValueError: if a field name is not a valid XML name.
    """
    lines = ["<!DOCTYPE html>", "<html>", "<body>", "<ul>"]
    for index, record in enumerate(records):
        attrs = "".join(
            f' data-{xml_name(name)}="{html.escape(_text(value))}"'
            for name, value in record.items()
            if value is None or _is_primitive(value)
        )
        lines.append(f"\t<li{attrs}>{index}</li>")
    lines.extend(["</ul>", "</body>", "</html>"])
    return "\n".join(lines) + "\n"


def schema_types(records: Iterable[Record]) -> Dict[str, XsdType]:
    """Schema type of each field, taken from its first non-None value."""
    types: Dict[str, XsdType] = {}
    for record in records:
        for name, value in record.items():
            if name in types or value is None or not _is_primitive(value):
                continue
            types[name] = typed(value).type
    return types


def render_xml(
    records: Sequence[Record],
    root: str = "root",
    child: str = "child",
) -> Tuple[str, str]:
    """
    Render records as an XML document and a matching XML Schema.

    Returns:
        (document, schema)

    Example:
        document, schema = render_xml([{"n": 3}], "items", "item")
        # document == '<items>\\n\\t<item n="3"/>\\n</items>\\n'

    Raises:
        ValueError: if root, child or a field name is not a valid XML name.
    """
    root, child = xml_name(root), xml_name(child)
    lines = [f"<{root}>"]
    for record in records:
        attrs = "".join(
            f' {xml_name(name)}="{escape(_text(value), {chr(34): "&quot;"})}"'
            for name, value in record.items()
            if value is not None and _is_primitive(value)
        )
        lines.append(f"\t<{child}{attrs}/>")
    lines.append(f"</{root}>")
    document = "\n".join(lines) + "\n"

    attributes = "".join(
        f'\t\t\t\t\t<xs:attribute name="{name}" type="{kind.value}"/>\n'
        for name, kind in schema_types(records).items()
    )
    schema = (
        '<?xml version="1.0"?>\n'
        '<xs:schema xmlns:xs="http://www.w3.org/2001/XMLSchema">\n'
        f'<xs:element name="{root}">\n'
        "\t<xs:complexType>\n"
        "\t\t<xs:sequence>\n"
        f'\t\t\t<xs:element name="{child}" minOccurs="0" maxOccurs="unbounded">\n'
        "\t\t\t\t<xs:complexType>\n"
        f"{attributes}"
        "\t\t\t\t</xs:complexType>\n"
        "\t\t\t</xs:element>\n"
        "\t\t</xs:sequence>\n"
        "\t</xs:complexType>\n"
        "</xs:element>\n"
        "</xs:schema>\n"
    )
    return document, schema


# =============================================================================
# SIDE FILES
# =============================================================================

def side_file(base: Union[str, Path], extension: str) -> Path:
    """Swap the extension of the configured base filename."""
    return Path(base).with_suffix(f".{extension}")


def write_to_file_system(contents: Union[str, bytes], filename: Union[str, Path]) -> bool:
    """
    Persist a copy of rendered output.

    Writes are serialized across worker threads.

    Failures are logged as warnings and never raised: the HTTP response
    has already been sent by the time this runs.

    Returns:
        True if the file was written.
    """
    data = contents.encode("utf-8") if isinstance(contents, str) else contents
    try:
        with _save_lock:
            Path(filename).write_bytes(data)
        return True
    except OSError as e:
        logger.warning(f"Could not save {filename}: {e}")
        return False


def _persist(message: Message, extension: str, contents: str) -> None:
    if message.data_file:
        write_to_file_system(contents, side_file(message.data_file, extension))


# =============================================================================
# CORE WRITE
# =============================================================================

def write_head(
    message: Message,
    status: int = 200,
    type_name: Optional[str] = None,
    length: int = 0,
) -> None:
    """
    Send the response head.

    Always sets Access-Control-Allow-Origin and Content-Length. The
    Content-Type header is only sent for known type names.
    """
    headers = {
        "Access-Control-Allow-Origin": "*",
        "Content-Length": str(length),
    }
    mime = get_mime_type(type_name)
    if mime:
        headers["Content-Type"] = mime
    message.response.write_head(status, headers)


def _finish(
    message: Message,
    status: int,
    type_name: Optional[str],
    body: Union[str, bytes],
) -> Message:
    response = message.response
    if response.finished or response.headers_sent:
        raise ResponseFinishedError(f"[{message.id}] Response already written")

    data = body.encode("utf-8") if isinstance(body, str) else bytes(body)
    write_head(message, status, type_name, len(data))
    if message.request.method == "HEAD":
        # Content-Length describes the body a GET would have received
        response.end()
    else:
        response.end(data)
    return message


# =============================================================================
# STRUCTURED WRITERS
# =============================================================================

def write_as_csv(message: Message, records: Optional[Sequence[Record]] = None) -> Message:
    contents = render_csv(list(records or []))
    _finish(message, 200, "csv", contents)
    _persist(message, "csv", contents)
    return message


def write_as_json(message: Message, records: Optional[Sequence[Record]] = None) -> Message:
    contents = render_json(list(records or []))
    _finish(message, 200, "json", contents)
    _persist(message, "json", contents)
    return message


def write_as_xml(
    message: Message,
    records: Optional[Sequence[Record]] = None,
    root: str = "root",
    child: str = "child",
) -> Message:
    """Write the XML document; the schema goes to the .xsd side file."""
    document, schema = render_xml(list(records or []), root, child)
    _finish(message, 200, "xml", document)
    _persist(message, "xml", document)
    _persist(message, "xsd", schema)
    return message


def write_as_html(message: Message, records: Optional[Sequence[Record]] = None) -> Message:
    contents = render_html(list(records or []))
    _finish(message, 200, "html", contents)
    _persist(message, "html", contents)
    return message


# =============================================================================
# PASSTHROUGH WRITERS
# =============================================================================

def write_as_file(message: Message, data: bytes, type_name: Optional[str] = None) -> Message:
    """Write file bytes with a content type taken from the type name."""
    return _finish(message, 200, type_name, data)


def write_contents(
    message: Message,
    content: Union[str, bytes],
    type_name: Optional[str] = "txt",
) -> Message:
    """Write text or bytes verbatim."""
    return _finish(message, 200, type_name, content)


# =============================================================================
# CANNED RESPONSES
# =============================================================================

def write_empty_document(message: Message) -> Message:
    return _finish(message, 200, "html", b"")


def write_not_authorized(message: Message) -> Message:
    return _finish(message, 403, "html", NOT_AUTHORIZED_BODY)


def write_not_found(message: Message) -> Message:
    return _finish(message, 404, "html", NOT_FOUND_BODY)


def write_server_error(message: Message, error: Any = None) -> Message:
    """500 with the error detail, or a generic line when there is none."""
    detail = str(error) if error else SERVER_ERROR_TEXT
    return _finish(message, 500, "txt", f"{detail}\n")
