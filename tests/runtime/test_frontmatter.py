from learnloop.runtime.memory.frontmatter import parse, render_document, serialize
from learnloop.runtime.memory.models import RecordMetadata


def test_serialize_formats_scalars_lists_and_skips_none():
    text = serialize(
        {
            "id": "mem_1",
            "confidence": 0.9,
            "tags": ["a", "b"],
            "connections": [],
            "source": None,
        }
    )
    assert text.split("\n") == [
        'id: "mem_1"',
        "confidence: 0.9",
        "tags:",
        '  - "a"',
        '  - "b"',
        "connections: []",
    ]


def test_parse_round_trips_header_and_trims_body():
    metadata = {"id": "mem_1", "confidence": 0.5, "accessCount": 3, "tags": ["x", "y"], "connections": []}
    doc = render_document(metadata, "Body text\n\n")

    parsed, body = parse(doc)

    assert parsed == metadata
    assert body == "Body text"


def test_parse_without_header_returns_whole_text():
    parsed, body = parse("just text\nno header")
    assert parsed == {}
    assert body == "just text\nno header"


def test_parse_falls_back_to_raw_strings_and_normalizes_crlf():
    text = "---\r\nid: mem_raw\r\ntitle: 'quoted'\r\nempty:\r\n---\r\n\r\nbody\r\n"
    parsed, body = parse(text)

    assert parsed["id"] == "mem_raw"
    assert parsed["title"] == "quoted"
    assert parsed["empty"] == []
    assert body == "body"


def test_record_metadata_header_round_trip():
    metadata = RecordMetadata(id="mem_1", type="concept", confidence=0.7, tags=["t"], embedding=[0.25, 0.5])
    parsed, _ = parse(render_document(metadata.to_header(), "content"))

    restored = RecordMetadata.from_header(parsed)

    assert restored == metadata
    assert "createdAt" in parsed and "validationStatus" in parsed
    assert "supersededBy" not in parsed
