# tests/test_output_normalizer.py
from __future__ import annotations

import base64

import pytest

from services.output_normalizer import (
    NormalizedItem,
    OutputKind,
    decode_inline,
    normalize_output,
)


class FileOutput:
    """Mimics replicate's FileOutput: url is a method, and it is iterable."""

    def __init__(self, url: str):
        self._url = url

    def url(self) -> str:
        return self._url

    def __iter__(self):
        yield b"chunk"


class UrlHolder:
    def __init__(self, url):
        self.url = url


class Prediction:
    """Replicate prediction object: the images sit under `output`."""

    def __init__(self, output, status="succeeded"):
        self.output = output
        self.status = status

    def reload(self):
        raise AssertionError("methods other than url must not be called")


class InlineImage:
    def __init__(self, b64_json):
        self.b64_json = b64_json
        self.revised_prompt = "a portrait"


def _values(items):
    return [(item.kind, item.value) for item in items]


def test_plain_url_string():
    assert _values(normalize_output("https://cdn.test/a.png")) == [
        (OutputKind.URL, "https://cdn.test/a.png")
    ]


def test_data_uri_string():
    uri = "data:image/png;base64,aGVsbG8="
    assert _values(normalize_output(uri)) == [(OutputKind.DATA_URI, uri)]


def test_list_of_urls_keeps_order():
    raw = ["https://cdn.test/1.png", "https://cdn.test/2.png"]
    assert [item.value for item in normalize_output(raw)] == raw


def test_mapping_fields_and_nested_lists():
    raw = {"output": ["https://cdn.test/1.png", {"url": "https://cdn.test/2.png"}]}
    assert [item.value for item in normalize_output(raw)] == [
        "https://cdn.test/1.png",
        "https://cdn.test/2.png",
    ]


def test_mapping_base64_fields():
    items = normalize_output({"b64_json": "aGVsbG8="})
    assert _values(items) == [(OutputKind.BASE64, "aGVsbG8=")]


def test_object_with_url_accessor_is_called_once_not_iterated():
    items = normalize_output(FileOutput("https://replicate.delivery/x.png"))
    assert _values(items) == [(OutputKind.URL, "https://replicate.delivery/x.png")]


def test_list_of_file_outputs():
    items = normalize_output([FileOutput("https://r.test/1.webp"), FileOutput("https://r.test/2.webp")])
    assert [item.value for item in items] == ["https://r.test/1.webp", "https://r.test/2.webp"]


def test_object_with_url_attribute():
    assert [i.value for i in normalize_output(UrlHolder("https://cdn.test/a.png"))] == ["https://cdn.test/a.png"]


def test_object_with_output_attribute():
    items = normalize_output(Prediction(output=["https://cdn.test/a.png", FileOutput("https://cdn.test/b.png")]))
    assert [i.value for i in items] == ["https://cdn.test/a.png", "https://cdn.test/b.png"]


def test_object_with_base64_attribute():
    assert _values(normalize_output(InlineImage("iVBORw0KGgo="))) == [(OutputKind.BASE64, "iVBORw0KGgo=")]


def test_object_without_output_yet_yields_nothing():
    assert normalize_output(Prediction(output=None, status="processing")) == []


def test_generator_output():
    def stream():
        yield "https://cdn.test/1.png"
        yield "https://cdn.test/2.png"

    assert len(normalize_output(stream())) == 2


@pytest.mark.parametrize("raw", [None, "", "not a url", 42, 3.5, True, b"bytes", [], {}])
def test_unusable_outputs_yield_nothing(raw):
    assert normalize_output(raw) == []


def test_unknown_mapping_falls_back_to_url_scan(caplog):
    raw = {"meta": {"files": "see https://cdn.test/hidden.png for output"}}
    items = normalize_output(raw)
    assert _values(items) == [(OutputKind.URL, "https://cdn.test/hidden.png")]
    assert "scanning" in caplog.text


def test_scan_deduplicates_urls():
    raw = {"a": "https://cdn.test/x.png", "b": ["https://cdn.test/x.png"]}
    assert len(normalize_output(raw)) == 1


def test_failing_accessor_does_not_raise():
    class Broken:
        def url(self):
            raise RuntimeError("boom")

    assert normalize_output(Broken()) == []


def test_deeply_nested_output_is_bounded():
    raw = "https://cdn.test/deep.png"
    for _ in range(20):
        raw = [raw]
    # too deep to walk; recovered by the serialized scan instead
    assert [i.value for i in normalize_output(raw)] == ["https://cdn.test/deep.png"]


def test_decode_raw_base64():
    payload = base64.b64encode(b"\x89PNG data").decode()
    data, content_type = decode_inline(NormalizedItem(OutputKind.BASE64, payload))
    assert data == b"\x89PNG data"
    assert content_type is None


def test_decode_data_uri_reports_content_type():
    uri = "data:image/jpeg;base64," + base64.b64encode(b"jpegbytes").decode()
    data, content_type = decode_inline(NormalizedItem(OutputKind.DATA_URI, uri))
    assert data == b"jpegbytes"
    assert content_type == "image/jpeg"


def test_decode_base64_that_is_really_a_data_uri():
    uri = "data:image/webp;base64," + base64.b64encode(b"webp").decode()
    assert decode_inline(NormalizedItem(OutputKind.BASE64, uri)) == (b"webp", "image/webp")


def test_decode_rejects_url_items():
    with pytest.raises(ValueError):
        decode_inline(NormalizedItem(OutputKind.URL, "https://cdn.test/a.png"))


def test_decode_rejects_malformed_data_uri():
    with pytest.raises(ValueError):
        decode_inline(NormalizedItem(OutputKind.DATA_URI, "data:image/png;base64"))
