from __future__ import annotations

import io
import json

from PIL import Image

from autotransocr.pipeline.ocr_worker import OcrWorker
from autotransocr.pipeline.preprocess import PreprocessParams, encode_png
from autotransocr.pipeline.recognize import RecognitionResult, result_from_data
from autotransocr.pipeline.worker_protocol import (
    OcrRequest,
    OcrSuccess,
    decode_response,
    encode_request,
)
from autotransocr.util.geometry import Region


class _StubRecognizer:
    def __init__(self, text="  Hello World \n", confidence=91.0, error=None):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.sizes = []

    def recognize(self, image):
        self.sizes.append(image.size)
        if self.error is not None:
            raise self.error
        return RecognitionResult(text=self.text, confidence=self.confidence)


def _screen() -> bytes:
    return encode_png(Image.new("RGB", (100, 50), (250, 250, 250)))


def _request(region: Region, req_id: int = 5) -> bytes:
    return encode_request(OcrRequest(id=req_id, image=_screen(), region=region))


def test_worker_returns_trimmed_text_with_id():
    rec = _StubRecognizer()
    worker = OcrWorker(rec, PreprocessParams(upscale=4))

    line = worker.handle_line(_request(Region(1, 10, 10, 20, 10)))

    assert decode_response(line) == (5, OcrSuccess("Hello World", 91.0))
    assert rec.sizes == [(80, 40)]


def test_worker_reclamps_out_of_bounds_region():
    rec = _StubRecognizer()
    worker = OcrWorker(rec, PreprocessParams(upscale=2))

    worker.handle_line(_request(Region(1, 95, 40, 500, 500)))

    assert rec.sizes == [(10, 20)]


def test_recognition_exception_becomes_error_response():
    worker = OcrWorker(_StubRecognizer(error=RuntimeError("tess crashed")),
                       PreprocessParams())

    obj = json.loads(worker.handle_line(_request(Region(1, 0, 0, 5, 5))))

    assert obj["id"] == 5
    assert obj["type"] == "error"
    assert "tess crashed" in obj["error"]


def test_malformed_request_becomes_error_response():
    worker = OcrWorker(_StubRecognizer(), PreprocessParams())

    obj = json.loads(worker.handle_line(b"not json\n"))

    assert obj["type"] == "error"
    assert obj["id"] is None


def test_undecodable_image_becomes_error_response():
    worker = OcrWorker(_StubRecognizer(), PreprocessParams())
    line = encode_request(
        OcrRequest(id=9, image=b"garbage", region=Region(1, 0, 0, 5, 5)))

    obj = json.loads(worker.handle_line(line))

    assert obj == {"id": 9, "type": "error", "error": obj["error"]}


def test_serve_announces_ready_and_answers_each_line():
    worker = OcrWorker(_StubRecognizer(), PreprocessParams())
    stdin = io.BytesIO(_request(Region(1, 0, 0, 5, 5), 1) + b"\n"
                       + _request(Region(1, 0, 0, 5, 5), 2))
    stdout = io.BytesIO()

    worker.serve(stdin, stdout)

    lines = stdout.getvalue().splitlines()
    assert decode_response(lines[0]) == (None, None)
    assert [decode_response(ln)[0] for ln in lines[1:]] == [1, 2]


def test_result_from_data_groups_words_into_lines():
    data = {
        "text": ["", "Hello", "World", "", "Again"],
        "conf": ["-1", "90", "80", "-1", "70"],
        "block_num": [1, 1, 1, 1, 1],
        "par_num": [1, 1, 1, 1, 1],
        "line_num": [0, 1, 1, 2, 2],
    }

    result = result_from_data(data)

    assert result.text == "Hello World\nAgain"
    assert result.confidence == 80.0


def test_result_from_data_handles_nothing_recognized():
    result = result_from_data({"text": [""], "conf": [-1]})

    assert result == RecognitionResult(text="", confidence=0.0)
