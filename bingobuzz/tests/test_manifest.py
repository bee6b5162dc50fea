"""Tests for manifest normalization and loading."""

import json

import httpx
import pytest

from ..manifest import Clip, ManifestError, load_manifest, normalize_manifest

RAW = {
    "version": 2,
    "ttlHours": 1.5,
    "formats": ["mp3", " ", "webm"],
    "basePath": "https://cdn.test/sounds",
    "manifestEtag": "abc123",
    "files": [
        {"id": "gong", "src": "gong_01", "display": "Gong", "gain": -3, "durationHintMs": 1800},
        {"id": "pling", "src": "pling", "category": "bells"},
        {"id": "gong", "src": "gong_dup"},
        {"id": "", "src": "nothing"},
        {"src": "no-id"},
        "junk",
    ],
}


def test_normalize_manifest_fields():
    manifest = normalize_manifest(RAW)
    assert manifest.version == 2
    assert manifest.formats == ("mp3", "webm")
    assert manifest.base_path == "https://cdn.test/sounds"
    assert manifest.fingerprint == "abc123"
    assert manifest.ttl_ms == 90 * 60 * 1000
    assert manifest.ids == ["gong", "pling"]


def test_normalize_clip_fields():
    gong = normalize_manifest(RAW).clips[0]
    assert gong == Clip(
        id="gong",
        source_name="gong_01",
        category="misc",
        gain=-3.0,
        display="Gong",
        duration_hint_ms=1800,
    )
    assert gong.label == "Gong"


def test_normalize_defaults():
    manifest = normalize_manifest({"files": [{"id": "a", "src": "a"}]}, default_base_path="/srv/clips")
    assert manifest.version == 1
    assert manifest.formats == ("webm", "mp3")
    assert manifest.base_path == "/srv/clips"
    assert manifest.fingerprint is None
    assert manifest.ttl_ms == 3 * 60 * 60 * 1000


@pytest.mark.parametrize("raw", [None, [], {"files": []}, {"files": [{"id": "x"}]}])
def test_normalize_rejects_unplayable(raw):
    with pytest.raises(ManifestError):
        normalize_manifest(raw)


async def test_load_manifest_from_file(tmp_path):
    path = tmp_path / "manifest.json"
    path.write_text(json.dumps({"files": [{"id": "a", "src": "a"}]}), encoding="utf-8")
    manifest = await load_manifest(path)
    assert manifest.base_path == str(tmp_path.resolve())


async def test_load_manifest_missing_file(tmp_path):
    with pytest.raises(ManifestError):
        await load_manifest(tmp_path / "nope.json")


async def test_load_manifest_over_http():
    seen = []

    def handler(request):
        seen.append(request.headers.get("cache-control"))
        return httpx.Response(200, json=RAW)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        manifest = await load_manifest("https://cdn.test/sounds/manifest.json", client=client)
    assert manifest.ids == ["gong", "pling"]
    assert seen == ["no-cache"]


async def test_load_manifest_http_error_and_default_base():
    def handler(request):
        if request.url.path.endswith("broken.json"):
            return httpx.Response(500)
        return httpx.Response(200, json={"files": [{"id": "a", "src": "a"}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ManifestError):
            await load_manifest("https://cdn.test/broken.json", client=client)
        manifest = await load_manifest("https://cdn.test/board/manifest.json", client=client)
    assert manifest.base_path == "https://cdn.test/board"
