import json

import pytest
from PIL import Image

from peanuts import cli, schemas
from peanuts.db import SessionLocal
from peanuts.services import photos as photo_service
from peanuts.services import imaging, secret_keys, storage
from peanuts.services.photos import Published


def _run(capsys, *argv):
    code = cli.main(list(argv))
    return code, capsys.readouterr().out


def _get(photo_id):
    with SessionLocal() as db:
        return photo_service.get_photo_by_id(db, photo_id, Published.ALL)


def test_parse_source():
    source = cli.parse_source("800x600=/img/a.jpg")
    assert (source.width, source.height, source.url) == (800, 600, "/img/a.jpg")


@pytest.mark.parametrize(
    "value", ["800x600", "800=/img/a.jpg", "axb=/img/a.jpg", "10000x10=/a.jpg", "8x6="]
)
def test_parse_source_rejects(value):
    with pytest.raises(Exception):
        cli.parse_source(value)


def test_add_and_show(capsys):
    code, out = _run(
        capsys,
        "add",
        "sunset",
        "--title",
        "Sunset",
        "--tag",
        "nature",
        "--tag",
        "orange",
        "--source",
        "800x600=/img/sunset-800.jpg",
        "--source",
        "1800x1350=/img/sunset-1800.jpg",
        "--height-offset",
        "40",
    )
    assert code == 0
    photo_id = int(out.strip())

    photo = _get(photo_id)
    assert photo.title == "Sunset"
    assert photo.tags == ["nature", "orange"]
    assert photo.published is False
    assert photo.height_offset == 40
    assert [s.width for s in photo.sources] == [1800, 800]

    code, out = _run(capsys, "show", str(photo_id))
    assert code == 0
    assert json.loads(out)["file_stem"] == "sunset"


def test_add_duplicate_file_stem_fails(capsys, make_photo):
    make_photo("sunset")
    code, out = _run(capsys, "add", "sunset")
    assert code == 1
    assert out == ""


def test_add_duplicate_source_url_fails(capsys, make_photo):
    make_photo("other", sizes=[(800, 600)])
    code, _ = _run(capsys, "add", "sunset", "--source", "400x300=/img/other-800x600.jpg")
    assert code == 1
    with SessionLocal() as db:
        assert photo_service.get_photo_by_file_stem(db, "sunset", Published.ALL) is None


def test_update(capsys, make_photo):
    photo_id = make_photo("sunset", ["nature"], title="Old")

    code, out = _run(capsys, "update", "sunset", "--title", "New", "--tag", "nature")
    assert code == 0
    assert out.strip() == "changed"
    photo = _get(photo_id)
    assert photo.title == "New"
    assert [s.url for s in photo.sources] == ["/img/sunset-800x600.jpg"]

    code, out = _run(capsys, "update", "sunset", "--title", "New", "--tag", "nature")
    assert out.strip() == "unchanged"

    code, _ = _run(capsys, "update", "missing")
    assert code == 1


def test_set_published(capsys, make_photo):
    photo_id = make_photo("draft", published=False)
    code, out = _run(capsys, "set-published", str(photo_id), "yes")
    assert code == 0
    assert json.loads(out) == {"published": True}
    assert _get(photo_id).published is True

    code, _ = _run(capsys, "set-published", "999999", "true")
    assert code == 1


def test_set_published_rejects_garbage(capsys):
    with pytest.raises(SystemExit) as exc:
        cli.main(["set-published", "1", "maybe"])
    assert exc.value.code == 2


def test_set_height_offset(capsys, make_photo):
    photo_id = make_photo("crop")
    code, _ = _run(capsys, "set-height-offset", str(photo_id), "0")
    assert code == 0
    assert _get(photo_id).height_offset == 0


@pytest.mark.parametrize("value", ["-1", "101", "high"])
def test_set_height_offset_out_of_range(capsys, make_photo, value):
    photo_id = make_photo("crop")
    with pytest.raises(SystemExit) as exc:
        cli.main(["set-height-offset", str(photo_id), value])
    assert exc.value.code == 2
    assert _get(photo_id).height_offset == 50


def test_delete(capsys, make_photo):
    photo_id = make_photo("gone", sizes=[(800, 600), (400, 300)])
    code, out = _run(capsys, "delete", str(photo_id))
    assert code == 0
    assert out.strip() == "deleted"
    assert _get(photo_id) is None

    code, _ = _run(capsys, "delete", str(photo_id))
    assert code == 1


def test_list(capsys, make_photo):
    a = make_photo("a", ["nature"])
    make_photo("b", ["city"])
    c = make_photo("c", ["nature"], published=False)

    code, out = _run(capsys, "list", "--tag", "nature")
    assert code == 0
    assert [p["id"] for p in json.loads(out)] == [c, a]

    code, out = _run(capsys, "list", "--limit", "1")
    assert len(json.loads(out)) == 1


def test_secret_key_commands(capsys):
    code, out = _run(capsys, "secret-key", "generate")
    assert code == 0
    generated = out.strip()
    assert len(generated) >= 64

    code, _ = _run(capsys, "secret-key", "add", "my-own-key")
    assert code == 0

    code, out = _run(capsys, "secret-key", "list")
    assert sorted(out.split()) == sorted([generated, "my-own-key"])

    code, out = _run(capsys, "secret-key", "revoke", "my-own-key")
    assert out.strip() == "revoked"
    with SessionLocal() as db:
        assert not secret_keys.valid_secret_key(db, "my-own-key")
        assert secret_keys.valid_secret_key(db, generated)

    code, _ = _run(capsys, "secret-key", "revoke", "my-own-key")
    assert code == 1

    code, _ = _run(capsys, "secret-key", "add", "my-own-key")
    code, _ = _run(capsys, "secret-key", "add", "my-own-key")
    assert code == 1


def test_upload_existing_without_update_fails(capsys, make_photo, tmp_path):
    make_photo("sunset")
    code, _ = _run(capsys, "upload", str(tmp_path / "sunset.tif"))
    assert code == 1


def test_upload_unreadable_file_fails(capsys, tmp_path):
    path = tmp_path / "broken.tif"
    path.write_bytes(b"not a tiff")
    code, _ = _run(capsys, "upload", str(path), "--only-update-metadata")
    assert code == 1


def test_update_keeps_omitted_fields(capsys, db, make_photo):
    photo_id = make_photo("sunset", ["nature", "orange"], title="Old")
    photo_service.update_photo(
        db,
        _get(photo_id),
        schemas.PhotoPayload(
            file_stem="sunset",
            title="Old",
            taken_timestamp="2020-01-01T10:00:00",
            tags=["nature", "orange"],
        ),
    )

    code, out = _run(capsys, "update", "sunset", "--title", "New")
    assert code == 0
    assert out.strip() == "changed"
    photo = _get(photo_id)
    assert photo.title == "New"
    assert photo.tags == ["nature", "orange"]
    assert photo.taken_timestamp == "2020-01-01T10:00:00"
    assert [s.url for s in photo.sources] == ["/img/sunset-800x600.jpg"]


XMP = """<x:xmpmeta xmlns:x="adobe:ns:meta/">
 <rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#">
  <rdf:Description rdf:about=""
    xmlns:xmp="http://ns.adobe.com/xap/1.0/"
    xmlns:dc="http://purl.org/dc/elements/1.1/"
    xmp:CreateDate="2020-01-01T10:00:00">
   <dc:title><rdf:Alt><rdf:li xml:lang="x-default">Sunset</rdf:li></rdf:Alt></dc:title>
   <dc:subject><rdf:Bag><rdf:li>nature</rdf:li></rdf:Bag></dc:subject>
  </rdf:Description>
 </rdf:RDF>
</x:xmpmeta>"""


def _write_tiff(path, size=(650, 400)):
    Image.new("RGB", size, "orange").save(
        path, "TIFF", tiffinfo={imaging.XMP_TAG: XMP.encode("utf-8")}
    )
    return path


@pytest.fixture
def uploads(monkeypatch):
    """Record rendition uploads instead of talking to S3."""
    uploaded = []

    async def _upload(file_stem, width, height, data):
        uploaded.append((width, height, data[:2]))
        return f"https://static.example.com/{storage.rendition_key(file_stem, width, height)}"

    monkeypatch.setattr(storage, "upload_rendition", _upload)
    return uploaded


def test_upload_registers_photo(capsys, tmp_path, uploads):
    path = _write_tiff(tmp_path / "sunset.tif")

    code, out = _run(capsys, "upload", str(path))
    assert code == 0
    photo = _get(int(out.strip()))
    assert photo.file_stem == "sunset"
    assert photo.title == "Sunset"
    assert photo.tags == ["nature"]
    assert photo.taken_timestamp == "2020-01-01T10:00:00"
    assert photo.published is False
    assert [s.width for s in photo.sources] == [600, 500, 400, 300]
    assert photo.sources[0].url == (
        "https://static.example.com/sunset/sunset.600x369.jpeg"
    )
    assert sorted(w for w, _h, _d in uploads) == [300, 400, 500, 600]
    assert all(d == b"\xff\xd8" for _w, _h, d in uploads)


def test_upload_only_metadata_update(capsys, tmp_path, make_photo, uploads):
    photo_id = make_photo("sunset", ["old"], title="Old", sizes=[(800, 600)])
    path = _write_tiff(tmp_path / "sunset.tif")

    code, out = _run(capsys, "upload", str(path), "--update", "--only-update-metadata")
    assert code == 0
    assert out.strip() == "changed"
    assert uploads == []
    photo = _get(photo_id)
    assert photo.title == "Sunset"
    assert photo.tags == ["nature"]
    assert [s.url for s in photo.sources] == ["/img/sunset-800x600.jpg"]


def test_upload_update_replaces_sources(capsys, tmp_path, make_photo, uploads):
    photo_id = make_photo("sunset", ["old"], sizes=[(800, 600)])
    path = _write_tiff(tmp_path / "sunset.tif", size=(400, 300))

    code, out = _run(capsys, "upload", str(path), "--update")
    assert code == 0
    photo = _get(photo_id)
    assert [(s.width, s.height) for s in photo.sources] == [(400, 300), (300, 225)]


def test_upload_update_missing_photo_fails(capsys, tmp_path, uploads):
    path = _write_tiff(tmp_path / "sunset.tif")
    code, _ = _run(capsys, "upload", str(path), "--update")
    assert code == 1
    assert uploads == []


def test_dump_xmp(capsys, tmp_path):
    path = _write_tiff(tmp_path / "sunset.tif")
    out_dir = tmp_path / "out"
    out_dir.mkdir()

    code, out = _run(capsys, "dump-xmp", str(path), "--output-dir", str(out_dir))
    assert code == 0
    data = json.loads(out)
    assert data["create_date"] == "2020-01-01T10:00:00"
    assert data["title"] == "Sunset"
    assert data["tags"] == ["nature"]
    xmp_file = out_dir / "xmp.sunset.tif.xml"
    assert data["xmp_file"] == str(xmp_file)
    assert xmp_file.read_text(encoding="utf-8") == XMP


@pytest.mark.parametrize("extra", [[], ["--only-update-metadata"]])
def test_upload_releases_image(capsys, tmp_path, monkeypatch, uploads, extra):
    path = _write_tiff(tmp_path / "sunset.tif")
    opened = []
    real_open = imaging.open_image

    def _open(p):
        image = real_open(p)
        opened.append(image)
        return image

    monkeypatch.setattr(imaging, "open_image", _open)
    code, _ = _run(capsys, "upload", str(path), *extra)
    assert code == 0
    with pytest.raises(ValueError):
        opened[0].im
