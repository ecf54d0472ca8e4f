from __future__ import annotations

import io
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError

from questionnaire.errors import PersistenceError, UpstreamError
from questionnaire.services.storage import LocalStorage, S3Storage, create_storage


def _client_error(code: str, op: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


class _Paginator:
    def __init__(self, pages):
        self._pages = pages

    def paginate(self, Bucket, Prefix):
        for page in self._pages:
            yield {"Contents": [o for o in page if o["Key"].startswith(Prefix)]}


class FakeS3Client:
    """In-memory stand-in for the subset of the boto3 S3 client used here."""

    def __init__(self):
        self.objects = {}
        self.fail_puts = False

    def put_object(self, Bucket, Key, Body):
        if self.fail_puts:
            raise _client_error("AccessDenied", "PutObject")
        self.objects[Key] = bytes(Body)

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise _client_error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise _client_error("404", "HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        stamp = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        keys = sorted(self.objects)
        contents = [{"Key": k, "Size": len(self.objects[k]), "LastModified": stamp} for k in keys]
        # two pages to exercise pagination
        return _Paginator([contents[:1], contents[1:]])


# ---------- Local ----------

def test_local_write_read_roundtrip(tmp_path) -> None:
    storage = LocalStorage(str(tmp_path))

    storage.write_json("responses/a.json", {"feelings": "ok"})

    assert storage.exists("responses/a.json")
    assert storage.read_json("responses/a.json") == {"feelings": "ok"}
    # no temp files left behind
    assert [p.name for p in (tmp_path / "responses").iterdir()] == ["a.json"]


def test_local_list_skips_folder_markers_and_missing_prefix(tmp_path) -> None:
    storage = LocalStorage(str(tmp_path))
    storage.write_file("files/report.pdf", b"%PDF")
    storage.write_file("files/.keep", b"")
    storage.write_file("files/empty.txt", b"")
    (tmp_path / "files" / "nested").mkdir()

    items = storage.list_dir("files")

    assert [it["key"] for it in items] == ["files/report.pdf"]
    assert items[0]["size"] == 4
    assert items[0]["last_modified"].endswith("Z")
    assert storage.list_dir("results") == []


def test_local_delete(tmp_path) -> None:
    storage = LocalStorage(str(tmp_path))
    storage.write_file("files/x.txt", b"x")

    storage.delete_file("files/x.txt")

    assert not storage.exists("files/x.txt")
    with pytest.raises(FileNotFoundError):
        storage.delete_file("files/x.txt")
    with pytest.raises(FileNotFoundError):
        storage.read_file("files/x.txt")


def test_local_write_failure_is_persistence_error(tmp_path) -> None:
    (tmp_path / "blocker").write_text("a file, not a directory")
    storage = LocalStorage(str(tmp_path))

    with pytest.raises(PersistenceError):
        storage.write_file("blocker/x.json", b"{}")


# ---------- S3 ----------

def test_s3_roundtrip_and_listing() -> None:
    fake = FakeS3Client()
    storage = S3Storage(bucket="b", client=fake)

    location = storage.write_json("results/1.json", {"dominant": "joy"})
    storage.write_file("results/2.json", b"{}")
    storage.write_file("results/", b"")
    storage.write_file("files/other.bin", b"1")

    assert location == "s3://b/results/1.json"
    assert storage.read_json("results/1.json") == {"dominant": "joy"}
    items = storage.list_dir("results")
    assert [it["key"] for it in items] == ["results/1.json", "results/2.json"]
    assert items[0]["last_modified"] == "2024-05-01T12:00:00Z"


def test_s3_missing_keys() -> None:
    storage = S3Storage(bucket="b", client=FakeS3Client())

    assert not storage.exists("files/none")
    with pytest.raises(FileNotFoundError):
        storage.read_file("files/none")
    with pytest.raises(FileNotFoundError):
        storage.delete_file("files/none")


def test_s3_delete() -> None:
    fake = FakeS3Client()
    storage = S3Storage(bucket="b", client=fake)
    storage.write_file("files/a", b"a")

    storage.delete_file("files/a")

    assert fake.objects == {}


def test_s3_errors_are_mapped() -> None:
    fake = FakeS3Client()
    fake.fail_puts = True
    storage = S3Storage(bucket="b", client=fake)

    with pytest.raises(PersistenceError):
        storage.write_file("files/a", b"a")

    def boom(Bucket, Key):
        raise _client_error("InternalError", "GetObject")

    fake.get_object = boom
    with pytest.raises(UpstreamError):
        storage.read_file("files/a")


def test_create_storage_picks_backend(settings) -> None:
    import dataclasses

    assert isinstance(create_storage(settings), LocalStorage)
    s3 = create_storage(dataclasses.replace(settings, storage_backend="s3", s3_bucket="bkt"))
    assert isinstance(s3, S3Storage)
    assert s3.bucket == "bkt"
