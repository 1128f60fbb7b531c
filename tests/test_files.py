import io

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from auth.roles import Role
from core.errors import ConflictError, NotFoundError, ValidationError
from files.file_routes import MAX_FILE_SIZE, read_upload
from storage.object_store.buckets import LocalObjectStore, sanitize_file_name, validate_key

PNG = b"\x89PNG\r\n\x1a\n" + b"0" * 64


def _upload(client, user, name="photo.png", data=PNG, content_type="image/png"):
    return client.post("/api/files", headers=user.headers, files={"files": (name, data, content_type)})


class TestUpload:
    def test_upload_then_list(self, client, make_user):
        user = make_user(Role.USER)

        response = _upload(client, user, name="my photo (1).png")
        assert response.status_code == 200
        stored = response.json()["files"][0]
        assert stored["name"].endswith("_my_photo__1_.png")
        assert stored["size"] == len(PNG)

        listing = client.get("/api/files", headers=user.headers).json()
        assert [f["name"] for f in listing["files"]] == [stored["name"]]
        assert listing["files"][0]["url"] == f"http://testserver/api/files/{stored['name']}"

    def test_rejects_non_images(self, client, make_user):
        user = make_user(Role.USER)
        response = _upload(client, user, name="notes.txt", data=b"hello", content_type="text/plain")
        assert response.status_code == 400
        assert "Only image files" in response.json()["detail"]

    def test_rejects_large_files(self, client, make_user):
        user = make_user(Role.USER)
        response = _upload(client, user, data=b"0" * (MAX_FILE_SIZE + 1))
        assert response.status_code == 400
        assert response.json()["detail"] == "File size must be less than 5MB"

    def test_requires_login(self, client):
        response = client.get("/api/files")
        assert response.status_code == 401

    def test_listed_url_downloads_the_file(self, client, make_user):
        user = make_user(Role.USER)
        _upload(client, user, name="cat.png")

        url = client.get("/api/files", headers=user.headers).json()["files"][0]["url"]
        response = client.get(url, headers=user.headers)

        assert response.status_code == 200
        assert response.content == PNG

    def test_dashboard_urls_resolve(self, client, make_user):
        user = make_user(Role.USER)
        _upload(client, user)

        page = client.get("/dashboard/files", headers=user.headers).json()
        assert client.get(page["files"][0]["url"], headers=user.headers).status_code == 200

    async def test_oversized_upload_is_read_only_up_to_the_limit(self):
        body = io.BytesIO(b"0" * (MAX_FILE_SIZE + 4096))
        upload = UploadFile(file=body, filename="big.png", headers=Headers({"content-type": "image/png"}))

        with pytest.raises(ValidationError, match="less than 5MB"):
            await read_upload(upload)
        assert body.tell() == MAX_FILE_SIZE + 1

    async def test_declared_size_is_checked_before_reading(self):
        body = io.BytesIO(b"0" * 16)
        upload = UploadFile(file=body, size=MAX_FILE_SIZE + 1, filename="big.png",
                            headers=Headers({"content-type": "image/png"}))

        with pytest.raises(ValidationError):
            await read_upload(upload)
        assert body.tell() == 0


class TestOwnership:
    def test_files_are_private(self, client, make_user):
        owner = make_user(Role.USER)
        other = make_user(Role.ADMIN)
        name = _upload(client, owner).json()["files"][0]["name"]

        assert client.get("/api/files", headers=other.headers).json()["files"] == []
        assert client.get(f"/api/files/{name}", headers=other.headers).status_code == 404
        assert client.delete(f"/api/files/{name}", headers=other.headers).status_code == 404

    def test_download_and_delete(self, client, make_user):
        owner = make_user(Role.USER)
        name = _upload(client, owner).json()["files"][0]["name"]

        download = client.get(f"/api/files/{name}", headers=owner.headers)
        assert download.status_code == 200
        assert download.content == PNG
        assert download.headers["content-type"] == "image/png"

        assert client.delete(f"/api/files/{name}", headers=owner.headers).status_code == 200
        assert client.get("/api/files", headers=owner.headers).json()["files"] == []


class TestLocalObjectStore:
    def test_no_overwrite_without_upsert(self, tmp_path):
        store = LocalObjectStore(str(tmp_path))
        store.upload("u/a.png", b"1")
        with pytest.raises(ConflictError):
            store.upload("u/a.png", b"2")
        store.upload("u/a.png", b"2", upsert=True)
        assert store.download("u/a.png") == b"2"

    def test_listing_is_one_level(self, tmp_path):
        store = LocalObjectStore(str(tmp_path))
        store.upload("u/a.png", b"1")
        store.upload("u/nested/b.png", b"1")
        assert [o.name for o in store.list("u")] == ["a.png"]
        assert store.list("missing/") == []

    def test_remove_missing(self, tmp_path):
        with pytest.raises(NotFoundError):
            LocalObjectStore(str(tmp_path)).remove(["u/none.png"])

    @pytest.mark.parametrize("key", ["../etc/passwd", "/abs.png", "u//a.png", "u/../a.png", ""])
    def test_rejects_escaping_keys(self, key):
        with pytest.raises(ValidationError):
            validate_key(key)


def test_sanitize_file_name():
    assert sanitize_file_name("My Résumé (v2).png") == "My_R_sum___v2_.png"
