import pytest

from dsync.domain.chat.errors import UploadFailed
from dsync.infra.attachments import LocalAttachmentStore, MemoryAttachmentStore, kind_for_media_type


@pytest.mark.asyncio
async def test_local_store_writes_and_deletes(tmp_path):
    store = LocalAttachmentStore(root=str(tmp_path), base_url="http://files.test/uploads")

    stored = await store.upload(b"hello", media_type="text/plain", file_name="notes.txt", owner_id="user-a")

    assert stored.key.startswith("chat/user-a/")
    assert stored.key.endswith(".txt")
    assert stored.url == f"http://files.test/uploads/{stored.key}"
    assert (tmp_path / stored.key).read_bytes() == b"hello"
    assert store.key_from_url(stored.url) == stored.key

    await store.delete(stored.key)
    assert not (tmp_path / stored.key).exists()


@pytest.mark.asyncio
async def test_local_store_refuses_keys_outside_root(tmp_path):
    store = LocalAttachmentStore(root=str(tmp_path), base_url="http://files.test/uploads")

    with pytest.raises(UploadFailed):
        await store.delete("../outside.txt")


@pytest.mark.asyncio
async def test_empty_and_oversized_uploads_are_rejected(monkeypatch):
    from dsync.settings import settings

    store = MemoryAttachmentStore()
    monkeypatch.setattr(settings, "attachment_max_bytes", 4)

    with pytest.raises(UploadFailed) as empty:
        await store.upload(b"", media_type="text/plain", file_name="a.txt", owner_id="u")
    with pytest.raises(UploadFailed) as large:
        await store.upload(b"12345", media_type="text/plain", file_name="a.txt", owner_id="u")

    assert (empty.value.code, empty.value.status_code) == ("empty_file", 400)
    assert (large.value.code, large.value.status_code) == ("file_too_large", 413)
    assert store.objects == {}


def test_kind_for_media_type():
    assert kind_for_media_type("image/png") == "image"
    assert kind_for_media_type("AUDIO/mpeg") == "voice"
    assert kind_for_media_type("application/pdf") == "file"
    assert kind_for_media_type(None) == "file"
