"""
Tests for the Supabase-backed character, clip and run-record stores.
"""

from unittest.mock import MagicMock

import pytest

from reelsmith.pipeline import storage
from reelsmith.pipeline.characters import SupabaseCharacterStore, row_to_character
from reelsmith.pipeline.models import SceneResult, SceneStatus
from reelsmith.pipeline.movie_store import SupabaseMovieStore, build_movie_row, is_movie_id
from reelsmith.pipeline.storage import SupabaseClipStore

MOVIE_ID = "7f9c2ba4-e88f-4a2c-9d3b-1f0e5c6d7a8b"


def supabase_returning(rows):
    client = MagicMock()
    client.table.return_value.select.return_value.in_.return_value.execute.return_value.data = rows
    return client


class TestCharacterStore:

    @pytest.mark.asyncio
    async def test_request_order_and_placeholders(self):
        client = supabase_returning([
            {"id": "d4e5f6", "name": "Ilya", "personality": "quiet mechanic"},
            {"id": "c1a2b3", "name": "Mara", "profile": {"base_prompt": "navy coat"}},
        ])

        characters = await SupabaseCharacterStore(client).get_characters(["c1a2b3", "zz9999", "d4e5f6"])

        assert [c.name for c in characters] == ["Mara", "Character zz99", "Ilya"]
        assert characters[0].base_prompt == "navy coat"
        assert characters[2].personality == "quiet mechanic"

    @pytest.mark.asyncio
    async def test_store_error_gives_placeholders(self):
        client = MagicMock()
        client.table.side_effect = ConnectionError("db down")

        characters = await SupabaseCharacterStore(client).get_characters(["abcdef"])

        assert characters[0].name == "Character abcd"
        assert characters[0].base_prompt == "cinematic, realistic character"

    def test_empty_profile_falls_back_to_columns(self):
        character = row_to_character({"id": 42, "name": "Ode", "profile": {}, "base_prompt": "tall"})
        assert character.id == "42"
        assert character.base_prompt == "tall"


class TestClipStore:

    @pytest.mark.asyncio
    async def test_copies_clip_into_bucket(self, monkeypatch):
        async def fake_download(url, timeout):
            return b"mp4-bytes"

        monkeypatch.setattr(storage, "download_clip_bytes", fake_download)
        client = MagicMock()
        bucket = client.storage.from_.return_value
        bucket.get_public_url.return_value = "https://project.supabase.co/storage/v1/object/public/videos/x.mp4"

        url = await SupabaseClipStore(client, bucket="videos").save("https://cdn.example.com/a.mp4")

        assert url.endswith("/videos/x.mp4")
        client.storage.from_.assert_called_with("videos")
        kwargs = bucket.upload.call_args.kwargs
        assert kwargs["file"] == b"mp4-bytes"
        assert kwargs["path"].startswith("videos/") and kwargs["path"].endswith(".mp4")
        assert kwargs["file_options"]["content-type"] == "video/mp4"

    @pytest.mark.asyncio
    async def test_own_storage_is_left_alone(self):
        client = MagicMock()
        url = "https://project.supabase.co/storage/v1/object/public/videos/a.mp4"

        assert await SupabaseClipStore(client).save(url) == url
        client.storage.from_.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_url(self):
        with pytest.raises(ValueError):
            await SupabaseClipStore(MagicMock()).save("")

    @pytest.mark.asyncio
    async def test_upload_failure(self, monkeypatch):
        async def fake_download(url, timeout):
            return b"x"

        monkeypatch.setattr(storage, "download_clip_bytes", fake_download)
        client = MagicMock()
        client.storage.from_.return_value.upload.side_effect = Exception("bucket missing")

        with pytest.raises(RuntimeError, match="bucket missing"):
            await SupabaseClipStore(client).save("https://cdn.example.com/a.mp4")


class TestMovieStore:

    def test_row_shape(self):
        scenes = [
            SceneResult(scene=1, status=SceneStatus.COMPLETED, success=True, script="s" * 1500,
                        model="luma/dream-machine", video_url="https://x/1.mp4", duration=6),
            SceneResult(scene=3, status=SceneStatus.COMPLETED, success=True, script="t",
                        model="luma/dream-machine", video_url="https://x/3.mp4", duration=6),
        ]

        row = build_movie_row(
            story_premise="p" * 150, character_ids=["c1"], total_scenes=4, total_duration=24,
            successful=scenes, user_id="dana", job_id="j1", status="partial",
        )

        assert len(row["title"]) == 100
        assert [s["scene"] for s in row["scenes_data"]] == [1, 3]
        assert len(row["scenes_data"][0]["script"]) == 1000
        assert row["metadata"]["models_used"] == ["luma/dream-machine"]
        assert row["metadata"]["success_rate"] == 50
        assert row["metadata"]["status"] == "partial"

    @pytest.mark.asyncio
    async def test_save_returns_stored_row(self):
        client = MagicMock()
        client.table.return_value.upsert.return_value.execute.return_value.data = [{"id": MOVIE_ID}]

        assert await SupabaseMovieStore(client).save_run({"title": "x"}) == {"id": MOVIE_ID}
        client.table.assert_called_with("movies")

    @pytest.mark.asyncio
    async def test_save_failure_returns_none(self):
        client = MagicMock()
        client.table.return_value.upsert.return_value.execute.side_effect = Exception("timeout")

        assert await SupabaseMovieStore(client).save_run({"title": "x"}) is None

    @pytest.mark.asyncio
    async def test_get_movie(self):
        client = MagicMock()
        chain = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        chain.execute.return_value.data = [{"id": MOVIE_ID}]

        assert await SupabaseMovieStore(client).get_movie(MOVIE_ID) == {"id": MOVIE_ID}

    @pytest.mark.asyncio
    async def test_get_movie_rejects_bad_id(self):
        with pytest.raises(ValueError):
            await SupabaseMovieStore(MagicMock()).get_movie("42")

    def test_is_movie_id(self):
        assert is_movie_id(MOVIE_ID.upper())
        assert not is_movie_id("movie_1700000000000")
