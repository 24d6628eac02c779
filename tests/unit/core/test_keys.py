"""Tests for key derivation, query normalization and expiry helpers."""

from __future__ import annotations

import string
from datetime import UTC, datetime, timedelta, timezone

import allure
import pytest
from freezegun import freeze_time
from hypothesis import given
from hypothesis import strategies as st

from mavin.core.keys import (
    KEY_HASH_LENGTH,
    artist_key,
    ensure_utc_aware,
    expiry_timestamp,
    extract_artist_from_query,
    extract_song_from_query,
    format_cache_key,
    generate_key,
    identity_key,
    is_expired,
    merge_track_data,
    normalize_query,
    parse_cache_key,
    related_key,
    search_key,
    stream_key,
    track_key,
    utc_now,
)
from mavin.core.models.records import ProviderIds, TrackMetadata

query_text = st.text(alphabet=string.ascii_letters + string.digits + " \t", max_size=60)


@allure.epic("Mavin Cache")
@allure.feature("Keys")
@allure.sub_suite("Normalization")
class TestQueryNormalization:
    """Queries that differ only in case and whitespace must share one key."""

    @allure.title("Collapses whitespace and lower-cases")
    def test_normalize_query(self) -> None:
        assert normalize_query("  City   Boys\tBURNA boy ") == "city boys burna boy"

    @allure.title("Normalization is idempotent")
    @given(query_text)
    def test_normalize_is_idempotent(self, query: str) -> None:
        once = normalize_query(query)
        assert normalize_query(once) == once

    @allure.title("Search key ignores case and surrounding whitespace")
    @given(query_text)
    def test_search_key_case_and_padding_insensitive(self, query: str) -> None:
        assert search_key(query) == search_key(f"  {query.upper()}  ")

    def test_search_key_shape(self) -> None:
        key = search_key("city boys burna boy")
        kind, digest = key.split(":")
        assert kind == "search"
        assert len(digest) == KEY_HASH_LENGTH
        assert all(c in string.hexdigits for c in digest)

    def test_different_queries_get_different_keys(self) -> None:
        assert search_key("city boys") != search_key("city girls")
        assert generate_key("artist", "burna boy") == artist_key("Burna  Boy")


@allure.epic("Mavin Cache")
@allure.feature("Keys")
@allure.sub_suite("Track keys")
class TestTrackKeys:
    """Track identity: ISRC, then title+artist, then opaque id."""

    def test_isrc_wins(self) -> None:
        key = track_key({"isrc": " usat22300123 ", "title": "City Boys", "artist": "Burna Boy", "id": "t1"})
        assert key == "track:isrc:USAT22300123"

    def test_title_artist_when_no_isrc(self) -> None:
        assert track_key({"title": "City Boys", "artist": "Burna Boy"}) == generate_key("track", "City Boys Burna Boy")

    def test_id_fallback(self) -> None:
        assert track_key({"id": "abc", "title": "Only Title"}) == "track:id:abc"

    def test_invalid_identifier_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid track identifier"):
            track_key({"title": "Only Title"})

    def test_simple_keys(self) -> None:
        assert stream_key("t1") == "stream:t1"
        assert related_key("t1") == "related:t1"

    def test_identity_key_prefers_isrc(self) -> None:
        assert identity_key("Anything", "Anyone", " usat22300123") == "isrc:USAT22300123"

    def test_identity_key_normalizes_title_and_artist(self) -> None:
        assert identity_key("  City  Boys ", "BURNA BOY") == identity_key("city boys", "burna boy")
        assert identity_key("City Boys", "Burna Boy").startswith("title_artist:")

    def test_identity_key_blank_isrc_falls_back(self) -> None:
        assert identity_key("City Boys", "Burna Boy", "   ") == identity_key("City Boys", "Burna Boy")

    def test_format_and_parse(self) -> None:
        assert format_cache_key("search:ab/cd") == "search_ab_cd"
        assert parse_cache_key("track:isrc:USAT1") == ("track", "isrc:USAT1")


@allure.epic("Mavin Cache")
@allure.feature("Keys")
@allure.sub_suite("Query parsing")
class TestQueryExtraction:
    @pytest.mark.parametrize(
        ("query", "artist", "song"),
        [
            ("city boys by burna boy", "burna boy", "city boys"),
            ("Burna Boy - City Boys", "Burna Boy", "City Boys"),
            ("city boys burna boy", None, None),
        ],
    )
    def test_extract(self, query: str, artist: str | None, song: str | None) -> None:
        assert extract_artist_from_query(query) == artist
        assert extract_song_from_query(query) == song


@allure.epic("Mavin Cache")
@allure.feature("Keys")
@allure.sub_suite("Time")
class TestExpiry:
    def test_fresh_strictly_before_expiry(self) -> None:
        expires = expiry_timestamp(60, 1000.0)
        assert expires == 1060.0
        assert not is_expired(expires, 1059.999)
        assert is_expired(expires, 1060.0)

    @freeze_time("2026-01-15 12:00:00")
    def test_utc_now_is_aware(self) -> None:
        now = utc_now()
        assert now.tzinfo is not None
        assert now == datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def test_ensure_utc_aware(self) -> None:
        naive = datetime(2026, 1, 15, 12, 0)
        assert ensure_utc_aware(naive) == datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
        plus_two = datetime(2026, 1, 15, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert ensure_utc_aware(plus_two).hour == 12


@allure.epic("Mavin Cache")
@allure.feature("Keys")
@allure.sub_suite("Merging")
class TestMergeTrackData:
    def test_new_values_win_and_empty_values_keep_existing(self) -> None:
        existing = TrackMetadata(
            title="City Boys",
            artist="Burna Boy",
            album="I Told Them...",
            isrc="USAT22300123",
            provider_ids=ProviderIds(spotify="sp1"),
            metadata={"popularity": 60},
        )
        new = TrackMetadata(
            title="City Boys",
            artist="Burna Boy",
            duration_seconds=156,
            provider_ids=ProviderIds(deezer="dz1"),
            metadata={"popularity": 71, "explicit": True},
        )

        merged = merge_track_data(existing, new)

        assert merged.album == "I Told Them..."
        assert merged.isrc == "USAT22300123"
        assert merged.duration_seconds == 156
        assert merged.provider_ids == ProviderIds(spotify="sp1", deezer="dz1")
        assert merged.metadata == {"popularity": 71, "explicit": True}
