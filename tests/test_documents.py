"""Tests for response normalization and timestamp handling."""

from datetime import date, datetime, timedelta, timezone

import pytest

from resource_discovery.documents import camel_case, dig, normalize, parse_instant, utc_now_iso


class TestNormalize:
    """Tests for normalize."""

    def test_camel_cases_nested_keys(self):
        response = {"MasterAccountId": "111111111111", "Roots": [{"Id": "r-root", "PolicyTypes": []}]}

        result = normalize(response, camel=True)

        assert result == {"masterAccountId": "111111111111", "roots": [{"id": "r-root", "policyTypes": []}]}

    def test_keeps_keys_by_default(self):
        assert normalize({"s3BucketName": "bucket"}) == {"s3BucketName": "bucket"}

    def test_drops_response_metadata(self):
        assert normalize({"Id": "x", "ResponseMetadata": {"HTTPStatusCode": 200}}) == {"Id": "x"}

    def test_datetimes_become_utc_iso_strings(self):
        offset = timezone(timedelta(hours=2))
        result = normalize({"when": datetime(2024, 3, 6, 14, 27, 55, tzinfo=offset)})

        assert result == {"when": "2024-03-06T12:27:55+00:00"}

    def test_naive_datetimes_are_read_as_utc(self):
        assert normalize(datetime(2024, 3, 6, 12, 0)) == "2024-03-06T12:00:00+00:00"

    def test_dates(self):
        assert normalize(date(2024, 3, 6)) == "2024-03-06"

    def test_camel_case_empty_key(self):
        assert camel_case("") == ""


class TestParseInstant:
    """Tests for parse_instant."""

    def test_z_suffix_and_offset_are_equal(self):
        assert parse_instant("2024-03-06T12:27:55Z") == parse_instant("2024-03-06T12:27:55+00:00")

    def test_converts_offsets_to_utc(self):
        parsed = parse_instant("2024-03-06T14:27:55+02:00")
        assert parsed == datetime(2024, 3, 6, 12, 27, 55, tzinfo=timezone.utc)
        assert parsed.utcoffset() == timedelta(0)

    def test_naive_string_is_utc(self):
        assert parse_instant("2024-03-06T12:27:55") == datetime(2024, 3, 6, 12, 27, 55, tzinfo=timezone.utc)

    def test_accepts_datetime(self):
        value = datetime(2024, 3, 6, 12, 27, 55, tzinfo=timezone.utc)
        assert parse_instant(value) == value

    @pytest.mark.parametrize("blank", [None, ""])
    def test_blank_is_none(self, blank):
        assert parse_instant(blank) is None

    def test_invalid_raises(self):
        with pytest.raises(ValueError):
            parse_instant("yesterday")


def test_utc_now_iso_is_aware():
    assert parse_instant(utc_now_iso()).utcoffset() == timedelta(0)


class TestDig:
    """Tests for dig."""

    def test_follows_path(self):
        document = {"deliveryChannel": {"s3BucketName": "bucket"}}
        assert dig(document, "deliveryChannel", "s3BucketName") == "bucket"

    def test_gap_returns_none(self):
        assert dig({"deliveryChannel": None}, "deliveryChannel", "s3BucketName") is None
        assert dig(None, "deliveryChannel") is None
        assert dig({"a": "scalar"}, "a", "b") is None
