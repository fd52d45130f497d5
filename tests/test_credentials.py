from datetime import datetime, timezone

import pytest

from ddpclient.credentials import DIGEST_ALGORITHM, hash_secret
from ddpclient.state import Credential, SubscriptionRecord, SubscriptionTable
from shared.utils import parse_ddp_date


def test_hash_secret_is_sha256_hex():
    assert DIGEST_ALGORITHM == "sha-256"
    assert hash_secret("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_hash_secret_rejects_empty():
    with pytest.raises(ValueError):
        hash_secret("")


def test_parse_ddp_date():
    expected = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    assert parse_ddp_date({"$date": 1700000000000}) == expected
    assert parse_ddp_date(1700000000000) == expected
    assert parse_ddp_date(None) is None
    with pytest.raises(ValueError):
        parse_ddp_date("yesterday")


def test_credential_from_login_result():
    credential = Credential.from_result({"id": "u1", "token": "t1", "tokenExpires": {"$date": 1700000000000}})

    assert credential.user_id == "u1"
    assert credential.token == "t1"
    assert credential.is_expired(datetime(2024, 1, 1, tzinfo=timezone.utc))
    assert not credential.is_expired(datetime(2023, 1, 1, tzinfo=timezone.utc))
    assert "t1" not in repr(credential)


@pytest.mark.parametrize("result", [None, "token", {"id": "u1"}, {"token": "t1"}])
def test_credential_from_unusable_result(result):
    with pytest.raises(ValueError):
        Credential.from_result(result)


def test_subscription_table_sorts_numerically():
    table = SubscriptionTable()
    for sub_id in ("10", "2", "7"):
        table.add(SubscriptionRecord(sub_id, "stream-room-messages", (sub_id,)))

    assert [r.subscription_id for r in table.list_sorted()] == ["2", "7", "10"]
    assert table.remove("7").name == "stream-room-messages"
    assert "7" not in table
    assert len(table) == 2
