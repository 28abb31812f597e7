import hashlib

import pytest

from livebooster.defs import (
    SETOFDATA_STREAM_ID_SZ,
    ClientState,
    Data,
    DataType,
    LiveBoosterError,
    Param,
    ResourceRespCode,
    ReturnCode,
    SetOfData,
    UpdatedParams,
    UpdatedResource,
    Resource,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        (0, ReturnCode.SUCCESS),
        (-30, ReturnCode.CYCLE),
        (-31, ReturnCode.ATTACH_DATA),
        (-54, ReturnCode.HTTP_STOPPED),
    ],
)
def test_return_codes_match_documented_values(value, expected):
    assert ReturnCode(value) is expected
    assert LiveBoosterError(value).code is expected


def test_failure_codes_are_negative():
    failures = [ReturnCode(int(c)) for c in ReturnCode if c is not ReturnCode.SUCCESS]
    assert failures
    assert all(int(code) < 0 for code in failures)


def test_data_type_ordering():
    assert [DataType(i) for i in range(len(DataType))] == list(DataType)
    assert DataType(1) is DataType.INT32


def test_resource_resp_codes_sequential():
    assert [ResourceRespCode(i) for i in range(len(ResourceRespCode))] == list(ResourceRespCode)
    assert ClientState(0) is ClientState.DISCONNECTED


def test_error_keeps_code_and_name():
    err = LiveBoosterError(-32)
    assert err.code is ReturnCode.PUSH_DATA
    assert str(err) == "PUSH_DATA"


def test_error_with_message_and_unknown_code():
    err = LiveBoosterError(-7, "boom")
    assert err.code == -7
    assert str(err) == "boom"


def test_set_stream_id_short_kept():
    ds = SetOfData()
    ds.set_stream_id("urn:lo:nsid:sensor:demo")
    assert ds.stream_id == "urn:lo:nsid:sensor:demo"


def test_set_stream_id_truncated():
    ds = SetOfData()
    ds.set_stream_id("x" * (SETOFDATA_STREAM_ID_SZ + 20))
    assert len(ds.stream_id) == SETOFDATA_STREAM_ID_SZ - 1


def test_updated_params_reset():
    upd = UpdatedParams(cid=12, params=[Param(1, Data(DataType.INT32, "rate", 5))])
    upd.reset()
    assert upd.cid == 0
    assert upd.params == []


def test_updated_resource_reset():
    rsc = UpdatedResource(
        cid=3,
        resource=Resource(0, "image", "1.0"),
        version_old="1.0",
        version_new="2.0",
        md5=b"\x01" * 16,
        size=100,
        uri="http://example.com/x",
        connected=True,
        retry=2,
        offset=40,
    )
    rsc.md5_ctx.update(b"abc")
    rsc.reset()
    assert rsc == UpdatedResource(md5_ctx=rsc.md5_ctx)
    assert rsc.md5_ctx.digest() == hashlib.md5().digest()


def test_independent_default_lists():
    a, b = SetOfData(), SetOfData()
    a.data.append(Data(DataType.FLOAT, "t", 1.5))
    assert b.data == []


@pytest.mark.parametrize("member", list(ReturnCode))
def test_error_roundtrip_every_code(member):
    assert LiveBoosterError(int(member)).code is member