import json, pytest
from jupyter_client.session import Session
from ipytui.wire import (BadSignature, Codec, ExecuteReply, Malformed, Opaque, Stream, DELIM, content_types, parse_content)
from .kernel_utils import KEY


def make_codec(key:bytes=KEY, **kwargs)->Codec: return Codec(key=key, session_id="client-session", **kwargs)


def test_encode_frame_layout():
    codec = make_codec()
    msg = codec.msg("execute_request", dict(code="print(1)"))
    frames = codec.encode(msg, identities=[b"peer"])
    assert frames[0] == b"peer" and frames[1] == DELIM
    header = json.loads(frames[3])
    assert header["msg_type"] == "execute_request" and header["session"] == "client-session"
    assert json.loads(frames[4]) == {}
    assert json.loads(frames[6])["code"] == "print(1)"
    assert frames[2] == Session(key=KEY).sign(frames[3:7])


def test_round_trip_with_parent_and_buffers():
    codec = make_codec()
    req = codec.msg("execute_request", dict(code="1+1"))
    msg = codec.msg("stream", dict(name="stdout", text="2\n"), parent=req, metadata=dict(a=1), buffers=[b"\x00\x01"])
    out = codec.decode(codec.encode(msg))
    assert out == msg
    assert out.parent_id == req.msg_id
    assert isinstance(out.content, Stream) and out.content.text == "2\n"
    assert out.buffers == [b"\x00\x01"]


def test_every_bit_flip_in_signed_region_is_rejected():
    codec = make_codec()
    frames = codec.encode(codec.msg("status", dict(execution_state="busy")))
    start = frames.index(DELIM) + 2
    for i in range(start, start + 4):
        part = frames[i]
        for pos in range(0, len(part), max(1, len(part) // 8)):
            for bit in (0, 7):
                bad = list(frames)
                bad[i] = part[:pos] + bytes([part[pos] ^ (1 << bit)]) + part[pos + 1:]
                with pytest.raises(BadSignature): codec.decode(bad)


def test_wrong_key_is_rejected():
    frames = make_codec(b"other").encode(make_codec(b"other").msg("status", dict(execution_state="idle")))
    with pytest.raises(BadSignature): make_codec().decode(frames)


def test_empty_key_skips_signing():
    codec = make_codec(b"")
    frames = codec.encode(codec.msg("status", dict(execution_state="idle")))
    assert frames[1] == b""
    frames[1] = b"anything"
    assert codec.decode(frames).content.execution_state == "idle"


@pytest.mark.parametrize("mutate", [
    lambda f: [p for p in f if p != DELIM],
    lambda f: f[:4],
])
def test_malformed_framing(mutate):
    codec = make_codec(b"")
    with pytest.raises(Malformed): codec.decode(mutate(codec.encode(codec.msg("status", dict(execution_state="idle")))))


def _frames(codec, header, parent=b"{}", metadata=b"{}", content=b"{}"):
    parts = [header, parent, metadata, content]
    return [DELIM, codec.sign(parts), *parts]


def test_malformed_parts():
    codec = make_codec()
    good = json.dumps(dict(msg_id="x", msg_type="status")).encode()
    with pytest.raises(Malformed): codec.decode(_frames(codec, b"not json"))
    with pytest.raises(Malformed): codec.decode(_frames(codec, b"[1, 2]"))
    with pytest.raises(Malformed): codec.decode(_frames(codec, json.dumps(dict(msg_type="status")).encode()))
    with pytest.raises(Malformed): codec.decode(_frames(codec, good, metadata=b"[]"))
    with pytest.raises(Malformed): codec.decode(_frames(codec, good, content=b"{}"))
    assert codec.decode(_frames(codec, good, content=b'{"execution_state": "busy"}')).content.execution_state == "busy"


def test_unknown_type_is_opaque_and_lossless():
    codec = make_codec()
    msg = codec.msg("comm_msg", dict(comm_id="c1", data=dict(x=[1, 2])))
    out = codec.decode(codec.encode(msg))
    assert isinstance(out.content, Opaque)
    assert out.content.data == dict(comm_id="c1", data=dict(x=[1, 2]))


def test_unknown_keys_survive_reencoding():
    content = parse_content("execute_reply", dict(status="ok", execution_count=3, engine_info=dict(id=1)))
    assert isinstance(content, ExecuteReply)
    assert content.extra == dict(engine_info=dict(id=1))
    assert content.to_dict() == dict(status="ok", execution_count=3, engine_info=dict(id=1))


def test_jupyter_client_reads_our_frames():
    codec = make_codec()
    msg = codec.msg("complete_request", dict(code="pri", cursor_pos=3))
    idents, frames = Session(key=KEY).feed_identities(codec.encode(msg))
    got = Session(key=KEY).deserialize(frames)
    assert got["header"]["msg_id"] == msg.msg_id
    assert got["content"] == dict(code="pri", cursor_pos=3)


def test_we_read_jupyter_client_frames():
    session = Session(key=KEY)
    msg = session.msg("execute_reply", dict(status="ok", execution_count=1, user_expressions={}, payload=[]))
    frames = session.serialize(msg, ident=[b"kernel"])
    out = make_codec().decode(frames)
    assert out.identities == [b"kernel"]
    assert out.msg_id == msg["header"]["msg_id"]
    assert out.content.execution_count == 1


def test_header_fields():
    msg = make_codec(username="ana").msg("kernel_info_request")
    assert msg.header.username == "ana"
    assert msg.header.date.endswith("Z")
    assert msg.header.version
    assert msg.parent_header is None and msg.parent_id is None


def test_signature_scheme_sha512():
    codec = make_codec(signature_scheme="hmac-sha512")
    frames = codec.encode(codec.msg("status", dict(execution_state="idle")))
    assert len(frames[1]) == 128
    assert codec.decode(frames).content.execution_state == "idle"


def test_content_registry_covers_request_reply_pairs():
    for name in ("execute", "complete", "kernel_info", "interrupt", "shutdown", "input"):
        assert f"{name}_request" in content_types and f"{name}_reply" in content_types


def test_deeply_nested_json_is_malformed():
    codec = make_codec()
    header = json.dumps(dict(msg_id="x", msg_type="stream")).encode()
    with pytest.raises(Malformed): codec.decode(_frames(codec, header, content=b"[" * 100000 + b"]" * 100000))


def test_wrongly_typed_fields_are_malformed():
    codec = make_codec()
    with pytest.raises(Malformed): parse_content("complete_reply", dict(status="ok", matches=None))
    with pytest.raises(Malformed): parse_content("stream", dict(name="stdout", text=1))
    header = json.dumps(dict(msg_id="x", msg_type="complete_reply")).encode()
    with pytest.raises(Malformed): codec.decode(_frames(codec, header, content=b'{"status": "ok", "matches": null}'))
    assert parse_content("execute_reply", dict(status="ok", execution_count=None)).execution_count is None
