import json, pytest
from ipytui.connection import ConnectionInfo

CONN = dict(transport="tcp", ip="127.0.0.1", shell_port=5001, iopub_port=5002, stdin_port=5003, control_port=5004, hb_port=5005,
    key="secret", signature_scheme="hmac-sha256", kernel_name="python3")


def test_from_file(tmp_path):
    path = tmp_path / "kernel-1.json"
    path.write_text(json.dumps(CONN), encoding="utf-8")
    conn = ConnectionInfo.from_file(str(path))
    assert conn.key == b"secret"
    assert conn.addr("shell") == "tcp://127.0.0.1:5001"
    assert conn.addr("hb") == "tcp://127.0.0.1:5005"
    assert conn.session_id


def test_session_ids_are_fresh():
    assert ConnectionInfo.from_dict(CONN).session_id != ConnectionInfo.from_dict(CONN).session_id
    assert ConnectionInfo.from_dict(CONN, session_id="s1").session_id == "s1"


def test_ipc_addr():
    conn = ConnectionInfo.from_dict(CONN | dict(transport="ipc", ip="/tmp/kernel"))
    assert conn.addr("iopub") == "ipc:///tmp/kernel-5002"


def test_bytes_key_and_round_trip():
    conn = ConnectionInfo.from_dict(CONN | dict(key=b"raw"))
    assert conn.key == b"raw"
    assert ConnectionInfo.from_dict(conn.to_dict()).key == b"raw"


def test_missing_port():
    with pytest.raises(ValueError, match="hb_port"): ConnectionInfo.from_dict({k: v for k, v in CONN.items() if k != "hb_port"})
