import os

from action_log import ActionLog


def read_lines(path):
    with open(path, encoding="utf-8") as f:
        return f.read().splitlines()


def test_entry_format(tmp_path):
    log_file = str(tmp_path / "daemon.log")
    log = ActionLog(log_file)

    def handle_play():
        log("INFO", "Playback started")

    handle_play()
    timestamp, pid, method, flag, msg = read_lines(log_file)[0].split("|")
    assert pid == str(os.getpid())
    assert method == "handle_play"
    assert (flag, msg) == ("INFO", "Playback started")
    assert "T" in timestamp


def test_level_filtering(tmp_path):
    log_file = str(tmp_path / "daemon.log")
    log = ActionLog(log_file, level="WARNING")
    log("DEBUG", "hidden")
    log("INFO", "hidden too")
    log("WARNING", "shown")
    log("ERROR", "always")
    assert [line.split("|")[-1] for line in read_lines(log_file)] == ["shown", "always"]


def test_disabled_still_logs_errors(tmp_path):
    log_file = str(tmp_path / "daemon.log")
    log = ActionLog(log_file, level="DISABLED")
    log("CRITICAL", "audio down")
    assert read_lines(log_file)[0].endswith("|CRITICAL|audio down")


def test_client_errors_go_to_client_log(tmp_path):
    log_file = str(tmp_path / "daemon.log")
    client_log = str(tmp_path / "daemon-client.log")
    log = ActionLog(log_file, client_log_file=client_log)

    def handle_client():
        log("ERROR", "Client error: boom")
        log("INFO", "fine")

    handle_client()
    assert read_lines(client_log)[0].endswith("|ERROR|Client error: boom")
    assert read_lines(log_file)[0].endswith("|INFO|fine")


def test_rotation(tmp_path):
    log_file = str(tmp_path / "daemon.log")
    log = ActionLog(log_file, max_size=200)
    for i in range(20):
        log("INFO", f"message number {i}")

    assert os.path.exists(f"{log_file}.1")
    assert os.path.getsize(log_file) < 400
    assert read_lines(log_file)[-1].endswith("message number 19")


def test_tail(tmp_path):
    log_file = str(tmp_path / "daemon.log")
    log = ActionLog(log_file)
    assert log.tail(5) == ""
    for i in range(10):
        log("INFO", f"line {i}")
    lines = log.tail(3).splitlines()
    assert [line.split("|")[-1] for line in lines] == ["line 7", "line 8", "line 9"]
