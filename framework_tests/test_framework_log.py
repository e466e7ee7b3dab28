import io

from ccm_test_cluster.utils import framework_log
from ccm_test_cluster.utils.framework_log import Severity


def test_write_progress():
    stream = io.StringIO()
    framework_log.write_progress("Downloading: 1/2MB [50%]", stream=stream)
    assert stream.getvalue() == "\rDownloading: 1/2MB [50%]"


def test_file_log_sink(tmp_path, sink):
    log_file = tmp_path / "ccm-session.log"
    file_sink = framework_log.get_file_log_sink(log_file=log_file, console=sink)

    file_sink(Severity.INFO, "initialize: done")
    file_sink(Severity.PROGRESS, "Downloading: 0/2MB [0%]")
    file_sink(Severity.ERROR, "start: failed")
    for handler in framework_log.framework_logger(log_file=log_file.resolve()).handlers:
        handler.flush()

    content = log_file.read_text()
    assert "INFO initialize: done" in content
    assert "ERROR start: failed" in content
    assert "Downloading" not in content
    assert len(sink.records) == 3
