import pytest

from ccm_test_cluster.utils import output_classifier
from ccm_test_cluster.utils.framework_log import Severity
from ccm_test_cluster.utils.output_classifier import STDERR

DOWNLOAD_START = (
    "Downloading http://archive.apache.org/dist/cassandra/3.9/apache-cassandra-3.9-bin.tar.gz"
    " to /tmp/ccm-abc.tar.gz (100MB)"
)
NOISE = (
    "objc[1234]: Class JavaLaunchHelper is implemented in both /jdk/bin/java and "
    "/jdk/lib/libinstrument.dylib. One of the two will be used. Which one is undefined."
)


def test_download_lifecycle(sink):
    classifier = output_classifier.OutputClassifier(log_sink=sink)

    classifier.classify(DOWNLOAD_START)
    assert classifier.downloading
    classifier.classify(f"  {50 * 1024**2}  [50.00%]")
    classifier.classify("Extracting /tmp/ccm-abc.tar.gz as version 3.9 ...")

    assert not classifier.downloading
    assert sink.get(Severity.PROGRESS) == [
        "Downloading: 0/100MB [0%]",
        "Downloading: 50.0/100MB [50.00%]",
        "Downloading: 100/100MB [100%]",
        "\n",
    ]
    assert sink.get(Severity.INFO) == [
        DOWNLOAD_START.rsplit(" (", maxsplit=1)[0],
        "Extracting /tmp/ccm-abc.tar.gz as version 3.9 ...",
    ]


@pytest.mark.parametrize(
    ("size", "unit", "num_bytes", "expected"),
    (
        ("38.5", "MB", 1024**2, 1.0),
        ("2", "GB", 1024**3 // 4, 0.25),
        ("512", "KB", 1000, 0.98),
        ("900", "bytes", 450, 450.0),
    ),
)
def test_download_convert(size: str, unit: str, num_bytes: int, expected: float):
    state = output_classifier.DownloadState(size=size, unit=unit)
    assert state.convert(num_bytes) == expected


def test_progress_without_download(sink):
    classifier = output_classifier.OutputClassifier(log_sink=sink)
    classifier.classify("  1024  [1.00%]")
    assert sink.records == []


def test_extracting_without_download(sink):
    classifier = output_classifier.OutputClassifier(log_sink=sink)
    classifier.classify("Extracting /tmp/foo.tar.gz as version 3.9 ...")
    assert sink.get(Severity.PROGRESS) == []
    assert sink.get(Severity.INFO) == ["Extracting /tmp/foo.tar.gz as version 3.9 ..."]


def test_noise(sink):
    classifier = output_classifier.OutputClassifier(log_sink=sink)
    classifier.classify(NOISE, stream=STDERR)
    assert sink.records == []

    verbose_classifier = output_classifier.OutputClassifier(log_sink=sink, verbose=True)
    verbose_classifier.classify(NOISE, stream=STDERR)
    assert sink.records == [(Severity.VERBOSE, NOISE)]


def test_plain_lines(sink):
    classifier = output_classifier.OutputClassifier(log_sink=sink)
    classifier.classify("Current cluster is now: node-ccm")
    classifier.classify("   ")
    classifier.classify("Error: cluster not found", stream=STDERR)
    assert sink.records == [
        (Severity.INFO, "Current cluster is now: node-ccm"),
        (Severity.ERROR, "Error: cluster not found"),
    ]


def test_download_patterns_only_on_stdout(sink):
    classifier = output_classifier.OutputClassifier(log_sink=sink)
    classifier.classify(DOWNLOAD_START, stream=STDERR)
    assert not classifier.downloading
    assert sink.records == [(Severity.ERROR, DOWNLOAD_START)]


def test_suppressed(sink):
    classifier = output_classifier.OutputClassifier(log_sink=sink, suppress_normal_logs=True)
    classifier.classify("node-ccm")
    classifier.classify(DOWNLOAD_START)
    classifier.classify("failure", stream=STDERR)
    assert sink.records == [(Severity.ERROR, "failure")]


def test_state_not_shared(sink):
    first = output_classifier.OutputClassifier(log_sink=sink)
    first.classify(DOWNLOAD_START)
    second = output_classifier.OutputClassifier(log_sink=sink)
    assert first.downloading
    assert not second.downloading
