import logging

from beatgrid.logging_utils import configure_logging, get_log_dir, get_log_path, log_exception


def test_log_path_uses_env_override(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("BEATGRID_LOG_DIR", str(tmp_path))
    assert get_log_dir() == tmp_path
    assert get_log_path() == tmp_path / "beatgrid.log"


def test_configure_logging_adds_file_handler(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("BEATGRID_LOG_DIR", str(tmp_path))
    logger = logging.getLogger("beatgrid")
    try:
        configure_logging(force=True)
        handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert len(handlers) == 1
        assert handlers[0].baseFilename == str(tmp_path / "beatgrid.log")
        assert logger.propagate
    finally:
        configure_logging(force=True, log_to_file=False)
    assert not any(isinstance(h, logging.FileHandler) for h in logger.handlers)


def test_log_exception_appends_traceback(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("BEATGRID_LOG_DIR", str(tmp_path / "nested"))
    configure_logging(force=True, log_to_file=False)
    try:
        raise RuntimeError("sample decode blew up")
    except RuntimeError as exc:
        path = log_exception("deferred voice", exc)
    assert path == tmp_path / "nested" / "beatgrid.log"
    text = path.read_text(encoding="utf-8")
    assert "[deferred voice] RuntimeError: sample decode blew up" in text
    assert "Traceback" in text


def test_log_exception_is_off_without_file_logging(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("BEATGRID_LOG_DIR", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    configure_logging(force=True, log_to_file=False)
    assert log_exception("deferred voice", RuntimeError("boom")) is None
    assert not (tmp_path / ".cache").exists()
