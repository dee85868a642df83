"""Tests for the package logger and its handler helpers."""

from __future__ import annotations

import logging

from symcas.logging import logger, set_file_handler, set_log_level, set_stream_handler, unset_stream_handler


class TestLogging:
    def test_package_logger(self) -> None:
        assert logger.name == "symcas"

    def test_set_log_level(self) -> None:
        previous = logger.level
        try:
            set_log_level(logging.WARNING)
            assert logger.level == logging.WARNING
            set_log_level(logging.DEBUG, pkg="symcas.codegen")
            assert logging.getLogger("symcas.codegen").level == logging.DEBUG
        finally:
            logger.setLevel(previous)
            logging.getLogger("symcas.codegen").setLevel(logging.NOTSET)

    def test_stream_handler(self) -> None:
        before = list(logger.handlers)
        set_stream_handler()
        try:
            assert len(logger.handlers) == len(before) + 1
        finally:
            unset_stream_handler()
        assert logger.handlers == before

    def test_file_handler(self, tmp_path) -> None:
        path = tmp_path / "symcas.log"
        handler = set_file_handler(path)
        previous = logger.level
        try:
            logger.setLevel(logging.INFO)
            logger.info("hello from the test")
            handler.flush()
        finally:
            logger.removeHandler(handler)
            handler.close()
            logger.setLevel(previous)
        assert "symcas:INFO hello from the test" in path.read_text()
